import logging
import re
from typing import Dict, List, Optional, Tuple

from ..schema.models import ParsedInvoiceFields, QRSummary
from .enrichment import lookup_company_by_nif

logger = logging.getLogger(__name__)

DOCUMENT_TYPES: Dict[str, str] = {
    'FR': 'Fatura-Recibo',
    'FT': 'Fatura',
    'NC': 'Nota de Crédito',
    'ND': 'Nota de Débito',
    'VD': 'Venda a Dinheiro',
    'TV': 'Talão de Venda',
    'TD': 'Talão de Devolução',
    'AA': 'Alienação de Ativos',
    'DA': 'Devolução de Ativos',
}

# Ordem importa: é a ordem de atribuição dentro de cada segmento.
# (tag, campo) testados contra a cópia em MAIÚSCULAS do segmento
UPPER_TAGS: List[Tuple[str, str]] = [
    # A-E: Identificação
    ('A:', 'nif_emitente'),
    ('B:', 'nif_adquirente'),
    ('C:', 'pais_emitente'),
    ('D:', 'pais_adquirente'),
    ('E:', 'tipo_adquirente'),
    # F-H: Documento (F tratado à parte)
    ('F:', 'data_fatura'),
    ('G:', 'numero_documento'),
    ('H:', 'codigo_documento'),
    ('D:', 'tipo_documento'),
    # I1-I8: Impostos e valores
    ('I1:', 'moeda'),
    ('I2:', 'valores_iva_taxas'),
    ('I3:', 'iva_isento'),
    ('I4:', 'iva_regime_especial'),
    ('I5:', 'total'),
    ('I6:', 'retencao'),
    ('I7:', 'base_tributavel'),
    ('I8:', 'iva'),
    # J1-J6: Taxas de IVA
    ('J1:', 'base_iva6'),
    ('J2:', 'iva6'),
    ('J3:', 'base_iva13'),
    ('J4:', 'iva13'),
    ('J5:', 'base_iva23'),
    ('J6:', 'iva23'),
    # N-O: Totais
    ('N:', 'total_iva'),
    ('O:', 'total'),
    # Q-R: Isenção
    ('Q:', 'codigo_isencao'),
    ('R:', 'motivo_isencao'),
]

# Texto livre: testado contra o segmento ORIGINAL (case preservado)
FREE_TEXT_TAGS: List[Tuple[str, str]] = [
    ('K:', 'nome_emitente'),
    ('L:', 'morada_emitente'),
    ('M:', 'iban'),
    ('N:', 'descricao'),
]

KNOWN_TAGS = {tag[:-1] for tag, _ in UPPER_TAGS + FREE_TEXT_TAGS}
TAG_PREFIX = re.compile(r'^\s*([A-Z][0-9]?):(.*)$', re.DOTALL)
LOWERCASE_TAG = re.compile(r'\b([a-z]):', re.IGNORECASE | re.ASCII)
AT_MARKERS = ('A:', 'B:', 'C:', 'D:', 'E:', 'F:', 'G:', 'H:', 'I:')


def normalize_at_data(data: str) -> Tuple[str, bool]:
    """
    Passa tags de uma letra para maiúscula (a: -> A:).
    Alguns encoders emitem tags minúsculas. Idempotente.
    """
    normalized = LOWERCASE_TAG.sub(lambda m: m.group(1).upper() + ':', data)
    return normalized, normalized != data


def is_at_invoice(content: Optional[str]) -> bool:
    """Heurística de portão: falsos positivos/negativos são tolerados."""
    if not content:
        return False

    return any(marker in content for marker in AT_MARKERS)


def _tag_value(segment: str, tag: str) -> str:
    ## Remove só a primeira ocorrência da tag; lixo antes dela fica no valor
    return segment.replace(tag, '', 1).strip()


def format_invoice_date(raw_date: str) -> str:
    """YYYYMMDD -> YYYY-MM-DD. Qualquer outra coisa passa intacta."""
    if re.fullmatch(r'\d{8}', raw_date):
        return f"{raw_date[:4]}-{raw_date[4:6]}-{raw_date[6:8]}"
    return raw_date


def _apply_segment(data: ParsedInvoiceFields, line: str) -> None:
    upper_line = line.upper()
    matched = False

    for tag, field in UPPER_TAGS:
        ## Contenção de substring (não prefixo): tolera lixo antes da tag,
        ## à custa de falsos positivos quando o valor contém "X:"
        if tag not in upper_line:
            continue
        matched = True
        value = _tag_value(upper_line, tag)

        if field == 'data_fatura':
            value = format_invoice_date(value)
        elif field == 'tipo_documento':
            value = DOCUMENT_TYPES.get(value, value)

        setattr(data, field, value)

    for tag, field in FREE_TEXT_TAGS:
        if tag in line:
            matched = True
            setattr(data, field, _tag_value(line, tag))

    if not matched:
        m = TAG_PREFIX.match(upper_line)
        if m and m.group(1) not in KNOWN_TAGS:
            # valor vindo do segmento original
            data.extra[m.group(1)] = line.split(':', 1)[1].strip()


def parse_at_invoice(qr_content: str) -> ParsedInvoiceFields:
    """
    Parser do payload QR AT.

    Pipeline:
    1. Split por '*'
    2. Fold ordenado sobre os segmentos (última ocorrência de uma tag vence)
    3. Data F: YYYYMMDD -> ISO; Tipo D: enum
    4. Sem nome do emitente -> lookup pelo NIF (best-effort)

    Nunca levanta exceção por payload malformado: tags não reconhecidas
    simplesmente não aparecem no resultado.
    """
    data = ParsedInvoiceFields(raw_content=qr_content)

    for line in (qr_content or '').split('*'):
        _apply_segment(data, line)

    if not data.nome_emitente and data.nif_emitente:
        data.nome_emitente = lookup_company_by_nif(data.nif_emitente)

    logger.debug(
        "QR parse: %d campos extraídos",
        len(data.model_dump(exclude_none=True, exclude={'raw_content', 'extra'}))
    )
    return data


def parse_qr_summary(qr_content: str) -> QRSummary:
    """
    Resumo rápido: split estrito KEY:VALUE, chave exata (sem normalização).
    """
    keys = {
        'A': 'nif_emitente',
        'B': 'nif_adquirente',
        'C': 'pais',
        'D': 'tipo_documento',
        'F': 'data',
        'I2': 'valor_total',
        'N': 'valor_iva',
        'O': 'valor_com_iva',
    }
    summary = QRSummary()

    for field in (qr_content or '').split('*'):
        if ':' not in field:
            continue
        key, value = field.split(':')[:2]
        if key in keys:
            setattr(summary, keys[key], value)

    return summary
