"""
Enriquecimento de faturas parseadas.

Funções puras sobre ParsedInvoiceFields: lookup de empresa por NIF,
data de vencimento, IBAN/beneficiário, referências de pagamento,
sugestão de categoria contabilística e integrações a ativar por defeito.
"""
import logging
import random
import re
import time
from datetime import date, timedelta
from typing import Dict, Optional

from ..schema.models import (
    BankingDetails,
    CategorySuggestion,
    IntegrationFlags,
    ParsedInvoiceFields,
)
from .text_normalizer import remove_accents
from .validators import format_eur, parse_number

logger = logging.getLogger(__name__)

# Empresas do grupo
GRUPO_ARELUNA_COMPANIES: Dict[str, str] = {
    '516562240': 'Instituto AreLuna Medicina Dentária Avançada, Lda',
    '516313916': 'Sociedade de Gestão Vespasian Ventures, Lda',
    '516681826': 'ProStoral Laboratório de Dispositivos Médicos, Lda',
    '518899586': 'Pinklegion – Unipessoal Lda',
    '518822532': 'Papagaio Fotogénico – Unipessoal Lda',
    '518881555': 'Nuvens Autóctones – Unipessoal Lda',
}

# Empresas portuguesas comuns (referência)
COMMON_COMPANIES: Dict[str, str] = {
    '500000000': 'EDP - Energias de Portugal',
    '501442600': 'Vodafone Portugal',
    '502011475': 'NOS Comunicações',
    '503504564': 'MEO - Serviços de Comunicações',
    '500769405': 'Galp Energia',
}

CATEGORY_NAMES: Dict[str, str] = {
    'fornecimentos-servicos-externos': 'Fornecimentos e Serviços Externos',
    'mercadorias': 'Mercadorias',
    'materias-primas': 'Matérias-primas',
    'equipamentos': 'Equipamentos',
    'servicos-profissionais': 'Serviços Profissionais',
    'marketing-publicidade': 'Marketing e Publicidade',
    'viagens-deslocacoes': 'Viagens e Deslocações',
    'comunicacoes': 'Comunicações',
    'seguros': 'Seguros',
    'outros': 'Outros',
}

PT_IBAN_PATTERN = re.compile(r'PT50\d{21}|PT\d{23}')
LABELED_IBAN_PATTERN = re.compile(r'IBAN[:\s]*([A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}[A-Z0-9]{1,16})', re.IGNORECASE)
SHORT_PT_IBAN_PATTERN = re.compile(r'PT[0-9]{21}')


def lookup_company_by_nif(nif: Optional[str]) -> Optional[str]:
    if not nif:
        return None

    return GRUPO_ARELUNA_COMPANIES.get(nif) or COMMON_COMPANIES.get(nif)


def calculate_due_date(invoice_date: Optional[str], days: int = 30) -> Optional[str]:
    """Vencimento = data da fatura + N dias. Data ilegível -> None."""
    if not invoice_date:
        return None

    try:
        parsed = date.fromisoformat(invoice_date[:10])
    except ValueError:
        return None

    return (parsed + timedelta(days=days)).isoformat()


def extract_beneficiario(invoice: ParsedInvoiceFields) -> Optional[str]:
    if invoice.nome_emitente:
        return invoice.nome_emitente

    if invoice.nif_emitente:
        company_name = lookup_company_by_nif(invoice.nif_emitente)
        return company_name or f"Empresa NIF: {invoice.nif_emitente}"

    return None


def extract_iban(invoice: ParsedInvoiceFields) -> Optional[str]:
    """
    1. Campo iban (tag M)
    2. Padrão IBAN PT no conteúdo bruto
    3. IBAN rotulado ('IBAN: ...') e PT curto
    Primeira que encontrar vence.
    """
    if invoice.iban:
        return invoice.iban

    raw = invoice.raw_content or ''

    m = PT_IBAN_PATTERN.search(raw)
    if m:
        return m.group(0)

    m = LABELED_IBAN_PATTERN.search(raw)
    if m:
        return m.group(1)

    m = SHORT_PT_IBAN_PATTERN.search(raw)
    if m:
        return m.group(0)

    return None


def generate_payment_reference_from_invoice(
        invoice: ParsedInvoiceFields,
        today: Optional[date] = None
) -> str:
    """
    Referência determinística: 4 últimos do NIF + 3 últimos do nº documento
    + 6 últimos da data sem hífens. Sem separadores.
    """
    nif = (invoice.nif_emitente or '')[-4:].zfill(4)
    doc_number = (invoice.numero_documento or '')[-3:].zfill(3)

    if invoice.data_fatura:
        date_part = invoice.data_fatura.replace('-', '')[-6:]
    else:
        date_part = (today or date.today()).isoformat().replace('-', '')[-6:]

    return f"{nif}{doc_number}{date_part}"


def generate_payment_reference_random(
        now: Optional[float] = None,
        rng: Optional[random.Random] = None
) -> str:
    """Referência avulsa: 6 últimos dígitos do timestamp (ms) + sufixo aleatório de 3."""
    millis = int((now if now is not None else time.time()) * 1000)
    suffix = (rng or random).randint(0, 999)
    return f"{str(millis)[-6:]}{suffix:03d}"


def category_display_name(category: str) -> str:
    return CATEGORY_NAMES.get(category, category)


def suggest_accounting_category(invoice: ParsedInvoiceFields) -> CategorySuggestion:
    """
    Cascata de regras, cada regra que dispara SOBRESCREVE a anterior:
    valor -> NIF -> descrição. Sem regra: 'outros'.
    """
    amount = parse_number(invoice.total)
    nif_emitente = invoice.nif_emitente or ''
    description = (remove_accents(invoice.descricao) or '').lower()

    category = 'outros'
    reasoning = ''

    # Valor
    if amount > 10000:
        category, reasoning = 'equipamentos', 'Valor elevado - possível aquisição de equipamento'
    elif amount > 5000:
        category, reasoning = 'fornecimentos-servicos-externos', 'Valor médio-alto - serviços ou fornecimentos'
    elif amount > 1000:
        category, reasoning = 'servicos-profissionais', 'Valor médio - serviços profissionais'
    elif amount < 100:
        category, reasoning = 'comunicacoes', 'Valor baixo - comunicações ou despesas menores'

    # NIF
    if nif_emitente.startswith('5'):
        category, reasoning = 'servicos-profissionais', 'NIF de pessoa coletiva - serviços profissionais'
    elif nif_emitente.startswith('2'):
        category, reasoning = 'fornecimentos-servicos-externos', 'NIF empresarial - fornecimentos e serviços'

    # Descrição
    if 'combustivel' in description or 'gasolina' in description:
        category, reasoning = 'viagens-deslocacoes', 'Combustível identificado - viagens e deslocações'
    elif 'telefone' in description or 'internet' in description:
        category, reasoning = 'comunicacoes', 'Comunicações identificadas'
    elif 'seguro' in description:
        category, reasoning = 'seguros', 'Seguro identificado'
    elif 'marketing' in description or 'publicidade' in description:
        category, reasoning = 'marketing-publicidade', 'Marketing/Publicidade identificado'

    logger.info("Categoria contábil sugerida: %s (%s)", category, reasoning)
    return CategorySuggestion(
        categoria=category,
        nome=category_display_name(category),
        motivo=reasoning,
    )


def auto_enable_options(invoice: ParsedInvoiceFields) -> IntegrationFlags:
    amount = parse_number(invoice.total)
    has_iva = parse_number(invoice.iva) > 0

    return IntegrationFlags(
        controle_iva=has_iva,
        contas_pagar=amount > 500,
        integracao_bancaria=amount > 100,
        alertas=amount > 1000,
    )


def prefill_banking_details(invoice: ParsedInvoiceFields) -> BankingDetails:
    return BankingDetails(
        beneficiario=extract_beneficiario(invoice),
        iban=extract_iban(invoice),
        valor=format_eur(invoice.total) if invoice.total else None,
        referencia=generate_payment_reference_from_invoice(invoice),
    )
