import io
import logging
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

from ..exceptions import ExportError, InputReadError
from ..schema.models import InvoiceRecord
from .parser import DOCUMENT_TYPES
from .text_normalizer import auto_fix_encoding, has_encoding_issues
from .validators import format_amount

logger = logging.getLogger(__name__)

CSVInput = Union[bytes, str, Path]

# campo do registo -> colunas aceites (primeira presente vence)
DEFAULT_MAPPING: Dict[str, List[str]] = {
    "numero_documento": ["Numero", "NumeroFatura", "Invoice", "InvoiceNo"],
    "data_fatura": ["Data", "Date", "DataFatura"],
    "nome_cliente": ["Cliente", "Customer", "NomeCliente", "CustomerName"],
    "nif_adquirente": ["NIF", "TaxID", "NIPC"],
    "total": ["Total", "Valor", "ValorTotal", "Amount"],
    "tipo_documento": ["Tipo", "Type", "TipoDocumento"],
}

EXPORT_COLUMNS = [
    "id", "numeroDocumento", "dataFatura", "tipoDocumento", "nifEmitente",
    "nomeEmitente", "nifAdquirente", "nomeCliente", "baseTributavel", "iva",
    "total", "moeda", "dataVencimento", "categoriaContabil", "status", "origem",
]


def _read_bytes(source: CSVInput) -> bytes:
    if isinstance(source, bytes):
        return source
    try:
        return Path(source).read_bytes()
    except OSError as e:
        raise InputReadError(f"Erro ao ler CSV: {source}", {"path": str(source)}) from e


def detect_encoding(data: bytes) -> str:
    """Amostra de 4KB lida como UTF-8: sinais de corrupção -> latin-1."""
    sample = data[:4096].decode("utf-8", errors="replace")
    if has_encoding_issues(sample):
        logger.info("Detectado encoding não-UTF8, usando latin-1")
        return "latin-1"
    return "utf-8"


def parse_csv(
        source: CSVInput,
        delimiter: str = ",",
        encoding: Optional[str] = None,
        skip_empty_lines: bool = True
) -> List[Dict[str, str]]:
    """
    1. Lê bytes (ficheiro ou upload)
    2. Deteta encoding se não for dado
    3. pandas lê tudo como texto (sem NaN)
    4. Cabeçalhos e valores com trim + correção de encoding
    """
    data = _read_bytes(source)
    encoding = encoding or detect_encoding(data)

    try:
        frame = pd.read_csv(
            io.BytesIO(data),
            sep=delimiter,
            encoding=encoding,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise InputReadError(f"Falha ao processar CSV: {e}") from e

    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.apply(lambda column: column.map(lambda value: auto_fix_encoding(value.strip())))

    rows = frame.to_dict(orient="records")
    if skip_empty_lines:
        rows = [row for row in rows if any(value for value in row.values())]

    logger.info("CSV parseado: %d linha(s)", len(rows))
    return rows


def normalize_row(row: Dict[str, str], mapping: Dict[str, Sequence[str]]) -> InvoiceRecord:
    fields: Dict[str, str] = {}

    for field, possible_names in mapping.items():
        names = [possible_names] if isinstance(possible_names, str) else possible_names
        for name in names:
            if name in row:
                fields[field] = row[name]
                break

    if fields.get("total"):
        fields["total"] = format_amount(fields["total"])

    tipo = fields.get("tipo_documento")
    fields["tipo_documento"] = DOCUMENT_TYPES.get(tipo, tipo) if tipo else "Fatura"
    if not fields.get("data_fatura"):
        fields["data_fatura"] = date.today().isoformat()

    return InvoiceRecord(**{key: value or None for key, value in fields.items()}, origem="CSV")


def extract_invoices(
        source: CSVInput,
        mapping: Optional[Dict[str, Sequence[str]]] = None,
        delimiter: str = ","
) -> List[InvoiceRecord]:
    rows = parse_csv(source, delimiter=delimiter)
    column_mapping = mapping or DEFAULT_MAPPING
    return [normalize_row(row, column_mapping) for row in rows]


def export_to_csv(
        invoices: Iterable[InvoiceRecord],
        path: Optional[Union[str, Path]] = None,
        delimiter: str = ",",
        encoding: str = "utf-8"
) -> bytes:
    """Exporta registos (chaves camelCase). Devolve os bytes e grava se houver path."""
    records = [invoice.to_json_dict() for invoice in invoices]
    if not records:
        raise ExportError("Nenhum dado para exportar")

    frame = pd.DataFrame(records).reindex(columns=EXPORT_COLUMNS).fillna("")
    content = frame.to_csv(index=False, sep=delimiter).encode(encoding, errors="replace")

    if path is not None:
        try:
            Path(path).write_bytes(content)
        except OSError as e:
            raise ExportError(f"Erro ao gravar CSV: {path}", {"path": str(path)}) from e
        logger.info("CSV exportado: %s", path)

    return content
