"""
SAF-T (PT) XML: extração de faturas, cabeçalho, validação estrutural
e exportação (template fixo de PurchaseInvoices).

Ordem de leitura:
1. Encoding declarado no prólogo (encoding="...")
2. Descodificação Latin-1 / CP1252 / UTF-8
3. Parse da árvore (nomes locais, namespace ignorado)
4. Reparação de encoding recursiva em todas as folhas de texto
"""
import base64
import logging
import re
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from lxml import etree

from ..exceptions import ExportError, SAFTStructureError
from ..schema.models import InvoiceLine, InvoiceRecord, SAFTHeader, ValidationReport
from .parser import DOCUMENT_TYPES
from .text_normalizer import auto_fix_encoding, fix_object_encoding
from .validators import format_amount, parse_number

logger = logging.getLogger(__name__)

SAFT_NAMESPACE = "urn:OECD:StandardAuditFile-Tax:PT_1.04_01"
KNOWN_VERSIONS = ("1.04_01", "1.03_01")
SAFT_HASH_MAX_LENGTH = 172
MISSING_SOURCE_DOCUMENTS = "SourceDocuments não encontrado"

ENCODING_DECLARATION = re.compile(rb'encoding=["\']([^"\']+)["\']', re.IGNORECASE)
XML_PROLOG = re.compile(r'^\s*<\?xml[^>]*\?>')

LATIN1_NAMES = {"iso-8859-1", "iso8859-1", "latin1", "latin-1"}
CP1252_NAMES = {"windows-1252", "cp1252"}

SAFTInput = Union[bytes, str]


def detect_declared_encoding(xml_bytes: bytes) -> str:
    m = ENCODING_DECLARATION.search(xml_bytes[:200])
    if not m:
        return "utf-8-sig"

    declared = m.group(1).decode("ascii", "ignore").lower()
    logger.debug("Encoding detectado no XML: %s", declared)

    if declared in LATIN1_NAMES:
        return "latin-1"
    if declared in CP1252_NAMES:
        return "cp1252"
    return "utf-8-sig"


def decode_xml(xml: SAFTInput) -> str:
    if isinstance(xml, str):
        return xml

    encoding = detect_declared_encoding(xml)
    return xml.decode(encoding, errors="replace")


def _local_name(element) -> str:
    return etree.QName(element).localname


def element_to_dict(element) -> Union[str, Dict[str, Any]]:
    """
    Árvore -> dict: folhas viram string (trim), filhos repetidos viram lista,
    atributos são fundidos no dict do elemento.
    """
    children = [child for child in element if isinstance(child.tag, str)]
    if not children and not element.attrib:
        return (element.text or "").strip()

    node: Dict[str, Any] = {}
    for key, value in element.attrib.items():
        node[etree.QName(key).localname] = value

    for child in children:
        name = _local_name(child)
        value = element_to_dict(child)
        if name in node:
            if not isinstance(node[name], list):
                node[name] = [node[name]]
            node[name].append(value)
        else:
            node[name] = value

    return node


def parse_saft(xml: SAFTInput) -> Dict[str, Any]:
    """
    Parse completo -> {'AuditFile': {...}} já com encoding reparado.
    XML malformado -> SAFTStructureError.
    """
    text = XML_PROLOG.sub("", decode_xml(xml), count=1)
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)

    try:
        root = etree.fromstring(text.encode("utf-8"), parser)
    except etree.XMLSyntaxError as e:
        raise SAFTStructureError(f"Falha ao processar XML: {e}") from e

    tree = {_local_name(root): element_to_dict(root)}
    return fix_object_encoding(tree)


def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    return value if isinstance(value, list) else [value]


def _get(node: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _text(node: Any, *path: str) -> str:
    value = _get(node, *path)
    return value if isinstance(value, str) else ""


def _audit_file(data: Dict[str, Any]) -> Dict[str, Any]:
    audit_file = data.get("AuditFile")
    return audit_file if isinstance(audit_file, dict) else {}


def _header_from_tree(data: Dict[str, Any]) -> SAFTHeader:
    header = _get(data, "AuditFile", "Header")
    if not isinstance(header, dict):
        raise SAFTStructureError("Cabeçalho SAF-T (Header) não encontrado")

    return SAFTHeader(
        audit_file_version=_text(header, "AuditFileVersion"),
        company_id=_text(header, "CompanyID"),
        nome_empresa=_text(header, "CompanyName"),
        nif_empresa=_text(header, "TaxRegistrationNumber"),
        morada_empresa=_text(header, "CompanyAddress", "AddressDetail"),
        ano_fiscal=_text(header, "FiscalYear"),
        data_inicio=_text(header, "StartDate"),
        data_fim=_text(header, "EndDate"),
        moeda=_text(header, "CurrencyCode") or "EUR",
        data_producao=_text(header, "DateCreated"),
        software=_text(header, "ProductID") or _text(header, "SoftwareName"),
        versao_software=_text(header, "ProductVersion") or _text(header, "SoftwareVersion"),
    )


def extract_header(xml: SAFTInput) -> SAFTHeader:
    return _header_from_tree(parse_saft(xml))


def _customers_by_id(data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    customers = _as_list(_get(data, "AuditFile", "MasterFiles", "Customer"))
    return {
        _text(customer, "CustomerID"): customer
        for customer in customers
        if isinstance(customer, dict) and _text(customer, "CustomerID")
    }


def extract_lines(lines: Any) -> List[InvoiceLine]:
    result = []
    for line in _as_list(lines):
        if not isinstance(line, dict):
            continue
        result.append(InvoiceLine(
            numero=_text(line, "LineNumber"),
            descricao=auto_fix_encoding(_text(line, "Description")),
            quantidade=parse_number(_text(line, "Quantity")),
            preco_unitario=parse_number(_text(line, "UnitPrice")),
            desconto=parse_number(_text(line, "SettlementAmount")),
            taxa_iva=parse_number(_text(line, "Tax", "TaxPercentage")),
            total=parse_number(_text(line, "CreditAmount") or _text(line, "DebitAmount")),
        ))
    return result


def normalize_invoice(
        invoice: Dict[str, Any],
        header: Optional[SAFTHeader] = None,
        customers: Optional[Dict[str, Dict[str, Any]]] = None
) -> InvoiceRecord:
    """
    Fatura SAF-T -> InvoiceRecord.
    NetTotal explícito se existir; senão GrossTotal - TaxPayable.
    """
    totals = _get(invoice, "DocumentTotals") or {}
    gross = parse_number(_text(totals, "GrossTotal"))
    tax = parse_number(_text(totals, "TaxPayable"))
    net_text = _text(totals, "NetTotal")
    net = parse_number(net_text) if net_text else gross - tax

    customer = (customers or {}).get(_text(invoice, "CustomerID"), {})
    invoice_type = _text(invoice, "InvoiceType")
    status_code = _text(invoice, "DocumentStatus", "InvoiceStatus") or _text(invoice, "InvoiceStatus")

    extra = {
        key: _text(invoice, key)
        for key in ("Hash", "HashControl", "Period")
        if _text(invoice, key)
    }

    return InvoiceRecord(
        numero_documento=_text(invoice, "InvoiceNo"),
        data_fatura=_text(invoice, "InvoiceDate"),
        codigo_documento=_text(invoice, "ATCUD") or None,
        tipo_documento=DOCUMENT_TYPES.get(invoice_type, invoice_type),
        estado_documento="Anulado" if status_code == "A" else "Normal",
        nif_emitente=header.nif_empresa if header else None,
        nome_emitente=header.nome_empresa if header else None,
        nif_adquirente=_text(invoice, "CustomerTaxID") or _text(customer, "CustomerTaxID") or None,
        nome_cliente=_text(invoice, "CustomerName") or _text(customer, "CompanyName") or None,
        moeda=_text(totals, "Currency", "CurrencyCode") or (header.moeda if header else "EUR"),
        total=f"{gross:.2f}",
        iva=f"{tax:.2f}",
        base_tributavel=f"{net:.2f}",
        linhas=extract_lines(invoice.get("Line")),
        extra=extra,
        origem="XML SAF-T",
        status="processed",
    )


def extract_invoices(xml: SAFTInput) -> List[InvoiceRecord]:
    """
    Extrai SourceDocuments/SalesInvoices/Invoice[].
    SourceDocuments ausente -> SAFTStructureError (falha rápida).
    """
    data = parse_saft(xml)
    audit_file = _audit_file(data)

    if "SourceDocuments" not in audit_file:
        raise SAFTStructureError("Estrutura SAF-T inválida: SourceDocuments não encontrado")

    invoices = _as_list(_get(audit_file, "SourceDocuments", "SalesInvoices", "Invoice"))
    if not invoices:
        logger.warning("Nenhuma fatura encontrada no XML")
        return []

    header = _header_from_tree(data) if isinstance(_get(data, "AuditFile", "Header"), dict) else None
    customers = _customers_by_id(data)

    records = [
        normalize_invoice(invoice, header, customers)
        for invoice in invoices
        if isinstance(invoice, dict)
    ]
    logger.info("%d fatura(s) extraída(s) do SAF-T", len(records))
    return records


def validate_saft(xml: SAFTInput) -> ValidationReport:
    """
    Validação estrutural. Nunca levanta exceção.
    - raiz AuditFile ausente/XML ilegível: erro
    - Header ausente: erro
    - SourceDocuments ausente: aviso
    - versão fora de 1.04_01 / 1.03_01: aviso
    """
    errors: List[str] = []
    warnings: List[str] = []

    try:
        data = parse_saft(xml)
    except SAFTStructureError as e:
        return ValidationReport(valid=False, errors=[f"Erro ao validar: {e.message}"])

    if "AuditFile" not in data:
        errors.append("Estrutura SAF-T inválida: AuditFile não encontrado")

    audit_file = _audit_file(data)

    if "Header" not in audit_file:
        errors.append("Cabeçalho (Header) não encontrado")

    if "SourceDocuments" not in audit_file:
        warnings.append(MISSING_SOURCE_DOCUMENTS)

    version = _text(audit_file, "Header", "AuditFileVersion") or None
    if version and version not in KNOWN_VERSIONS:
        warnings.append(f"Versão SAF-T não standard: {version}")

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings, version=version)


# EXPORTAÇÃO

def generate_saft_hash(invoice: InvoiceRecord) -> str:
    """
    Base64 de numero+data+total, truncado a 172 caracteres.
    Placeholder NÃO criptográfico: não é uma assinatura SAF-T real.
    """
    hash_string = f"{invoice.numero_documento or ''}{invoice.data_fatura or ''}{invoice.total or ''}"
    return base64.b64encode(hash_string.encode("utf-8")).decode("ascii")[:SAFT_HASH_MAX_LENGTH]


def _sub(parent, tag: str, text: Any = None):
    element = etree.SubElement(parent, f"{{{SAFT_NAMESPACE}}}{tag}")
    if text is not None:
        element.text = str(text)
    return element


def _reverse_document_type(tipo: Optional[str]) -> str:
    for code, name in DOCUMENT_TYPES.items():
        if tipo in (code, name):
            return code
    return "FT"


def build_saft_export(
        invoices: Iterable[InvoiceRecord],
        company: Dict[str, str],
        today: Optional[date] = None
) -> bytes:
    """
    Gera SAF-T com Header + SourceDocuments/PurchaseInvoices/Invoice[].

    company: CompanyID, TaxRegistrationNumber, CompanyName, BusinessName,
             AddressDetail, City, PostalCode, Country, ProductID, ProductVersion
    """
    invoices = list(invoices)
    if not invoices:
        raise ExportError("Nenhuma fatura para exportar")

    today = today or date.today()

    root = etree.Element(f"{{{SAFT_NAMESPACE}}}AuditFile", nsmap={None: SAFT_NAMESPACE})

    header = _sub(root, "Header")
    _sub(header, "AuditFileVersion", "1.04_01")
    _sub(header, "CompanyID", company.get("CompanyID", ""))
    _sub(header, "TaxRegistrationNumber", company.get("TaxRegistrationNumber", ""))
    _sub(header, "TaxAccountingBasis", "F")
    _sub(header, "CompanyName", company.get("CompanyName", ""))
    _sub(header, "BusinessName", company.get("BusinessName", ""))
    address = _sub(header, "CompanyAddress")
    _sub(address, "AddressDetail", company.get("AddressDetail", ""))
    _sub(address, "City", company.get("City", ""))
    _sub(address, "PostalCode", company.get("PostalCode", ""))
    _sub(address, "Country", company.get("Country", "PT"))
    _sub(header, "FiscalYear", today.year)
    _sub(header, "StartDate", f"{today.year}-01-01")
    _sub(header, "EndDate", f"{today.year}-12-31")
    _sub(header, "CurrencyCode", "EUR")
    _sub(header, "DateCreated", today.isoformat())
    _sub(header, "TaxEntity", "Global")
    _sub(header, "ProductCompanyTaxID", company.get("TaxRegistrationNumber", ""))
    _sub(header, "SoftwareCertificateNumber", "0")
    _sub(header, "ProductID", company.get("ProductID", ""))
    _sub(header, "ProductVersion", company.get("ProductVersion", ""))

    purchase = _sub(_sub(root, "SourceDocuments"), "PurchaseInvoices")
    total_debit = sum((parse_number(inv.total) for inv in invoices), Decimal("0"))
    _sub(purchase, "NumberOfEntries", len(invoices))
    _sub(purchase, "TotalDebit", f"{total_debit:.2f}")
    _sub(purchase, "TotalCredit", "0.00")

    for index, invoice in enumerate(invoices):
        node = _sub(purchase, "Invoice")
        _sub(node, "InvoiceNo", invoice.numero_documento or f"INV{index + 1}")
        _sub(node, "InvoiceStatus", "N")
        _sub(node, "Hash", generate_saft_hash(invoice))
        _sub(node, "InvoiceDate", invoice.data_fatura or today.isoformat())
        _sub(node, "InvoiceType", _reverse_document_type(invoice.tipo_documento))
        _sub(node, "SupplierID", invoice.nif_emitente or "999999999")
        _sub(node, "CustomerID", invoice.nif_adquirente or "999999999")
        totals = _sub(node, "DocumentTotals")
        _sub(totals, "TaxPayable", format_amount(invoice.iva))
        _sub(totals, "NetTotal", format_amount(invoice.base_tributavel))
        _sub(totals, "GrossTotal", format_amount(invoice.total))

    logger.info("Exportação SAF-T: %d fatura(s)", len(invoices))
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)
