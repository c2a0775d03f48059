import random
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

InvoiceStatus = Literal["pending", "processed", "paid", "draft"]
INVOICE_STATUSES = ("pending", "processed", "paid", "draft")


class CamelModel(BaseModel):  ##     Contrato JSON em camelCase (nifEmitente, dataFatura...)
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ParsedInvoiceFields(CamelModel):
    """
    Resultado do parse de um QR AT.
    Todos os campos são opcionais: parse parcial é o modo normal.
    """
    # A-E: Identificação
    nif_emitente: Optional[str] = None
    nif_adquirente: Optional[str] = None
    pais_emitente: Optional[str] = None
    pais_adquirente: Optional[str] = None
    tipo_adquirente: Optional[str] = None

    # F-H + D: Documento
    data_fatura: Optional[str] = None
    numero_documento: Optional[str] = None
    codigo_documento: Optional[str] = None
    tipo_documento: Optional[str] = None

    # I1-I8: Impostos e valores
    moeda: Optional[str] = None
    valores_iva_taxas: Optional[str] = Field(default=None, alias="valoresIVATaxas")
    iva_isento: Optional[str] = None
    iva_regime_especial: Optional[str] = None
    total: Optional[str] = None
    retencao: Optional[str] = None
    base_tributavel: Optional[str] = None
    iva: Optional[str] = None

    # J1-J6: Quebra por taxa
    base_iva6: Optional[str] = None
    iva6: Optional[str] = None
    base_iva13: Optional[str] = None
    iva13: Optional[str] = None
    base_iva23: Optional[str] = None
    iva23: Optional[str] = None

    # N: total de IVA (a mesma tag também alimenta `descricao`)
    total_iva: Optional[str] = Field(default=None, alias="totalIVA")

    # Q-R: Isenção
    codigo_isencao: Optional[str] = None
    motivo_isencao: Optional[str] = None

    # K-N: Texto livre, case preservado
    nome_emitente: Optional[str] = None
    morada_emitente: Optional[str] = None
    iban: Optional[str] = None
    descricao: Optional[str] = None

    raw_content: Optional[str] = None

    # Tags não previstas (P, S..Z, I9...)
    extra: Dict[str, str] = Field(default_factory=dict)


class InvoiceLine(CamelModel):  ##     Linha de fatura SAF-T
    numero: Optional[str] = None
    descricao: Optional[str] = None
    quantidade: Decimal = Decimal("0")
    preco_unitario: Decimal = Decimal("0")
    desconto: Decimal = Decimal("0")
    taxa_iva: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


def generate_invoice_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"INV-{int(time.time() * 1000)}-{suffix}"


class InvoiceRecord(ParsedInvoiceFields):
    """
    Forma persistida no store. Superset de ParsedInvoiceFields.
    """
    id: str = Field(default_factory=generate_invoice_id)
    status: InvoiceStatus = "pending"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    raw_qr_content: str = Field(default="", alias="rawQRContent")

    nome_cliente: Optional[str] = None
    data_vencimento: Optional[str] = None
    categoria_contabil: Optional[str] = None
    origem: Literal["QR", "XML SAF-T", "CSV", "manual"] = "manual"
    estado_documento: Optional[str] = None
    linhas: List[InvoiceLine] = Field(default_factory=list)


class CategorySuggestion(CamelModel):
    categoria: str = "outros"
    nome: str = "Outros"
    motivo: str = ""


class IntegrationFlags(CamelModel):  ##     Integrações a ligar por defeito
    controle_iva: bool = False
    contas_pagar: bool = False
    integracao_bancaria: bool = False
    alertas: bool = False


class BankingDetails(CamelModel):
    beneficiario: Optional[str] = None
    iban: Optional[str] = None
    valor: Optional[str] = None
    referencia: Optional[str] = None


class QRSummary(CamelModel):  ##     Painel de resumo (split estrito KEY:VALUE)
    nif_emitente: Optional[str] = None
    nif_adquirente: Optional[str] = None
    pais: Optional[str] = None
    tipo_documento: Optional[str] = None
    data: Optional[str] = None
    valor_total: Optional[str] = None
    valor_iva: Optional[str] = None
    valor_com_iva: Optional[str] = None


class SAFTHeader(CamelModel):
    audit_file_version: str = ""
    company_id: str = Field(default="", alias="companyID")
    nome_empresa: str = ""
    nif_empresa: str = ""
    morada_empresa: str = ""
    ano_fiscal: str = ""
    data_inicio: str = ""
    data_fim: str = ""
    moeda: str = "EUR"
    data_producao: str = ""
    software: str = ""
    versao_software: str = ""


class ValidationReport(CamelModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    version: Optional[str] = None
