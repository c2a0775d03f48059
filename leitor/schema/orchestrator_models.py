import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import (
    BankingDetails,
    CategorySuggestion,
    IntegrationFlags,
    InvoiceRecord,
    SAFTHeader,
    ValidationReport,
)

Stage = Literal["NORMALIZE", "DETECT", "PARSE", "ENRICH", "VALIDATE", "EXTRACT", "STORE"]


class OrchestratorEvent(BaseModel):
    """
    Evento imutável ocorrido durante o pipeline.
    Usado para auditoria da sessão e observabilidade.
    """
    timestamp: datetime = Field(default_factory=datetime.now)
    stage: Stage
    status: Literal["SUCCESS", "FAILURE", "SKIPPED"]
    # Details deve ser flat e serializável (nunca o conteúdo do payload)
    details: Dict[str, Any] = Field(default_factory=dict)
    error_policy: Literal["ABORT", "CONTINUE"] = "ABORT"


class SessionContext(BaseModel):
    """
    Estado explícito de uma sessão de leitura.
    Criado e reiniciado pelo dono (API, script); o Orchestrator só o alimenta.
    """
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    started_at: datetime = Field(default_factory=datetime.now)

    scans_total: int = 0
    scans_success: int = 0
    scans_failed: int = 0
    at_invoices: int = 0
    saft_imports: int = 0

    events: List[OrchestratorEvent] = Field(default_factory=list)

    def record(self, event: OrchestratorEvent) -> OrchestratorEvent:
        self.events.append(event)
        return event

    def reset(self) -> None:
        self.session_id = uuid.uuid4().hex
        self.started_at = datetime.now()
        self.scans_total = self.scans_success = self.scans_failed = 0
        self.at_invoices = self.saft_imports = 0
        self.events = []

    def duration_seconds(self) -> float:
        return round((datetime.now() - self.started_at).total_seconds(), 3)


class PipelineResult(BaseModel):
    """
    Container final do processamento.
    NÃO é o evento em si, mas contém o histórico (audit trail) e o payload.
    """
    trace_id: str
    session_id: str

    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    # Audit trail: lista ordenada de eventos desta execução
    events: List[OrchestratorEvent] = Field(default_factory=list)

    # Metadados brutos (hash e tamanho do input)
    raw_metadata: Dict[str, Any] = Field(default_factory=dict)


class QRPipelineResult(PipelineResult):
    status: Literal["success", "not_at_invoice", "error"] = "error"

    # Checksum dos NIF lidos (None quando a tag não veio no QR)
    nif_emitente_valido: Optional[bool] = None
    nif_adquirente_valido: Optional[bool] = None

    record: Optional[InvoiceRecord] = None
    category: Optional[CategorySuggestion] = None
    flags: Optional[IntegrationFlags] = None
    banking: Optional[BankingDetails] = None
    persisted: bool = False


class SAFTPipelineResult(PipelineResult):
    status: Literal["success", "invalid", "error"] = "error"

    validation: Optional[ValidationReport] = None
    header: Optional[SAFTHeader] = None
    invoices: List[InvoiceRecord] = Field(default_factory=list)
    persisted: bool = False
