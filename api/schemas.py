"""
Pydantic schemas for API contracts.
Request bodies only; responses reuse the leitor models (camelCase JSON).
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from leitor.schema.models import CamelModel, InvoiceRecord, SAFTHeader, ValidationReport


class QRProcessRequest(BaseModel):
    """
    Raw string yielded by the QR decoder.
    """
    content: str = Field(..., min_length=1, description="Payload bruto do QR")
    persist: bool = Field(default=False, description="Guardar a fatura no store")
    trace_id: Optional[str] = Field(None, description="Distributed tracing ID")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content não pode ser vazio")
        return v


class StatusUpdateRequest(BaseModel):
    status: str


class CSVImportResponse(CamelModel):
    imported: int
    invoices: List[InvoiceRecord]


class SAFTImportResponse(CamelModel):
    trace_id: str
    status: Literal["success", "invalid", "error"]
    validation: Optional[ValidationReport] = None
    header: Optional[SAFTHeader] = None
    imported: int = 0
    invoices: List[InvoiceRecord] = Field(default_factory=list)


class SessionResponse(CamelModel):
    session_id: str
    started_at: datetime
    duration_seconds: float
    scans_total: int
    scans_success: int
    scans_failed: int
    at_invoices: int
    saft_imports: int
    events_count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """
    Health check response.
    """
    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    timestamp: datetime = Field(default_factory=datetime.now)
    checks: Dict[str, bool] = Field(default_factory=dict)
