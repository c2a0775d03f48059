"""
FastAPI application entry point.
Exposes the invoice reader with strict separation of concerns:
- API validates input and dispatches
- Orchestrator runs the QR / SAF-T pipelines
- InvoiceStore owns persistence
"""
import logging
from datetime import date
from typing import Annotated, Any, Dict

from fastapi import Body, Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from api.dependencies import get_orchestrator, get_session, get_store, invoice_filters, read_upload
from api.schemas import (
    CSVImportResponse,
    HealthResponse,
    MessageResponse,
    QRProcessRequest,
    SAFTImportResponse,
    SessionResponse,
    StatusUpdateRequest,
)
from leitor.core import csv_parser, saft
from leitor.exceptions import (
    ExportError,
    InputReadError,
    InvalidStatusError,
    InvoiceNotFoundError,
    LeitorError,
    SAFTStructureError,
    StoreWriteError,
)
from leitor.orchestrator import Orchestrator
from leitor.schema.models import InvoiceRecord, ValidationReport
from leitor.schema.orchestrator_models import QRPipelineResult, SessionContext
from leitor.schema.store_models import InvoiceFilters, InvoicePage, InvoiceStats
from leitor.store import InvoiceStore
from leitor_config import settings

logging.basicConfig(
    filename=settings.LOG_FILE,
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s [%(levelname)s] %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Leitor de faturas AT: QR, SAF-T (PT) e CSV",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.state.store = InvoiceStore(settings.DATA_FILE)
app.state.session = SessionContext()

StoreDep = Annotated[InvoiceStore, Depends(get_store)]
SessionDep = Annotated[SessionContext, Depends(get_session)]
OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]

ERROR_STATUS = {
    InvoiceNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStatusError: status.HTTP_400_BAD_REQUEST,
    InputReadError: status.HTTP_400_BAD_REQUEST,
    ExportError: status.HTTP_400_BAD_REQUEST,
    SAFTStructureError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StoreWriteError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _saft_company() -> Dict[str, str]:
    return {
        "CompanyID": settings.SAFT_COMPANY_ID,
        "TaxRegistrationNumber": settings.SAFT_TAX_REGISTRATION_NUMBER,
        "CompanyName": settings.SAFT_COMPANY_NAME,
        "BusinessName": settings.SAFT_BUSINESS_NAME,
        "AddressDetail": settings.SAFT_ADDRESS_DETAIL,
        "City": settings.SAFT_CITY,
        "PostalCode": settings.SAFT_POSTAL_CODE,
        "Country": settings.SAFT_COUNTRY,
        "ProductID": settings.SAFT_PRODUCT_ID,
        "ProductVersion": settings.SAFT_PRODUCT_VERSION,
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(store: StoreDep):
    """
    Health check endpoint.
    Returns service status and basic diagnostics.
    """
    return HealthResponse(
        status="healthy",
        version=settings.APP_VERSION,
        checks={
            "api": True,
            "store": store is not None,
        }
    )


# QR

@app.post("/v1/qr/process", response_model=QRPipelineResult, tags=["QR"])
def process_qr(request: QRProcessRequest, session: SessionDep, orchestrator: OrchestratorDep):
    """
    Process a raw QR payload.

    **Example:**
    ```bash
    curl -X POST http://localhost:8000/v1/qr/process \\
      -H "Content-Type: application/json" \\
      -d '{"content":"A:516562240*B:123456789*F:20251002*O:123.45","persist":true}'
    ```

    **Flow:**
    1. Clean payload and normalize tag case
    2. Reject non-AT payloads (status `not_at_invoice`)
    3. Parse, enrich and optionally persist
    """
    result = orchestrator.process_qr(
        request.content,
        session,
        persist=request.persist,
        trace_id=request.trace_id
    )

    if result.status == "error":
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Erro ao processar QR (trace_id={result.trace_id})"
        )

    return result


# Invoices

@app.get("/v1/invoices", response_model=InvoicePage, tags=["Invoices"])
def list_invoices(store: StoreDep, filters: Annotated[InvoiceFilters, Depends(invoice_filters)]):
    return store.find_all(filters)


@app.get("/v1/invoices/stats", response_model=InvoiceStats, tags=["Invoices"])
def invoice_stats(store: StoreDep):
    return store.get_stats()


@app.get("/v1/invoices/numero/{numero}", response_model=InvoiceRecord, tags=["Invoices"])
def get_invoice_by_numero(numero: str, store: StoreDep):
    invoice = store.find_by_numero(numero)
    if invoice is None:
        raise InvoiceNotFoundError(numero)
    return invoice


@app.get("/v1/invoices/{invoice_id}", response_model=InvoiceRecord, tags=["Invoices"])
def get_invoice(invoice_id: str, store: StoreDep):
    return store.get(invoice_id)


@app.post("/v1/invoices", response_model=InvoiceRecord, status_code=status.HTTP_201_CREATED, tags=["Invoices"])
def create_invoice(store: StoreDep, data: Annotated[Dict[str, Any], Body()]):
    return store.create(data)


@app.put("/v1/invoices/{invoice_id}", response_model=InvoiceRecord, tags=["Invoices"])
def update_invoice(invoice_id: str, store: StoreDep, data: Annotated[Dict[str, Any], Body()]):
    return store.update(invoice_id, data)


@app.patch("/v1/invoices/{invoice_id}/status", response_model=InvoiceRecord, tags=["Invoices"])
def update_invoice_status(invoice_id: str, request: StatusUpdateRequest, store: StoreDep):
    return store.update_status(invoice_id, request.status)


@app.delete("/v1/invoices/{invoice_id}", response_model=MessageResponse, tags=["Invoices"])
def delete_invoice(invoice_id: str, store: StoreDep):
    store.delete(invoice_id)
    return MessageResponse(message="Fatura deletada com sucesso")


# Files

@app.post("/v1/files/xml", response_model=SAFTImportResponse, tags=["Files"])
async def upload_saft(
        file: Annotated[UploadFile, File(description="SAF-T (PT) XML")],
        session: SessionDep,
        orchestrator: OrchestratorDep
):
    """
    Validate, extract and store the invoices of a SAF-T file.
    Invalid structure -> 422 with the validation report.
    """
    content = await read_upload(file, ".xml")
    result = orchestrator.process_saft(content, session)

    if result.status == "invalid":
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "XML SAF-T inválido", "errors": result.validation.errors}
        )
    if result.status == "error":
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Erro ao processar XML (trace_id={result.trace_id})"
        )

    logger.info("[%s] XML processado: %d fatura(s)", result.trace_id, len(result.invoices))
    return SAFTImportResponse(
        trace_id=result.trace_id,
        status=result.status,
        validation=result.validation,
        header=result.header,
        imported=len(result.invoices) if result.persisted else 0,
        invoices=result.invoices,
    )


@app.post("/v1/files/xml/validate", response_model=ValidationReport, tags=["Files"])
async def validate_saft_file(file: Annotated[UploadFile, File(description="SAF-T (PT) XML")]):
    content = await read_upload(file, ".xml")
    return saft.validate_saft(content)


@app.post("/v1/files/csv", response_model=CSVImportResponse, tags=["Files"])
async def upload_csv(file: Annotated[UploadFile, File(description="CSV de faturas")], store: StoreDep):
    content = await read_upload(file, ".csv")
    invoices = csv_parser.extract_invoices(content, delimiter=settings.CSV_DELIMITER)
    created = store.create_many(invoices) if invoices else []

    logger.info("CSV processado: %d fatura(s)", len(created))
    return CSVImportResponse(imported=len(created), invoices=created)


# Export

@app.get("/v1/export/saft", tags=["Export"])
def export_saft(store: StoreDep):
    content = saft.build_saft_export(store.invoices.values(), _saft_company())
    filename = f"SAFT_PT_{date.today().isoformat()}.xml"
    return Response(
        content=content,
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.get("/v1/export/csv", tags=["Export"])
def export_csv(store: StoreDep):
    content = csv_parser.export_to_csv(store.invoices.values(), delimiter=settings.CSV_DELIMITER)
    filename = f"faturas_{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


# Session

@app.get("/v1/session", response_model=SessionResponse, tags=["Session"])
def get_session_stats(session: SessionDep):
    return SessionResponse(
        session_id=session.session_id,
        started_at=session.started_at,
        duration_seconds=session.duration_seconds(),
        scans_total=session.scans_total,
        scans_success=session.scans_success,
        scans_failed=session.scans_failed,
        at_invoices=session.at_invoices,
        saft_imports=session.saft_imports,
        events_count=len(session.events),
    )


@app.post("/v1/session/reset", response_model=MessageResponse, tags=["Session"])
def reset_session(session: SessionDep):
    session.reset()
    return MessageResponse(message="Sessão reiniciada")


# Error handling

@app.exception_handler(LeitorError)
async def leitor_exception_handler(request: Request, exc: LeitorError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    logger.warning("%s: %s", type(exc).__name__, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.details}
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Dados inválidos", "error": {"errors": exc.errors(include_url=False, include_context=False, include_input=False)}}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """
    Global exception handler for unexpected errors.
    """
    logger.exception("Erro inesperado")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.DEBUG else "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG
    )
