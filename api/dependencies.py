"""
FastAPI dependency injection utilities.
Handles upload validation and access to the shared store / session.
"""
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, Query, Request, UploadFile, status

from leitor.orchestrator import Orchestrator
from leitor.schema.orchestrator_models import SessionContext
from leitor.schema.store_models import InvoiceFilters
from leitor.store import InvoiceStore
from leitor_config import settings


def get_store(request: Request) -> InvoiceStore:
    return request.app.state.store


def get_session(request: Request) -> SessionContext:
    return request.app.state.session


def get_orchestrator(request: Request) -> Orchestrator:
    return Orchestrator(store=request.app.state.store)


async def read_upload(file: UploadFile, expected_extension: str) -> bytes:
    """
    Validate uploaded file.

    Args:
        file: Uploaded file from multipart form
        expected_extension: '.xml' or '.csv'

    Returns:
        File bytes

    Raises:
        HTTPException: If validation fails
    """
    extension = Path(file.filename or "").suffix.lower()

    if extension not in settings.ALLOWED_UPLOAD_EXTENSIONS or extension != expected_extension:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Tipo de ficheiro não permitido. Esperado: {expected_extension}"
        )

    content = await file.read()

    if len(content) > settings.max_upload_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Ficheiro demasiado grande. Máximo: {settings.API_MAX_UPLOAD_SIZE_MB}MB"
        )

    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Nenhum arquivo enviado"
        )

    return content


def invoice_filters(
        status_filter: Optional[str] = Query(None, alias="status"),
        nif_adquirente: Optional[str] = Query(None, alias="nifAdquirente"),
        data_inicio: Optional[str] = Query(None, alias="dataInicio"),
        data_fim: Optional[str] = Query(None, alias="dataFim"),
        sort_by: str = Query("createdAt", alias="sortBy"),
        sort_order: str = Query("desc", alias="sortOrder"),
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=500),
) -> InvoiceFilters:
    """Query string (camelCase) -> InvoiceFilters. Valores inválidos -> 422."""
    return InvoiceFilters(
        status=status_filter,
        nif_adquirente=nif_adquirente,
        data_inicio=data_inicio,
        data_fim=data_fim,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
