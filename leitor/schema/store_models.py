from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import Field

from .models import CamelModel, InvoiceRecord, InvoiceStatus


class InvoiceFilters(CamelModel):
    """
    Filtros de listagem. Datas só filtram com início E fim presentes.
    """
    status: Optional[InvoiceStatus] = None
    nif_adquirente: Optional[str] = None
    data_inicio: Optional[str] = None
    data_fim: Optional[str] = None
    sort_by: str = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=500)


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class InvoicePage(CamelModel):
    data: List[InvoiceRecord]
    pagination: Pagination


class InvoiceStats(CamelModel):
    total: int
    por_status: Dict[str, int]
    valor_total: Decimal
    ultima_fatura: Optional[InvoiceRecord] = None
