"""
Invoice Store: mapa em memória + persistência em ficheiro JSON.

Escritas serializadas por lock (nunca há dois update intercalados no mesmo id).
Cada operação que muda estado grava o ficheiro inteiro.
"""
import json
import logging
import math
import threading
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

from .core.validators import parse_number
from .exceptions import InputReadError, InvalidStatusError, InvoiceNotFoundError, StoreWriteError
from .schema.models import INVOICE_STATUSES, InvoiceRecord
from .schema.store_models import InvoiceFilters, InvoicePage, InvoiceStats, Pagination

logger = logging.getLogger(__name__)

_records_adapter = TypeAdapter(List[InvoiceRecord])

PROTECTED_FIELDS = {"id", "created_at"}


def _field_name(key: str) -> Optional[str]:
    """Aceita nome python (nif_emitente) ou alias JSON (nifEmitente)."""
    fields = InvoiceRecord.model_fields
    if key in fields:
        return key
    for name, info in fields.items():
        if info.alias == key:
            return name
    return None


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class InvoiceStore:
    def __init__(self, data_file: Union[str, Path]):
        self.data_file = Path(data_file)
        self.invoices: Dict[str, InvoiceRecord] = {}
        self._lock = threading.Lock()
        self.load()

    def load(self) -> None:
        if not self.data_file.exists():
            return

        try:
            raw = self.data_file.read_bytes()
        except OSError as e:
            raise InputReadError(f"Erro ao carregar faturas: {self.data_file}") from e

        try:
            records = _records_adapter.validate_json(raw or b"[]")
        except ValidationError as e:
            ## ficheiro corrompido ou editado à mão: arranca vazio
            logger.error("Erro ao carregar faturas de %s: %s", self.data_file, e)
            return

        self.invoices = {invoice.id: invoice for invoice in records}
        logger.info("%d faturas carregadas do arquivo", len(self.invoices))

    def save(self, invoices: Optional[Dict[str, InvoiceRecord]] = None) -> None:
        invoices = self.invoices if invoices is None else invoices
        payload = [invoice.to_json_dict() for invoice in invoices.values()]
        tmp_file = self.data_file.with_suffix(self.data_file.suffix + ".tmp")
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_file.replace(self.data_file)
        except OSError as e:
            raise StoreWriteError(
                f"Erro ao salvar faturas: {self.data_file}",
                {"path": str(self.data_file)}
            ) from e
        logger.debug("%d faturas salvas", len(payload))

    def _commit(self, invoices: Dict[str, InvoiceRecord]) -> None:
        ## grava primeiro; o mapa em memória só muda se o ficheiro foi escrito
        self.save(invoices)
        self.invoices = invoices

    def create(self, data: Union[InvoiceRecord, Dict[str, Any]]) -> InvoiceRecord:
        invoice = data if isinstance(data, InvoiceRecord) else InvoiceRecord.model_validate(data)
        with self._lock:
            self._commit({**self.invoices, invoice.id: invoice})
        logger.info("Fatura criada: %s", invoice.id)
        return invoice

    def create_many(self, items: Iterable[Union[InvoiceRecord, Dict[str, Any]]]) -> List[InvoiceRecord]:
        created = [
            data if isinstance(data, InvoiceRecord) else InvoiceRecord.model_validate(data)
            for data in items
        ]
        with self._lock:
            self._commit({**self.invoices, **{invoice.id: invoice for invoice in created}})
        logger.info("%d fatura(s) importada(s)", len(created))
        return created

    def find_by_id(self, invoice_id: str) -> Optional[InvoiceRecord]:
        return self.invoices.get(invoice_id)

    def get(self, invoice_id: str) -> InvoiceRecord:
        invoice = self.find_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def find_by_numero(self, numero: str) -> Optional[InvoiceRecord]:
        return next(
            (inv for inv in self.invoices.values() if inv.numero_documento == numero),
            None
        )

    def find_all(self, filters: Optional[InvoiceFilters] = None) -> InvoicePage:
        filters = filters or InvoiceFilters()
        results = list(self.invoices.values())

        if filters.status:
            results = [inv for inv in results if inv.status == filters.status]

        if filters.nif_adquirente:
            results = [inv for inv in results if inv.nif_adquirente == filters.nif_adquirente]

        inicio, fim = _parse_date(filters.data_inicio), _parse_date(filters.data_fim)
        if inicio and fim:
            results = [
                inv for inv in results
                if (d := _parse_date(inv.data_fatura)) is not None and inicio <= d <= fim
            ]

        sort_field = _field_name(filters.sort_by) or "created_at"
        results.sort(
            key=lambda inv: _sort_key(getattr(inv, sort_field)),
            reverse=filters.sort_order == "desc"
        )

        start = (filters.page - 1) * filters.limit
        end = start + filters.limit

        return InvoicePage(
            data=results[start:end],
            pagination=Pagination(
                total=len(results),
                page=filters.page,
                limit=filters.limit,
                total_pages=math.ceil(len(results) / filters.limit),
                has_next=end < len(results),
                has_prev=start > 0,
            )
        )

    def update(self, invoice_id: str, data: Dict[str, Any]) -> InvoiceRecord:
        with self._lock:
            invoice = self.get(invoice_id)
            changes = {}
            for key, value in data.items():
                name = _field_name(key)
                if name and name not in PROTECTED_FIELDS:
                    changes[name] = value

            if "status" in changes and changes["status"] not in INVOICE_STATUSES:
                raise InvalidStatusError(changes["status"], INVOICE_STATUSES)

            merged = invoice.model_dump()
            merged.update(changes)
            merged["updated_at"] = datetime.now()
            updated = InvoiceRecord.model_validate(merged)

            self._commit({**self.invoices, invoice_id: updated})

        logger.info("Fatura atualizada: %s", invoice_id)
        return updated

    def update_status(self, invoice_id: str, status: str) -> InvoiceRecord:
        if status not in INVOICE_STATUSES:
            raise InvalidStatusError(status, INVOICE_STATUSES)
        return self.update(invoice_id, {"status": status})

    def delete(self, invoice_id: str) -> bool:
        with self._lock:
            if invoice_id not in self.invoices:
                raise InvoiceNotFoundError(invoice_id)
            self._commit({key: inv for key, inv in self.invoices.items() if key != invoice_id})

        logger.info("Fatura deletada: %s", invoice_id)
        return True

    def get_stats(self) -> InvoiceStats:
        invoices = list(self.invoices.values())

        return InvoiceStats(
            total=len(invoices),
            por_status={
                status: sum(1 for inv in invoices if inv.status == status)
                for status in INVOICE_STATUSES
            },
            valor_total=sum((parse_number(inv.total) for inv in invoices), Decimal("0")),
            ultima_fatura=max(invoices, key=lambda inv: inv.created_at) if invoices else None,
        )


def _sort_key(value: Any):
    ## None primeiro em asc; restantes valores comparados como texto
    if value is None:
        return (0, "")
    if isinstance(value, datetime):
        return (1, value.isoformat())
    return (1, str(value))
