import hashlib
import logging
import time
import uuid
from datetime import datetime
from typing import Optional, Union

from leitor_config import settings

from .core import enrichment, saft
from .core.parser import is_at_invoice, normalize_at_data, parse_at_invoice
from .core.text_normalizer import clean_payload
from .core.validators import validate_nif
from .schema.models import InvoiceRecord
from .schema.orchestrator_models import (
    OrchestratorEvent,
    QRPipelineResult,
    SAFTPipelineResult,
    SessionContext,
)
from .store import InvoiceStore

logger = logging.getLogger(__name__)


def _check_nif(nif: Optional[str]) -> Optional[bool]:
    return validate_nif(nif) if nif else None


class Orchestrator:
    """
    Coordenador dos pipelines de leitura (QR AT e SAF-T).
    Une Normalizer -> Parser -> Enrichment -> Store com rastreabilidade.
    O estado de sessão vem de fora (SessionContext); aqui só se alimenta.
    """

    def __init__(self, store: Optional[InvoiceStore] = None):
        self.store = store

    def _calculate_hash(self, data: Union[str, bytes]) -> str:
        """Gera SHA-256 determinístico do conteúdo."""
        content = data.encode('utf-8') if isinstance(data, str) else data
        return hashlib.sha256(content).hexdigest()

    def _emit(
            self,
            result,
            session: SessionContext,
            stage: str,
            status: str,
            started: float,
            error_policy: str = "CONTINUE",
            **details
    ) -> None:
        details["duration_sec"] = round(time.time() - started, 4)
        event = OrchestratorEvent(stage=stage, status=status, details=details, error_policy=error_policy)
        result.events.append(event)
        session.record(event)

    def process_qr(
            self,
            raw: str,
            session: SessionContext,
            persist: bool = False,
            trace_id: Optional[str] = None
    ) -> QRPipelineResult:
        """
        1. NORMALIZE: limpa lixo invisível e põe as tags em maiúsculas
        2. DETECT: gate AT (A: .. I:)
        3. PARSE: fold ordenado das tags
        4. ENRICH: vencimento, categoria, integrações, dados bancários
        5. STORE: só se persist=True e houver store
        """
        result = QRPipelineResult(
            trace_id=trace_id or uuid.uuid4().hex,
            session_id=session.session_id,
            raw_metadata={
                "input_hash_sha256": self._calculate_hash(raw or ""),
                "input_length": len(raw or ""),
            }
        )
        session.scans_total += 1

        try:
            # NORMALIZE
            started = time.time()
            try:
                cleaned = clean_payload(raw or "")
                normalized, was_normalized = normalize_at_data(cleaned)
                self._emit(result, session, "NORMALIZE", "SUCCESS", started,
                           tags_normalized=was_normalized)
            except Exception as e:
                self._emit(result, session, "NORMALIZE", "FAILURE", started, "ABORT", error=str(e))
                raise

            # DETECT
            started = time.time()
            if not is_at_invoice(normalized):
                self._emit(result, session, "DETECT", "SKIPPED", started, "ABORT", is_at_invoice=False)
                result.status = "not_at_invoice"
                session.scans_success += 1
                logger.info("[%s] QR lido não é fatura AT", result.trace_id)
                return result
            self._emit(result, session, "DETECT", "SUCCESS", started, is_at_invoice=True)

            # PARSE
            started = time.time()
            try:
                fields = parse_at_invoice(normalized)
                ## só informa; um NIF inválido não trava o pipeline
                result.nif_emitente_valido = _check_nif(fields.nif_emitente)
                result.nif_adquirente_valido = _check_nif(fields.nif_adquirente)
                self._emit(result, session, "PARSE", "SUCCESS", started,
                           nif_emitente_found=bool(fields.nif_emitente),
                           nif_emitente_valido=result.nif_emitente_valido,
                           nif_adquirente_valido=result.nif_adquirente_valido,
                           total_found=bool(fields.total),
                           extra_tags=sorted(fields.extra))
            except Exception as e:
                self._emit(result, session, "PARSE", "FAILURE", started, "ABORT", error=str(e))
                raise

            # ENRICH
            started = time.time()
            try:
                category = enrichment.suggest_accounting_category(fields)
                record = InvoiceRecord(
                    **fields.model_dump(),
                    status="processed",
                    origem="QR",
                    raw_qr_content=raw,
                    data_vencimento=enrichment.calculate_due_date(fields.data_fatura, settings.DUE_DATE_DAYS),
                    categoria_contabil=category.categoria,
                )
                result.record = record
                result.category = category
                result.flags = enrichment.auto_enable_options(fields)
                result.banking = enrichment.prefill_banking_details(fields)
                self._emit(result, session, "ENRICH", "SUCCESS", started,
                           categoria=category.categoria,
                           iban_found=bool(result.banking.iban))
            except Exception as e:
                self._emit(result, session, "ENRICH", "FAILURE", started, "ABORT", error=str(e))
                raise

            # STORE
            if persist and self.store is not None:
                started = time.time()
                try:
                    self.store.create(record)
                    result.persisted = True
                    self._emit(result, session, "STORE", "SUCCESS", started, invoice_id=record.id)
                except Exception as e:
                    self._emit(result, session, "STORE", "FAILURE", started, "ABORT", error=str(e))
                    raise

            result.status = "success"
            session.scans_success += 1
            session.at_invoices += 1

        except Exception:
            ## falha já registada no evento do estágio
            result.status = "error"
            session.scans_failed += 1
            logger.exception("[%s] Falha no pipeline QR", result.trace_id)

        finally:
            result.end_time = datetime.now()

        return result

    def process_saft(
            self,
            data: bytes,
            session: SessionContext,
            persist: bool = True,
            trace_id: Optional[str] = None
    ) -> SAFTPipelineResult:
        """
        1. VALIDATE: relatório estrutural (nunca levanta)
        2. EXTRACT: cabeçalho + faturas (só se válido)
        3. STORE: importa as faturas extraídas
        """
        result = SAFTPipelineResult(
            trace_id=trace_id or uuid.uuid4().hex,
            session_id=session.session_id,
            raw_metadata={
                "input_hash_sha256": self._calculate_hash(data),
                "file_size_bytes": len(data),
            }
        )

        try:
            # VALIDATE
            started = time.time()
            report = saft.validate_saft(data)
            result.validation = report
            self._emit(result, session, "VALIDATE", "SUCCESS" if report.valid else "FAILURE", started,
                       "CONTINUE" if report.valid else "ABORT",
                       errors=len(report.errors), warnings=len(report.warnings), version=report.version)

            if not report.valid:
                result.status = "invalid"
                logger.warning("[%s] SAF-T inválido: %s", result.trace_id, "; ".join(report.errors))
                return result

            # EXTRACT
            started = time.time()
            try:
                result.header = saft.extract_header(data)
                if saft.MISSING_SOURCE_DOCUMENTS not in report.warnings:
                    result.invoices = saft.extract_invoices(data)
                self._emit(result, session, "EXTRACT", "SUCCESS", started,
                           invoices_count=len(result.invoices),
                           company_id=result.header.company_id)
            except Exception as e:
                self._emit(result, session, "EXTRACT", "FAILURE", started, "ABORT", error=str(e))
                raise

            # STORE
            if persist and self.store is not None and result.invoices:
                started = time.time()
                try:
                    self.store.create_many(result.invoices)
                    result.persisted = True
                    self._emit(result, session, "STORE", "SUCCESS", started,
                               invoices_count=len(result.invoices))
                except Exception as e:
                    self._emit(result, session, "STORE", "FAILURE", started, "ABORT", error=str(e))
                    raise

            result.status = "success"
            session.saft_imports += 1

        except Exception:
            result.status = "error"
            logger.exception("[%s] Falha no pipeline SAF-T", result.trace_id)

        finally:
            result.end_time = datetime.now()

        return result
