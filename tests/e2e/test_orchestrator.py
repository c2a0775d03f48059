import pytest
from unittest.mock import patch

from leitor.orchestrator import Orchestrator
from leitor.schema.orchestrator_models import QRPipelineResult, SAFTPipelineResult
from leitor.store import InvoiceStore

pytestmark = pytest.mark.e2e

# Testa o encadeamento (wiring) dos estágios; a lógica de cada estágio
# já é coberta pelos testes unitários.


@pytest.fixture
def orchestrator(store):
    return Orchestrator(store=store)


def stages(result):
    return [event.stage for event in result.events]


def test_qr_success_flow(orchestrator, session, qr_payload):
    result = orchestrator.process_qr(qr_payload, session, trace_id="test-trace-123")

    assert isinstance(result, QRPipelineResult)
    assert result.status == "success"
    assert result.trace_id == "test-trace-123"
    assert result.session_id == session.session_id
    assert stages(result) == ["NORMALIZE", "DETECT", "PARSE", "ENRICH"]
    assert all(event.status == "SUCCESS" for event in result.events)
    assert result.end_time is not None

    record = result.record
    assert record.origem == "QR"
    assert record.status == "processed"
    assert record.raw_qr_content == qr_payload
    assert record.data_vencimento == "2025-11-01"
    assert record.categoria_contabil == "servicos-profissionais"
    assert record.nome_emitente == "Instituto AreLuna Medicina Dentária Avançada, Lda"

    assert result.category.categoria == "servicos-profissionais"
    assert result.flags.controle_iva is True
    assert result.flags.integracao_bancaria is True
    assert result.flags.contas_pagar is False
    assert result.banking.referencia == "2240123251002"

    assert result.persisted is False
    assert orchestrator.store.invoices == {}


def test_qr_session_counters_and_events(orchestrator, session, qr_payload):
    orchestrator.process_qr(qr_payload, session)
    orchestrator.process_qr("https://exemplo.pt", session)

    assert session.scans_total == 2
    assert session.scans_success == 2
    assert session.scans_failed == 0
    assert session.at_invoices == 1
    assert len(session.events) == 4 + 2


def test_qr_persist_stores_record(orchestrator, session, qr_payload):
    result = orchestrator.process_qr(qr_payload, session, persist=True)

    assert result.persisted is True
    assert stages(result)[-1] == "STORE"
    assert result.events[-1].details["invoice_id"] == result.record.id
    assert orchestrator.store.find_by_id(result.record.id).numero_documento == "FT 2025/123"


def test_qr_persist_without_store_is_skipped(session, qr_payload):
    result = Orchestrator().process_qr(qr_payload, session, persist=True)

    assert result.status == "success"
    assert result.persisted is False
    assert "STORE" not in stages(result)


def test_qr_lowercase_tags_and_invisible_chars(orchestrator, session):
    result = orchestrator.process_qr("\ufeffa:501442600*b:123456789*f:20250101*o:12.00\r\n", session)

    assert result.status == "success"
    assert result.events[0].details["tags_normalized"] is True
    assert result.record.nif_emitente == "501442600"
    assert result.record.nome_emitente == "Vodafone Portugal"
    assert result.record.data_fatura == "2025-01-01"


def test_qr_not_at_invoice(orchestrator, session):
    result = orchestrator.process_qr("https://exemplo.pt/produto/123", session)

    assert result.status == "not_at_invoice"
    assert stages(result) == ["NORMALIZE", "DETECT"]
    assert result.events[-1].status == "SKIPPED"
    assert result.record is None


def test_qr_parser_failure_is_recorded(orchestrator, session, qr_payload):
    with patch("leitor.orchestrator.parse_at_invoice") as mock_parser:
        mock_parser.side_effect = RuntimeError("Parser Crash")

        result = orchestrator.process_qr(qr_payload, session)

    assert result.status == "error"
    assert stages(result) == ["NORMALIZE", "DETECT", "PARSE"]
    assert result.events[-1].status == "FAILURE"
    assert result.events[-1].error_policy == "ABORT"
    assert "Parser Crash" in result.events[-1].details["error"]
    assert session.scans_failed == 1
    assert result.end_time is not None


def test_qr_payload_never_in_event_details(orchestrator, session, qr_payload):
    result = orchestrator.process_qr(qr_payload, session)

    for event in result.events:
        assert qr_payload not in str(event.details)
    assert len(result.raw_metadata["input_hash_sha256"]) == 64


def test_qr_nif_checksum_reported(orchestrator, session, qr_payload):
    result = orchestrator.process_qr(qr_payload, session)

    assert result.nif_emitente_valido is True
    assert result.nif_adquirente_valido is True
    assert result.events[2].details["nif_emitente_valido"] is True


def test_qr_invalid_nif_does_not_block(orchestrator, session):
    result = orchestrator.process_qr("A:516562240*B:123456788*F:20250101*O:12.00", session)

    assert result.status == "success"
    assert result.nif_emitente_valido is True
    assert result.nif_adquirente_valido is False
    assert result.events[2].details["nif_adquirente_valido"] is False
    assert result.record.nif_adquirente == "123456788"


def test_qr_without_buyer_nif(orchestrator, session):
    result = orchestrator.process_qr("A:516562240*F:20250101*O:12.00", session)

    assert result.nif_adquirente_valido is None


def test_qr_amount_with_exponent_stays_small(orchestrator, session):
    result = orchestrator.process_qr("A:516562240*O:1e50000000", session)

    assert result.status == "success"
    assert result.banking.valor == "€ 1,00"


def test_qr_persist_write_failure(session, qr_payload, tmp_path):
    blocker = tmp_path / "bloqueado"
    blocker.write_text("x", encoding="utf-8")
    orchestrator = Orchestrator(store=InvoiceStore(blocker / "invoices.json"))

    result = orchestrator.process_qr(qr_payload, session, persist=True)

    assert result.status == "error"
    assert result.persisted is False
    assert result.events[-1].stage == "STORE"
    assert result.events[-1].status == "FAILURE"
    assert orchestrator.store.invoices == {}

# SAF-T


def test_saft_success_flow(orchestrator, session, saft_bytes):
    result = orchestrator.process_saft(saft_bytes, session)

    assert isinstance(result, SAFTPipelineResult)
    assert result.status == "success"
    assert stages(result) == ["VALIDATE", "EXTRACT", "STORE"]
    assert result.header.company_id == "516562240"
    assert len(result.invoices) == 2
    assert result.persisted is True
    assert len(orchestrator.store.invoices) == 2
    assert session.saft_imports == 1


def test_saft_invalid_stops_after_validation(orchestrator, session):
    result = orchestrator.process_saft(b"<AuditFile/>", session)

    assert result.status == "invalid"
    assert stages(result) == ["VALIDATE"]
    assert result.validation.errors == ["Cabeçalho (Header) não encontrado"]
    assert orchestrator.store.invoices == {}
    assert session.saft_imports == 0


def test_saft_without_source_documents_imports_nothing(orchestrator, session):
    xml = b"<AuditFile><Header><AuditFileVersion>1.04_01</AuditFileVersion></Header></AuditFile>"

    result = orchestrator.process_saft(xml, session)

    assert result.status == "success"
    assert result.invoices == []
    assert result.validation.warnings == ["SourceDocuments não encontrado"]
    assert "STORE" not in stages(result)


def test_saft_extract_failure_is_recorded(orchestrator, session, saft_bytes):
    with patch("leitor.orchestrator.saft.extract_invoices") as mock_extract:
        mock_extract.side_effect = RuntimeError("boom")

        result = orchestrator.process_saft(saft_bytes, session)

    assert result.status == "error"
    assert result.events[-1].stage == "EXTRACT"
    assert result.events[-1].status == "FAILURE"


def test_session_reset(orchestrator, session, qr_payload):
    old_id = session.session_id
    orchestrator.process_qr(qr_payload, session)

    session.reset()

    assert session.session_id != old_id
    assert session.scans_total == 0
    assert session.events == []
