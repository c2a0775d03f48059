"""
Tests for API endpoints.
"""
import pytest
from fastapi.testclient import TestClient

from api.main import app
from leitor.schema.orchestrator_models import SessionContext
from leitor.store import InvoiceStore

pytestmark = pytest.mark.api


@pytest.fixture
def client(tmp_path):
    app.state.store = InvoiceStore(tmp_path / "invoices.json")
    app.state.session = SessionContext()
    return TestClient(app)


@pytest.fixture
def created_invoice(client):
    response = client.post("/v1/invoices", json={
        "numeroDocumento": "FT 2025/7",
        "dataFatura": "2025-10-02",
        "nifAdquirente": "501442600",
        "total": "250.00",
    })
    assert response.status_code == 201
    return response.json()


def test_health_check(client):
    """Test health endpoint returns 200 and correct structure."""
    response = client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == "0.3.0"
    assert data["checks"]["api"] is True

# QR

def test_process_qr(client, qr_payload):
    response = client.post("/v1/qr/process", json={"content": qr_payload})
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "success"
    assert data["record"]["nifEmitente"] == "516562240"
    assert data["record"]["dataFatura"] == "2025-10-02"
    assert data["record"]["rawQRContent"] == qr_payload
    assert data["category"]["categoria"] == "servicos-profissionais"
    assert data["banking"]["valor"] == "€ 123,00"
    assert data["persisted"] is False
    assert [event["stage"] for event in data["events"]] == ["NORMALIZE", "DETECT", "PARSE", "ENRICH"]


def test_process_qr_persist(client, qr_payload):
    response = client.post("/v1/qr/process", json={"content": qr_payload, "persist": True})
    invoice_id = response.json()["record"]["id"]

    response = client.get(f"/v1/invoices/{invoice_id}")
    assert response.status_code == 200
    assert response.json()["origem"] == "QR"


def test_process_qr_not_at_invoice(client):
    response = client.post("/v1/qr/process", json={"content": "https://exemplo.pt"})

    assert response.status_code == 200
    assert response.json()["status"] == "not_at_invoice"
    assert response.json()["record"] is None


@pytest.mark.parametrize("body", [{}, {"content": ""}, {"content": "   "}])
def test_process_qr_rejects_empty_content(client, body):
    response = client.post("/v1/qr/process", json=body)

    assert response.status_code == 422

# Invoices

def test_create_and_get_invoice(client, created_invoice):
    assert created_invoice["id"].startswith("INV-")
    assert created_invoice["status"] == "pending"

    response = client.get(f"/v1/invoices/{created_invoice['id']}")
    assert response.status_code == 200
    assert response.json()["numeroDocumento"] == "FT 2025/7"


def test_create_invoice_invalid_status(client):
    response = client.post("/v1/invoices", json={"numeroDocumento": "X", "status": "cancelada"})

    assert response.status_code == 422


def test_get_invoice_not_found(client):
    response = client.get("/v1/invoices/INV-nao-existe")

    assert response.status_code == 404
    assert response.json()["detail"] == "Fatura não encontrada"


def test_get_invoice_by_numero(client):
    client.post("/v1/invoices", json={"numeroDocumento": "FR-99", "total": "5"})

    response = client.get("/v1/invoices/numero/FR-99")
    assert response.status_code == 200
    assert response.json()["total"] == "5"

    response = client.get("/v1/invoices/numero/inexistente")
    assert response.status_code == 404


def test_list_invoices_with_filters(client, created_invoice):
    client.post("/v1/invoices", json={"numeroDocumento": "FT 2025/8", "status": "paid", "total": "10"})

    response = client.get("/v1/invoices", params={"status": "paid"})
    assert response.status_code == 200
    data = response.json()
    assert [inv["numeroDocumento"] for inv in data["data"]] == ["FT 2025/8"]
    assert data["pagination"]["total"] == 1

    response = client.get("/v1/invoices", params={"nifAdquirente": "501442600", "limit": 1, "page": 1})
    data = response.json()
    assert data["pagination"] == {
        "total": 1, "page": 1, "limit": 1, "totalPages": 1, "hasNext": False, "hasPrev": False,
    }


def test_list_invoices_invalid_status_filter(client):
    response = client.get("/v1/invoices", params={"status": "cancelada"})

    assert response.status_code == 422


def test_update_invoice(client, created_invoice):
    response = client.put(f"/v1/invoices/{created_invoice['id']}", json={
        "id": "INV-outro",
        "nomeCliente": "Vodafone Portugal",
    })

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == created_invoice["id"]
    assert data["nomeCliente"] == "Vodafone Portugal"
    assert data["createdAt"] == created_invoice["createdAt"]


def test_update_status(client, created_invoice):
    url = f"/v1/invoices/{created_invoice['id']}/status"

    response = client.patch(url, json={"status": "paid"})
    assert response.status_code == 200
    assert response.json()["status"] == "paid"

    response = client.patch(url, json={"status": "cancelada"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Status inválido: cancelada"


def test_create_invoice_write_failure(client, tmp_path):
    blocker = tmp_path / "bloqueado"
    blocker.write_text("x", encoding="utf-8")
    app.state.store = InvoiceStore(blocker / "invoices.json")

    response = client.post("/v1/invoices", json={"numeroDocumento": "FT 1"})

    assert response.status_code == 500
    assert response.json()["detail"].startswith("Erro ao salvar faturas")
    assert client.get("/v1/invoices").json()["pagination"]["total"] == 0


def test_delete_invoice(client, created_invoice):
    response = client.delete(f"/v1/invoices/{created_invoice['id']}")
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = client.delete(f"/v1/invoices/{created_invoice['id']}")
    assert response.status_code == 404


def test_stats(client, created_invoice):
    client.post("/v1/invoices", json={"numeroDocumento": "FT 2025/8", "status": "paid", "total": "1.000,00"})

    data = client.get("/v1/invoices/stats").json()

    assert data["total"] == 2
    assert data["porStatus"]["pending"] == 1
    assert data["porStatus"]["paid"] == 1
    assert float(data["valorTotal"]) == 1250.0
    assert data["ultimaFatura"]["numeroDocumento"] in ("FT 2025/7", "FT 2025/8")

# Files

def test_upload_saft(client, saft_bytes):
    response = client.post(
        "/v1/files/xml",
        files={"file": ("saft.xml", saft_bytes, "application/xml")},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["imported"] == 2
    assert data["header"]["companyID"] == "516562240"
    assert data["validation"]["valid"] is True

    listing = client.get("/v1/invoices").json()
    assert listing["pagination"]["total"] == 2
    assert client.get("/v1/session").json()["saftImports"] == 1


def test_upload_saft_invalid_structure(client):
    response = client.post(
        "/v1/files/xml",
        files={"file": ("saft.xml", b"<AuditFile/>", "application/xml")},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["errors"] == ["Cabeçalho (Header) não encontrado"]


def test_upload_rejects_wrong_extension(client, saft_bytes):
    response = client.post(
        "/v1/files/xml",
        files={"file": ("saft.pdf", saft_bytes, "application/pdf")},
    )

    assert response.status_code == 415


def test_validate_saft_endpoint(client):
    xml = b"<AuditFile><Header><AuditFileVersion>9.99_01</AuditFileVersion></Header><SourceDocuments/></AuditFile>"

    response = client.post("/v1/files/xml/validate", files={"file": ("saft.xml", xml, "application/xml")})

    assert response.status_code == 200
    assert response.json() == {
        "valid": True,
        "errors": [],
        "warnings": ["Versão SAF-T não standard: 9.99_01"],
        "version": "9.99_01",
    }


def test_upload_csv(client):
    content = "Numero,Data,Cliente,NIF,Total\nFT 1,2025-10-02,João,501442600,\"12,50\"\n".encode("utf-8")

    response = client.post("/v1/files/csv", files={"file": ("faturas.csv", content, "text/csv")})

    assert response.status_code == 200
    data = response.json()
    assert data["imported"] == 1
    assert data["invoices"][0]["nomeCliente"] == "João"
    assert data["invoices"][0]["total"] == "12.50"
    assert data["invoices"][0]["origem"] == "CSV"

# Export

def test_export_saft(client, created_invoice):
    response = client.get("/v1/export/saft")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "attachment" in response.headers["content-disposition"]
    assert b"<InvoiceNo>FT 2025/7</InvoiceNo>" in response.content


def test_export_without_invoices(client):
    assert client.get("/v1/export/saft").status_code == 400
    assert client.get("/v1/export/csv").status_code == 400


def test_export_csv(client, created_invoice):
    response = client.get("/v1/export/csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.content.decode("utf-8").splitlines()
    assert lines[0].startswith("id,numeroDocumento")
    assert "FT 2025/7" in lines[1]

# Session

def test_session_stats_and_reset(client, qr_payload):
    client.post("/v1/qr/process", json={"content": qr_payload})
    client.post("/v1/qr/process", json={"content": "texto qualquer"})

    data = client.get("/v1/session").json()
    assert data["scansTotal"] == 2
    assert data["atInvoices"] == 1
    assert data["eventsCount"] == 6

    response = client.post("/v1/session/reset")
    assert response.status_code == 200

    data = client.get("/v1/session").json()
    assert data["scansTotal"] == 0
    assert data["sessionId"] != ""
