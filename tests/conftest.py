import pytest

from leitor.schema.orchestrator_models import SessionContext
from leitor.store import InvoiceStore


SAFT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<AuditFile xmlns="urn:OECD:StandardAuditFile-Tax:PT_1.04_01">
  <Header>
    <AuditFileVersion>1.04_01</AuditFileVersion>
    <CompanyID>516562240</CompanyID>
    <TaxRegistrationNumber>516562240</TaxRegistrationNumber>
    <CompanyName>Instituto AreLuna Medicina Dentária Avançada, Lda</CompanyName>
    <CompanyAddress>
      <AddressDetail>Rua Principal, 123</AddressDetail>
      <City>Lisboa</City>
      <PostalCode>1000-000</PostalCode>
      <Country>PT</Country>
    </CompanyAddress>
    <FiscalYear>2025</FiscalYear>
    <StartDate>2025-01-01</StartDate>
    <EndDate>2025-12-31</EndDate>
    <CurrencyCode>EUR</CurrencyCode>
    <DateCreated>2025-10-05</DateCreated>
    <ProductID>Software/Teste</ProductID>
    <ProductVersion>2.1</ProductVersion>
  </Header>
  <MasterFiles>
    <Customer>
      <CustomerID>C001</CustomerID>
      <CustomerTaxID>501442600</CustomerTaxID>
      <CompanyName>Vodafone Portugal</CompanyName>
    </Customer>
  </MasterFiles>
  <SourceDocuments>
    <SalesInvoices>
      <NumberOfEntries>2</NumberOfEntries>
      <Invoice>
        <InvoiceNo>FT 2025/1</InvoiceNo>
        <ATCUD>ABCD1234-1</ATCUD>
        <DocumentStatus>
          <InvoiceStatus>N</InvoiceStatus>
        </DocumentStatus>
        <Hash>abc123</Hash>
        <Period>10</Period>
        <InvoiceDate>2025-10-02</InvoiceDate>
        <InvoiceType>FT</InvoiceType>
        <CustomerID>C001</CustomerID>
        <Line>
          <LineNumber>1</LineNumber>
          <Description>Consulta de medicina dentária</Description>
          <Quantity>1</Quantity>
          <UnitPrice>100.00</UnitPrice>
          <CreditAmount>100.00</CreditAmount>
          <Tax>
            <TaxType>IVA</TaxType>
            <TaxPercentage>23</TaxPercentage>
          </Tax>
        </Line>
        <DocumentTotals>
          <TaxPayable>23.00</TaxPayable>
          <NetTotal>100.00</NetTotal>
          <GrossTotal>123.00</GrossTotal>
        </DocumentTotals>
      </Invoice>
      <Invoice>
        <InvoiceNo>NC 2025/1</InvoiceNo>
        <DocumentStatus>
          <InvoiceStatus>A</InvoiceStatus>
        </DocumentStatus>
        <InvoiceDate>2025-10-03</InvoiceDate>
        <InvoiceType>NC</InvoiceType>
        <CustomerID>C999</CustomerID>
        <DocumentTotals>
          <TaxPayable>4.60</TaxPayable>
          <GrossTotal>24.60</GrossTotal>
        </DocumentTotals>
      </Invoice>
    </SalesInvoices>
  </SourceDocuments>
</AuditFile>
"""

## Payload canónico: uma tag por segmento, todas as secções
QR_PAYLOAD = (
    "A:516562240*B:123456789*C:PT*D:FT*E:N*F:20251002*G:FT 2025/123"
    "*H:ABCD1234-123*I1:PT*I7:100.00*I8:23.00*N:23.00*O:123.00*Q:1234"
)


@pytest.fixture
def saft_xml() -> str:
    return SAFT_XML


@pytest.fixture
def saft_bytes() -> bytes:
    return SAFT_XML.encode("utf-8")


@pytest.fixture
def qr_payload() -> str:
    return QR_PAYLOAD


@pytest.fixture
def store(tmp_path) -> InvoiceStore:
    return InvoiceStore(tmp_path / "invoices.json")


@pytest.fixture
def session() -> SessionContext:
    return SessionContext()
