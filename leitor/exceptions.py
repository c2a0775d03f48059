"""
Exceções do leitor de faturas.

Hierarquia:
    LeitorError (base)
    ├── InputReadError        falha de I/O a montante (ficheiro, upload)
    ├── SAFTStructureError    elementos obrigatórios ausentes no SAF-T
    ├── InvoiceNotFoundError  id/número inexistente no store
    ├── InvalidStatusError    transição para estado desconhecido
    ├── ExportError           nada para exportar / escrita falhou
    └── StoreWriteError       gravação do store em disco falhou

Falhas de parse de QR e de validação NIF/SAF-T NÃO são exceções:
são devolvidas como campos ausentes, booleanos ou relatórios.
"""
from typing import Any, Dict, Optional


class LeitorError(Exception):
    """
    Base de todas as exceções do sistema.

    Attributes:
        message: mensagem legível
        details: contexto adicional (serializável)
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InputReadError(LeitorError):
    """Leitura de ficheiro/buffer falhou. A causa original fica em __cause__."""


class SAFTStructureError(LeitorError):
    """Estrutura SAF-T inválida (Header ou SourceDocuments ausente, XML malformado)."""


class InvoiceNotFoundError(LeitorError):
    def __init__(self, invoice_id: str):
        super().__init__("Fatura não encontrada", {"id": invoice_id})
        self.invoice_id = invoice_id


class InvalidStatusError(LeitorError, ValueError):
    def __init__(self, status: str, allowed):
        super().__init__(
            f"Status inválido: {status}",
            {"status": status, "permitidos": list(allowed)}
        )


class ExportError(LeitorError):
    """Exportação (SAF-T / CSV) impossível."""


class StoreWriteError(LeitorError):
    """Gravação do ficheiro de faturas falhou; o estado em memória fica inalterado."""
