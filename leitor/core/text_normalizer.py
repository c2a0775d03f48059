import logging
import re
import unicodedata
from pathlib import Path
from typing import Any, Optional, Union

from ..exceptions import InputReadError

logger = logging.getLogger(__name__)

CLEAN_REPLACEMENTS = [
    ('\xa0', ' '),
    ('\u200b', ''),
    ('\ufeff', ''),
    ('\r\n', '\n'),
]

# Sequências típicas de UTF-8 lido como Latin-1/CP1252
ENCODING_ISSUE_PATTERNS = [
    re.compile('\ufffd'),   # caractere de substituição
    re.compile('Ã§'),       # ç
    re.compile('Ã£'),       # ã
    re.compile('Ã¡'),       # á
    re.compile('Ã©'),       # é
    re.compile('Ã\xad'),    # í
    re.compile('Ã³'),       # ó
    re.compile('Ãº'),       # ú
    re.compile('Ã‡'),       # Ç
    re.compile('â‚¬'),      # €
]


def has_encoding_issues(text: Optional[str]) -> bool:
    if not text or not isinstance(text, str):
        return False

    return any(pattern.search(text) for pattern in ENCODING_ISSUE_PATTERNS)


def fix_broken_encoding(text: Optional[str]) -> Optional[str]:
    """
    Repara texto UTF-8 que foi descodificado como Latin-1 (ou CP1252).

    Reinterpreta cada caractere como byte e descodifica como UTF-8.
    Se nenhuma das duas leituras resultar, devolve o texto original
    (recuperação best-effort, quem consome tolera resíduos).
    """
    if not text or not isinstance(text, str):
        return text

    for codec in ("latin-1", "cp1252"):
        try:
            return text.encode(codec).decode("utf-8")
        except (UnicodeEncodeError, UnicodeDecodeError):
            continue

    logger.warning("Não foi possível corrigir encoding (len=%d)", len(text))
    return text


def latin1_to_utf8(data: Union[bytes, str, None]) -> Optional[str]:
    if isinstance(data, bytes):
        return data.decode("latin-1")

    return data


def decode_bytes(data: bytes) -> str:
    """
    1. Tenta UTF-8 estrito
    2. Sem problemas detetados -> devolve
    3. Caso contrário -> Latin-1 (nunca falha)
    """
    try:
        utf8_text = data.decode("utf-8")
        if not has_encoding_issues(utf8_text):
            return utf8_text
    except UnicodeDecodeError:
        pass

    return data.decode("latin-1")


def auto_fix_encoding(data: Union[bytes, str, None]) -> Union[str, Any]:
    if data is None or data == b"" or data == "":
        return ""

    if isinstance(data, bytes):
        return decode_bytes(data)

    if isinstance(data, str) and has_encoding_issues(data):
        return fix_broken_encoding(data)

    return data


def fix_object_encoding(obj: Any) -> Any:  ##     Percorre dict/list recursivamente (árvore XML, linhas CSV)
    if obj is None:
        return obj

    if isinstance(obj, str):
        return auto_fix_encoding(obj)

    if isinstance(obj, list):
        return [fix_object_encoding(item) for item in obj]

    if isinstance(obj, dict):
        return {key: fix_object_encoding(value) for key, value in obj.items()}

    return obj


def remove_accents(text: Optional[str]) -> Optional[str]:
    if not text or not isinstance(text, str):
        return text

    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def clean_payload(text: str) -> str:  ##     Limpa lixo invisível vindo do decoder de QR
    for pat, repl in CLEAN_REPLACEMENTS:
        text = text.replace(pat, repl)

    return text.strip()


def read_file_with_encoding(path: Union[str, Path]) -> str:
    """
    Lê ficheiro de texto: UTF-8 primeiro, Latin-1 se houver problemas.
    Falhas de I/O sobem como InputReadError com a causa encadeada.
    """
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise InputReadError(f"Erro ao ler ficheiro: {path}", {"path": str(path)}) from e

    return decode_bytes(raw)
