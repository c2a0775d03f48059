import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

# TIPOS DE CONTRIBUINTE (primeiro dígito do NIF)

NIF_TIPOS: Dict[str, str] = {
    "1": "pessoa singular",
    "2": "pessoa singular",
    "3": "pessoa singular",
    "5": "pessoa coletiva",
    "6": "administração pública",
    "7": "herança indivisa / outras entidades",
    "8": "empresário em nome individual",
    "9": "pessoa coletiva irregular / número provisório",
}

NIF_WEIGHTS = [9, 8, 7, 6, 5, 4, 3, 2]


def nif_check_digit(base: str) -> int:
    """Dígito de controlo para os 8 primeiros dígitos (módulo 11)."""
    soma = sum(int(d) * p for d, p in zip(base, NIF_WEIGHTS))
    resto = soma % 11
    return 0 if resto < 2 else 11 - resto


def nif_validator(nif: Optional[str]) -> Dict[str, Any]:  ##     VALIDAÇÃO DE NIF/NIPC COM CHECKSUM
    """
    Valida NIF português.
    Sem limpeza: só aceita exatamente 9 dígitos ASCII.
    Retorna dict com status e metadados.
    """
    if not isinstance(nif, str) or not re.fullmatch(r"[0-9]{9}", nif):
        recebido = len(nif) if isinstance(nif, str) else 0
        return {
            "valido": False,
            "erro": f"NIF deve ter 9 dígitos (recebido {recebido} caracteres)",
            "confianca": 100
        }

    esperado = nif_check_digit(nif[:8])

    if int(nif[8]) != esperado:
        return {
            "valido": False,
            "erro": f"Dígito de controlo incorreto (esperado {esperado})",
            "confianca": 99
        }

    return {
        "valido": True,
        "nif_limpo": nif,
        "tipo": NIF_TIPOS.get(nif[0], "desconhecido"),
        "confianca": 95  # Não consultou a AT
    }


def validate_nif(nif: Optional[str]) -> bool:
    return nif_validator(nif)["valido"]


# NÚMEROS EM FORMATO PORTUGUÊS

NUMBER_PREFIX = re.compile(r'[+-]?(?:\d+(?:\.\d*)?|\.\d+)')
MAX_AMOUNT_DIGITS = 15


def parse_number(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Converte valor em formato PT para Decimal.

    1. Remove espaços e símbolos de moeda
    2. Ponto E vírgula -> vírgula é decimal (1.234,56)
    3. Só vírgula -> vírgula é decimal (1234,56)
    4. Lê o prefixo numérico; nada legível -> 0
    """
    if isinstance(value, (Decimal, int, float)):
        return _bounded(Decimal(str(value)))
    if not value:
        return Decimal("0")

    limpo = re.sub(r'[€$\s]', '', str(value))

    if '.' in limpo and ',' in limpo:
        limpo = limpo.replace('.', '').replace(',', '.', 1)
    elif ',' in limpo:
        limpo = limpo.replace(',', '.', 1)

    m = NUMBER_PREFIX.match(limpo)
    if not m:
        return Decimal("0")

    try:
        return _bounded(Decimal(m.group(0)))
    except InvalidOperation:
        return Decimal("0")


def _bounded(valor: Decimal) -> Decimal:
    ## infinito, NaN ou magnitude absurda -> 0
    if not valor.is_finite() or valor.adjusted() > MAX_AMOUNT_DIGITS:
        return Decimal("0")
    return valor


def format_eur(valor: Union[Decimal, str, None]) -> Optional[str]:
    """Formata em EUR estilo PT: '€ 1.234,56'."""
    if valor is None or valor == "":
        return None

    valor_decimal = parse_number(valor)
    return f"€ {valor_decimal:,.2f}".replace(',', 'X').replace('.', ',').replace('X', '.')


def format_amount(valor: Union[Decimal, str, None]) -> str:
    """Valor canónico para os campos string do registo ('1234.56')."""
    return f"{parse_number(valor):.2f}"
