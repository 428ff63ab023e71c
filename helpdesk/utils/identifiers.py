"""CPF helpers for the affected-user identifier carried by tickets.

Tickets store the CPF as exactly 11 digits. Callers normalize once, at the
boundary, and compare normalized strings everywhere else.
"""

import re

CPF_LENGTH = 11

_NON_DIGITS = re.compile(r"\D")


def normalize_identifier(raw: str | None) -> str | None:
    """Strip formatting and return the 11-digit CPF, or None if it has another length."""
    if not raw:
        return None
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) != CPF_LENGTH:
        return None
    return digits


def is_valid_cpf(raw: str | None) -> bool:
    """Check length and both CPF check digits."""
    digits = normalize_identifier(raw)
    if digits is None:
        return False
    # 000.000.000-00, 111.111.111-11... pass the arithmetic but are not issued
    if len(set(digits)) == 1:
        return False

    numbers = [int(d) for d in digits]
    for position in (9, 10):
        total = sum(n * (position + 1 - i) for i, n in enumerate(numbers[:position]))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != numbers[position]:
            return False
    return True


def format_cpf(raw: str | None) -> str:
    """Render the 000.000.000-00 mask; values that are not 11 digits are returned unchanged."""
    digits = normalize_identifier(raw)
    if digits is None:
        return raw or ""
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
