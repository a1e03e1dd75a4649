"""Generation of initial account secrets."""
from __future__ import annotations
import secrets

MIN_SECRET_LENGTH = 12

# Ambiguous glyphs (I, O, l, 0, 1) left out
UPPERCASE = "ABCDEFGHJKLMNPQRSTUVWXYZ"
LOWERCASE = "abcdefghijkmnopqrstuvwxyz"
DIGITS = "23456789"
SYMBOLS = "!@#$%"

CHARACTER_CLASSES = (UPPERCASE, LOWERCASE, DIGITS, SYMBOLS)
CHARSET = "".join(CHARACTER_CLASSES)


def generate_secret(length: int = MIN_SECRET_LENGTH) -> str:
    """
    Generate a high-entropy initial secret.

    Characters are drawn with ``secrets.choice`` (uniform, no modulo bias).
    Candidates missing any character class are discarded and redrawn.

    Args:
        length: Secret length (minimum 12)

    Returns:
        Random secret with uppercase, lowercase, digits and symbols

    Raises:
        ValueError: If length is below the minimum
    """
    if length < MIN_SECRET_LENGTH:
        raise ValueError(f"Secret length must be at least {MIN_SECRET_LENGTH} characters")

    while True:
        candidate = "".join(secrets.choice(CHARSET) for _ in range(length))
        if all(any(char in charset for char in candidate) for charset in CHARACTER_CLASSES):
            return candidate
