"""Fixed-width decimal identifier arithmetic."""

from __future__ import annotations


class InvalidIdentifier(ValueError):
    """Raised for non-numeric identifiers or results that outgrow their width."""


def next_identifier(base: str, offset: int) -> str:
    """Return ``base + offset`` re-padded with zeros to the width of ``base``."""
    if not base or not (base.isascii() and base.isdigit()):
        raise InvalidIdentifier(f"Identifier {base!r} is not a decimal number")
    if offset < 0:
        raise InvalidIdentifier(f"Offset must be non-negative, got {offset}")

    width = len(base)
    value = int(base) + offset
    if value >= 10 ** width:
        raise InvalidIdentifier(f"Identifier {base} + {offset} overflows {width} digits")
    return str(value).zfill(width)


def identifier_sequence(base: str, count: int, step: int = 1) -> list[str]:
    """Identifiers handed to ``count`` sessions that each consume ``step``."""
    return [next_identifier(base, i * step) for i in range(count)]
