"""
zero_reveal_credentials/field.py
Canonical field-element encoding for every value that enters a hash.
"""
import hashlib
import re
from typing import Any, Union

# BN254 scalar field order (circom / snarkjs default curve)
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BYTES = 32
FALLBACK_DIGEST = 'sha256'

FieldElement = int
FieldInput = Union[int, str, bytes]

_DECIMAL_RE = re.compile(r'[0-9]+')
_HEX_RE = re.compile(r'0x[0-9a-fA-F]+')


def to_field(value: Any) -> FieldElement:
    """Canonicalize an input into a field element.

    Rules, in order:
        - int (and bool) passes through unchanged
        - bytes are read as a big-endian integer
        - decimal digit strings are parsed base 10
        - "0x" + one or more hex digits is parsed base 16
        - any other string (empty, free text, malformed hex) is mapped to
          SHA-256 of its UTF-8 bytes, read big-endian

    The fallback makes the codec total over strings: the same credential
    attribute always lands on the same leaf.

    Args:
        value: Integer, numeric/hex/free-text string, or raw bytes

    Returns:
        Integer field element (never negative for str or bytes input)

    Raises:
        TypeError: If value is not an int, str or bytes
    """
    if isinstance(value, int):
        return int(value)
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, 'big')
    if isinstance(value, str):
        if _DECIMAL_RE.fullmatch(value):
            return int(value, 10)
        if _HEX_RE.fullmatch(value):
            return int(value[2:], 16)
        digest = hashlib.new(FALLBACK_DIGEST, value.encode('utf-8')).digest()
        return int.from_bytes(digest, 'big')
    raise TypeError(
        f"Cannot encode {type(value).__name__} as a field element"
    )


def reduce(value: Any) -> FieldElement:
    """Encode value and reduce it into [0, FIELD_MODULUS)."""
    return to_field(value) % FIELD_MODULUS


def field_bytes(value: Any) -> bytes:
    """Fixed-width 32-byte big-endian encoding of the reduced value."""
    return reduce(value).to_bytes(FIELD_BYTES, 'big')


def to_decimal(value: Any) -> str:
    """Wire encoding: base-10 string of the field element."""
    return str(to_field(value))


def is_field_element(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value < FIELD_MODULUS
    )
