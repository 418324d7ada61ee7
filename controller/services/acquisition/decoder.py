"""
Register Decoder

Converts raw 16-bit register words into scaled measurement values.
"""

from common.config import RegisterSpec, SUPPORTED_LENGTHS
from common.exceptions import RegisterDecodeError

from .models import DecodedValue

DECIMAL_PLACES = 3


def combine_words(words: list[int], length: int) -> int:
    """
    Combine register words into one unsigned integer.

    Big-endian word order: for two words, the first is the high half.

    Raises:
        RegisterDecodeError: unsupported length, word count mismatch or a
            word outside 0..0xFFFF
    """
    if length not in SUPPORTED_LENGTHS:
        raise RegisterDecodeError(f"unsupported register length {length}", length, list(words))

    if len(words) != length:
        raise RegisterDecodeError(
            f"expected {length} words, got {len(words)}", length, list(words)
        )

    for word in words:
        if not isinstance(word, int) or not 0 <= word <= 0xFFFF:
            raise RegisterDecodeError(f"invalid register word {word!r}", length, list(words))

    if length == 1:
        return words[0]

    return (words[0] << 16) | words[1]


def decode_registers(words: list[int], spec: RegisterSpec) -> DecodedValue:
    """
    Decode raw words with the register's multiplier.

    Returns:
        DecodedValue with the value formatted to 3 decimals and the raw words
    """
    raw = list(words)
    scaled = combine_words(raw, spec.length) * spec.multiplier
    return DecodedValue(
        value=f"{scaled:.{DECIMAL_PLACES}f}",
        numeric=round(scaled, DECIMAL_PLACES),
        raw=raw,
    )
