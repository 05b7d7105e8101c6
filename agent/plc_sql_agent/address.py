"""
Register address parsing.

Addresses look like ``D100`` (a whole word) or ``D3115.1`` (bit 1 of word
3115).  The leading letter names the memory area; only the data register
area is supported, so the prefix is accepted and dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidAddressError


log = logging.getLogger(__name__)

MAX_WORD_ADDRESS = 0xFFFFFF
BITS_PER_WORD = 16


@dataclass(frozen=True)
class ParsedAddress:
    word: int
    bit: Optional[int] = None

    @property
    def is_bit(self) -> bool:
        return self.bit is not None

    def __str__(self) -> str:
        if self.bit is None:
            return f"D{self.word}"
        return f"D{self.word}.{self.bit}"


def _to_int(text: str, address: str, reason: str) -> int:
    # str.isdigit accepts superscripts and other non-ASCII digits
    if not text or not (text.isascii() and text.isdigit()):
        raise InvalidAddressError(address, reason)
    return int(text, 10)


def parse_address(address: str) -> ParsedAddress:
    """Parse ``<prefix><word>[.<bit>]`` into a :class:`ParsedAddress`.

    Raises:
        InvalidAddressError: empty input, non-numeric parts, more than one
            ``.``, a word beyond 24 bits or a bit outside 0..15.
    """
    if address is None or not str(address).strip():
        raise InvalidAddressError(str(address or ""), "empty")
    text = str(address).strip().upper()
    if not text[0].isdigit():
        text = text[1:]

    parts = text.split(".")
    if len(parts) > 2:
        raise InvalidAddressError(address, "too_many_parts")

    word = _to_int(parts[0], address, "malformed")
    if word > MAX_WORD_ADDRESS:
        raise InvalidAddressError(address, "out_of_range")
    if len(parts) == 1:
        return ParsedAddress(word)

    bit = _to_int(parts[1], address, "malformed")
    if bit >= BITS_PER_WORD:
        log.warning("Bit index %s is out of range (0-15) for address %s", bit, address)
        raise InvalidAddressError(address, "bit_out_of_range")
    return ParsedAddress(word, bit)


def try_parse_address(address: str) -> Optional[ParsedAddress]:
    try:
        return parse_address(address)
    except InvalidAddressError as e:
        log.warning("Invalid register address format: %s (%s)", address, e.reason)
        return None
