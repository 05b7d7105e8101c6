"""Turn raw PLC words into the string values that get displayed and logged."""

from __future__ import annotations

import struct
from typing import Optional, Sequence

from .models import DataType


def word_count(data_type: DataType, length: int = 1) -> int:
    """Number of consecutive words to read for one register."""
    length = max(1, int(length or 1))
    if data_type == DataType.FLOAT:
        return 2
    if data_type in (DataType.INT, DataType.UINT):
        return 2 if length >= 2 else 1
    if data_type == DataType.STRING:
        return length
    return 1


def _words_to_bytes(words: Sequence[int]) -> bytes:
    # Low word first, each word little-endian: the PLC's native order
    return b"".join(struct.pack("<H", w & 0xFFFF) for w in words)


def decode_value(words: Sequence[int], data_type: DataType = DataType.UINT, bit: Optional[int] = None) -> str:
    if not words:
        raise ValueError("no words to decode")
    if bit is not None:
        return str((words[0] >> bit) & 1)

    if data_type == DataType.BOOL:
        return "1" if words[0] else "0"
    if data_type == DataType.STRING:
        return _words_to_bytes(words).rstrip(b"\x00").decode("ascii", errors="replace")
    if data_type == DataType.FLOAT:
        if len(words) < 2:
            raise ValueError("FLOAT needs two words")
        (f,) = struct.unpack("<f", _words_to_bytes(words[:2]))
        return "%g" % f

    if len(words) >= 2:
        fmt = "<i" if data_type == DataType.INT else "<I"
        (n,) = struct.unpack(fmt, _words_to_bytes(words[:2]))
    else:
        fmt = "<h" if data_type == DataType.INT else "<H"
        (n,) = struct.unpack(fmt, _words_to_bytes(words[:1]))
    return str(n)
