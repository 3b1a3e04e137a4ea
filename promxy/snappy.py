"""Snappy block-format compression."""

from __future__ import annotations

_MAX_BLOCK_SIZE = 65536


class SnappyError(ValueError):
    """Raised when input is not valid snappy-compressed data."""


def _uvarint(value: int) -> bytes:
    out = bytearray()
    while value > 0x7F:
        out.append(value & 0x7F | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _emit_literal(out: bytearray, literal: bytes) -> None:
    if not literal:
        return
    n = len(literal) - 1
    if n < 60:
        out.append(n << 2)
    else:
        width = (n.bit_length() + 7) // 8
        out.append((59 + width) << 2)
        out += n.to_bytes(width, "little")
    out += literal


def _emit_copy(out: bytearray, offset: int, length: int) -> None:
    while length >= 68:
        out += bytes([63 << 2 | 2]) + offset.to_bytes(2, "little")
        length -= 64
    if length > 64:
        out += bytes([59 << 2 | 2]) + offset.to_bytes(2, "little")
        length -= 60
    if length >= 12 or offset >= 2048:
        out += bytes([(length - 1) << 2 | 2]) + offset.to_bytes(2, "little")
    else:
        out += bytes([(offset >> 8) << 5 | (length - 4) << 2 | 1, offset & 0xFF])


def _compress_block(block: bytes, out: bytearray) -> None:
    table: dict[bytes, int] = {}
    literal_start = pos = 0
    while len(block) >= 17 and pos <= len(block) - 4:
        key = block[pos:pos + 4]
        candidate = table.get(key)
        table[key] = pos
        if candidate is None:
            pos += 1
            continue
        length = 4
        while pos + length < len(block) and block[candidate + length] == block[pos + length]:
            length += 1
        _emit_literal(out, block[literal_start:pos])
        _emit_copy(out, pos - candidate, length)
        pos += length
        literal_start = pos
    _emit_literal(out, block[literal_start:])


def compress(data: bytes) -> bytes:
    """Compress ``data`` into the snappy block format."""
    data = bytes(data)
    out = bytearray(_uvarint(len(data)))
    for start in range(0, len(data), _MAX_BLOCK_SIZE):
        _compress_block(data[start:start + _MAX_BLOCK_SIZE], out)
    return bytes(out)


def _take(data: bytes, pos: int, count: int) -> bytes:
    if pos + count > len(data):
        raise SnappyError("corrupt input: truncated element")
    return data[pos:pos + count]


def decompress(data: bytes) -> bytes:
    """Decompress snappy block-format ``data``."""
    data = bytes(data)
    expected = shift = pos = 0
    while True:
        byte = _take(data, pos, 1)[0]
        pos += 1
        expected |= (byte & 0x7F) << shift
        if not byte & 0x80:
            break
        shift += 7
        if shift >= 35:
            raise SnappyError("corrupt input: length header too long")
    if expected > 0xFFFFFFFF:
        raise SnappyError("decoded block is too large")

    out = bytearray()
    while pos < len(data):
        tag = data[pos]
        pos += 1
        kind = tag & 3
        if kind == 0:
            length = tag >> 2
            if length >= 60:
                extra = length - 59
                length = int.from_bytes(_take(data, pos, extra), "little")
                pos += extra
            out += _take(data, pos, length + 1)
            pos += length + 1
        else:
            if kind == 1:
                length = 4 + (tag >> 2 & 7)
                offset = (tag >> 5) << 8 | _take(data, pos, 1)[0]
                pos += 1
            else:
                width = 2 if kind == 2 else 4
                length = 1 + (tag >> 2)
                offset = int.from_bytes(_take(data, pos, width), "little")
                pos += width
            if offset == 0 or offset > len(out):
                raise SnappyError("corrupt input: invalid copy offset")
            start = len(out) - offset
            if offset >= length:
                out += out[start:start + length]
            else:
                for i in range(length):
                    out.append(out[start + i])
        if len(out) > expected:
            raise SnappyError("corrupt input: output exceeds declared length")
    if len(out) != expected:
        raise SnappyError("corrupt input: output shorter than declared length")
    return bytes(out)