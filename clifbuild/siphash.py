"""SipHash-2-4 and a streaming hasher that accepts integers and strings."""

from __future__ import annotations

_MASK = (1 << 64) - 1


def _rotl(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (64 - shift))) & _MASK


def _sip_rounds(v0: int, v1: int, v2: int, v3: int, rounds: int) -> tuple[int, int, int, int]:
    for _ in range(rounds):
        v0 = (v0 + v1) & _MASK
        v1 = _rotl(v1, 13) ^ v0
        v0 = _rotl(v0, 32)
        v2 = (v2 + v3) & _MASK
        v3 = _rotl(v3, 16) ^ v2
        v0 = (v0 + v3) & _MASK
        v3 = _rotl(v3, 21) ^ v0
        v2 = (v2 + v1) & _MASK
        v1 = _rotl(v1, 17) ^ v2
        v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def siphash24(data: bytes, k0: int = 0, k1: int = 0) -> int:
    """Return the 64-bit SipHash-2-4 of ``data`` under the key ``(k0, k1)``."""
    v0 = k0 ^ 0x736F6D6570736575
    v1 = k1 ^ 0x646F72616E646F6D
    v2 = k0 ^ 0x6C7967656E657261
    v3 = k1 ^ 0x7465646279746573

    full = len(data) - len(data) % 8
    for offset in range(0, full, 8):
        block = int.from_bytes(data[offset:offset + 8], "little")
        v3 ^= block
        v0, v1, v2, v3 = _sip_rounds(v0, v1, v2, v3, 2)
        v0 ^= block

    last = ((len(data) & 0xFF) << 56) | int.from_bytes(data[full:], "little")
    v3 ^= last
    v0, v1, v2, v3 = _sip_rounds(v0, v1, v2, v3, 2)
    v0 ^= last

    v2 ^= 0xFF
    v0, v1, v2, v3 = _sip_rounds(v0, v1, v2, v3, 4)
    return v0 ^ v1 ^ v2 ^ v3


class SipHasher:
    """Streaming SipHash-2-4 hasher with zero keys by default.

    Integers are fed as little-endian bytes and strings are followed by a
    ``0xff`` terminator byte.
    """

    def __init__(self, k0: int = 0, k1: int = 0):
        self.k0 = k0
        self.k1 = k1
        self._buffer = bytearray()

    def write(self, data: bytes) -> None:
        self._buffer += data

    def write_u64(self, value: int) -> None:
        self._buffer += (value & _MASK).to_bytes(8, "little")

    def write_usize(self, value: int) -> None:
        self.write_u64(value)

    def write_str(self, text: str) -> None:
        self._buffer += text.encode("utf-8")
        self._buffer.append(0xFF)

    def finish(self) -> int:
        """Return the hash of everything written so far."""
        return siphash24(bytes(self._buffer), self.k0, self.k1)