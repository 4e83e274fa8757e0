from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from .constants import UINT32_MAX
from .errors import ProtocolError


@dataclass(frozen=True, slots=True)
class Chunk:
    sequence: int
    size: int
    payload: bytes


def plan_chunks(
    total_length: int,
    lmin: int,
    lmax: int,
    rng: Optional[random.Random] = None,
) -> list[int]:
    """Return chunk sizes covering ``total_length`` bytes.

    Each size is drawn uniformly from ``[lmin, lmax]``; a tail shorter than
    ``lmin`` is sent whole. A draw larger than what is left is clamped, so the
    sizes always sum to ``total_length`` and only the last one can fall below
    ``lmin``.
    """
    if total_length < 0:
        raise ValueError(f"total_length must be >= 0, got {total_length}")
    if lmin < 1:
        raise ValueError(f"lmin must be >= 1, got {lmin}")
    if lmax < lmin:
        raise ValueError(f"lmax must be >= lmin, got lmin={lmin} lmax={lmax}")
    if lmax > UINT32_MAX:
        raise ValueError(f"lmax does not fit in a uint32 length field: {lmax}")

    rng = rng or random.Random()
    sizes: list[int] = []
    remaining = total_length
    while remaining > 0:
        if remaining < lmin:
            size = remaining
        else:
            size = min(rng.randint(lmin, lmax), remaining)
        sizes.append(size)
        remaining -= size
    return sizes


def split_chunks(buffer: bytes, sizes: Sequence[int]) -> list[Chunk]:
    if sum(sizes) != len(buffer):
        raise ProtocolError(
            f"chunk plan covers {sum(sizes)} bytes but the source has {len(buffer)}"
        )
    chunks = []
    offset = 0
    for seq, size in enumerate(sizes):
        chunks.append(Chunk(sequence=seq, size=size, payload=bytes(buffer[offset : offset + size])))
        offset += size
    return chunks
