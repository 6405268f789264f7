"""pycutfemx.utils.bitset"""
from __future__ import annotations

from hashlib import blake2b
import numpy as np


def array_cache_token(arr) -> str:
    """Stable token for the bytes, dtype and shape of an array."""
    arr = np.ascontiguousarray(arr)
    h = blake2b(digest_size=16)
    h.update(str(arr.dtype).encode())
    h.update(np.asarray(arr.shape, dtype=np.int64).tobytes())
    h.update(arr.view(np.uint8).tobytes())
    return h.hexdigest()


class BitSet:
    """Boolean mask over the local entities of one dimension."""

    def __init__(self, mask):
        self.mask = np.asarray(mask, dtype=bool)

    def union(self, other): return BitSet(self.mask | other.mask)
    __or__ = union
    def cardinality(self): return int(self.mask.sum())
    def to_indices(self): return np.flatnonzero(self.mask).astype(np.int32)
    def __len__(self): return len(self.mask)
    def __repr__(self): return f'<BitSet {self.cardinality()}/{len(self)}>'
