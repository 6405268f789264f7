"""pycutfemx.utils.parallel
Thin collective helpers on top of mpi4py's object interface.

Every function here is collective over ``comm``: all ranks must call it in
the same order.
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, List, Sequence

import numpy as np
from mpi4py import MPI

from pycutfemx.core.errors import TopologyError

logger = logging.getLogger(__name__)


def global_offset(comm, n_local: int) -> int:
    """Exclusive prefix sum of ``n_local`` over the ranks of ``comm``."""
    offset = comm.exscan(int(n_local), op=MPI.SUM)
    return 0 if offset is None else int(offset)


def check_collectively(comm, failed: bool, message: str, exc=TopologyError,
                       summary: str = None) -> None:
    """Raise ``exc`` on *every* rank if ``failed`` is true on any rank.

    Failing ranks raise with ``message``; the others raise with ``summary``
    (default ``message``) followed by the failing ranks.
    """
    flags = comm.allgather(bool(failed))
    bad = [r for r, f in enumerate(flags) if f]
    if bad:
        if failed:
            raise exc(message)
        ranks = ", ".join(str(r) for r in bad)
        raise exc(f"{summary or message} (reported by rank {ranks})")


def alltoall_arrays(comm, send: Sequence[np.ndarray]) -> List[np.ndarray]:
    """Exchange one array per destination rank; returns one array per source rank."""
    if len(send) != comm.size:
        raise ValueError(f"Need {comm.size} send buffers, got {len(send)}.")
    return [np.asarray(a) for a in comm.alltoall(list(send))]


def owner_ranks(offsets: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Rank owning each global index for a block distribution.

    ``offsets`` has ``size + 1`` entries: rank ``r`` holds ``[offsets[r], offsets[r+1])``.
    """
    return np.searchsorted(offsets, indices, side="right") - 1


def distribute_data(comm, indices, x_local: np.ndarray, shape1: int) -> np.ndarray:
    """Fetch rows ``indices`` (global) of a row-distributed 2-D array.

    Each rank holds a contiguous shard ``x_local`` of the global array; shard
    ``r`` starts at the prefix sum of the shard sizes of ranks ``< r``.
    Returns the requested rows in the order of ``indices``.
    """
    indices = np.asarray(indices, dtype=np.int64)
    x_local = np.asarray(x_local, dtype=float).reshape(-1, int(shape1))
    sizes = np.asarray(comm.allgather(x_local.shape[0]), dtype=np.int64)
    offsets = np.concatenate([[0], np.cumsum(sizes)])
    n_global = int(offsets[-1])

    bad = (indices < 0) | (indices >= n_global)
    check_collectively(comm, bool(bad.any()),
                       f"Node indices out of range [0, {n_global}): "
                       f"{indices[bad][:5].tolist()}",
                       summary=f"Node indices out of range [0, {n_global}) on another rank")

    dest = owner_ranks(offsets, indices)
    order = np.argsort(dest, kind="stable")
    counts = np.bincount(dest, minlength=comm.size)
    splits = np.cumsum(counts)[:-1]
    requests = np.split(indices[order], splits)

    received = alltoall_arrays(comm, requests)
    rank_offset = offsets[comm.rank]
    replies = [x_local[np.asarray(r, dtype=np.int64) - rank_offset] for r in received]
    answers = alltoall_arrays(comm, replies)

    out = np.empty((indices.size, int(shape1)), dtype=float)
    if indices.size:
        out[order] = np.concatenate([a.reshape(-1, int(shape1)) for a in answers])
    logger.debug("distribute_data: rank %d fetched %d rows (%d global)",
                 comm.rank, indices.size, n_global)
    return out


def as_key(k):
    """Hashable key of an entity: an int for vertices, a tuple for higher entities."""
    a = np.asarray(k)
    if a.ndim == 0:
        return int(a)
    return tuple(int(v) for v in a)


def sharing_ranks(gathered: Sequence, keys) -> Dict[object, List[int]]:
    """For every key, the ascending list of ranks whose published list contains it.

    ``gathered[r]`` is the list of keys (ints or tuples) published by rank
    ``r``. Pure function; the collective part is the caller's ``allgather``.
    """
    wanted = [as_key(k) for k in keys]
    out: Dict[object, List[int]] = {k: [] for k in wanted}
    for r, published in enumerate(gathered):
        pub = {as_key(k) for k in published}
        for k in wanted:
            if k in pub:
                out[k].append(r)
    return out


def interior_conflicts(rank: int, gathered: Sequence, interior_keys) -> List[object]:
    """Keys that this rank holds as interior but some other rank publishes as shared."""
    interior = {as_key(k) for k in interior_keys}
    hits = set()
    for r, published in enumerate(gathered):
        if r == rank:
            continue
        hits.update(interior.intersection(as_key(k) for k in published))
    return sorted(hits)


def exchange_requests(comm, dest, requests, respond: Callable, what: str = "entries") -> list:
    """Ask rank ``dest[i]`` about ``requests[i]`` and return the answers in request order.

    ``respond(source_rank, key)`` runs on the receiving rank and returns the
    answer or ``None`` when the key is unknown there. Any unknown key fails
    the exchange with :class:`TopologyError` on every rank.
    """
    dest = np.asarray(dest, dtype=np.int64).reshape(-1)
    requests = list(requests)
    if dest.size != len(requests):
        raise ValueError("One destination rank per request is required.")
    outgoing = [[] for _ in range(comm.size)]
    slots = [[] for _ in range(comm.size)]
    for i, (r, key) in enumerate(zip(dest, requests)):
        outgoing[int(r)].append(key)
        slots[int(r)].append(i)

    incoming = comm.alltoall(outgoing)
    replies = [[respond(src, key) for key in keys] for src, keys in enumerate(incoming)]
    missing = [key for keys, rep in zip(incoming, replies)
               for key, v in zip(keys, rep) if v is None]
    check_collectively(comm, bool(missing), f"Unresolved {what}: {missing[:5]}",
                       summary=f"Unresolved {what} on another rank")

    answers = comm.alltoall(replies)
    out = [None] * len(requests)
    for r in range(comm.size):
        for i, v in zip(slots[r], answers[r]):
            out[i] = v
    return out
