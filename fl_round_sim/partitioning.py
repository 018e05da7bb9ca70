"""Non-IID partitioning of a labelled dataset into batched client shards.

Two independent knobs shape the federation:

- ``alpha``: symmetric-Dirichlet concentration of each client's class
  mixture (large -> near-uniform classes, small -> class-concentrated).
- ``balance``: client size skew in ``[0, 1]`` (1 -> equal sizes, 0 -> spiky
  Dirichlet sizes, capped to avoid a single client taking everything).
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from fl_round_sim.domain.dataset import Batch, ClientRecord
from fl_round_sim.rng import RandomSource, create_rng

logger = logging.getLogger(__name__)

MIXTURE_SEED_XOR = 0x9E3779B9
BALANCED_THRESHOLD = 0.999
SIZE_ALPHA_LOW = 0.3
SIZE_ALPHA_HIGH = 50.0


@dataclass(frozen=True)
class PartitionSignature:
    """Parameters identifying one partitioning event."""

    seed: Optional[int]
    num_clients: int
    batch_size: int
    alpha: float
    balance: float
    problem: str = "classification"


def needs_repartition(
    previous: Optional[PartitionSignature], current: PartitionSignature
) -> bool:
    """Whether the client topology has to be rebuilt."""
    return previous is None or previous != current


def _reserve_one_per_client(
    by_class: List[List[int]],
    class_ptrs: List[int],
    num_clients: int,
    total: int,
    rng: RandomSource,
    seeded: bool,
) -> List[List[int]]:
    """Give each client one example, round-robin over classes."""
    num_classes = len(by_class)
    reserved: List[List[int]] = [[] for _ in range(num_clients)]
    rotation = rng.randint(num_classes) if seeded else 0

    if total >= num_clients:
        for client_id in range(num_clients):
            tries = 0
            while (
                tries < num_classes
                and class_ptrs[rotation % num_classes] >= len(by_class[rotation % num_classes])
            ):
                rotation += 1
                tries += 1
            cls = rotation % num_classes
            if class_ptrs[cls] < len(by_class[cls]):
                reserved[client_id].append(by_class[cls][class_ptrs[cls]])
                class_ptrs[cls] += 1
            rotation += 1
    else:
        left = total
        for client_id in range(num_clients):
            if left <= 0:
                break
            for t in range(num_classes):
                cls = (rotation + t) % num_classes
                if class_ptrs[cls] < len(by_class[cls]):
                    reserved[client_id].append(by_class[cls][class_ptrs[cls]])
                    class_ptrs[cls] += 1
                    left -= 1
                    break
            rotation += 1

    return reserved


def _client_sizes(
    reserved_counts: Sequence[int],
    remaining: int,
    balance: float,
    rng: RandomSource,
) -> List[int]:
    """Target size of every client (reserved examples included)."""
    num_clients = len(reserved_counts)
    if remaining == 0:
        return list(reserved_counts)

    if balance >= BALANCED_THRESHOLD:
        base, extra = divmod(remaining, num_clients)
        order = rng.permutation(num_clients)
        sizes = [0] * num_clients
        for rank, client_id in enumerate(order):
            sizes[client_id] = reserved_counts[client_id] + base + (1 if rank < extra else 0)
        return sizes

    balance = min(1.0, max(0.0, balance))
    size_alpha = SIZE_ALPHA_LOW + (SIZE_ALPHA_HIGH - SIZE_ALPHA_LOW) * balance
    weights = rng.dirichlet(num_clients, size_alpha)

    mean = remaining / num_clients
    cap = max(1, math.ceil(mean * (1 + 3 * (1 - balance))))
    if cap * num_clients < remaining:
        cap = math.ceil(remaining / num_clients)

    # Largest-remainder apportionment with caps on the additional examples
    quotas = weights * remaining
    additional = [min(int(math.floor(q)), cap) for q in quotas]
    left = remaining - sum(additional)

    order = rng.permutation(num_clients)
    order.sort(key=lambda i: -(quotas[i] - math.floor(quotas[i])))
    while left > 0:
        before = left
        for client_id in order:
            if left <= 0:
                break
            if additional[client_id] < cap:
                additional[client_id] += 1
                left -= 1
        if left == before:
            cap += 1

    return [reserved_counts[i] + additional[i] for i in range(num_clients)]


def _pick_class(prob: np.ndarray, available: List[bool], rng: RandomSource) -> int:
    """Draw a class proportional to ``prob`` among the available ones."""
    available_idx = [c for c, ok in enumerate(available) if ok]
    if not available_idx:
        return -1
    total = float(sum(prob[c] for c in available_idx))
    if total <= 0:
        return available_idx[rng.randint(len(available_idx))]

    r = rng.uniform() * total
    acc = 0.0
    for c in available_idx:
        acc += prob[c]
        if r <= acc:
            return c
    return available_idx[-1]


def _make_batches(
    features: np.ndarray, labels: np.ndarray, indices: List[int], batch_size: int
) -> List[Batch]:
    batches = []
    for start in range(0, len(indices), batch_size):
        chunk = np.asarray(indices[start : start + batch_size], dtype=np.int64)
        batches.append(Batch(features=features[chunk], labels=labels[chunk]))
    return batches


def partition(
    features: np.ndarray,
    labels: np.ndarray,
    num_classes: int,
    num_clients: int,
    batch_size: int,
    alpha: float,
    balance: float = 1.0,
    seed: Optional[int] = None,
) -> List[ClientRecord]:
    """Split a labelled dataset into batched, class-skewed client shards.

    Args:
        features: Feature rows, indexed along the first axis.
        labels: Integer labels in ``[0, num_classes)``.
        num_classes: Number of classes.
        num_clients: Number of client shards to produce.
        batch_size: Mini-batch size (the last batch may be smaller).
        alpha: Dirichlet concentration of per-client class mixtures.
        balance: Client size balance in ``[0, 1]``.
        seed: Seed for reproducible partitions; ``None`` for true randomness.

    Returns:
        One ``ClientRecord`` per client. Every client receives at least one
        example when there are at least ``num_clients`` examples.
    """
    features = np.asarray(features)
    labels = np.asarray(labels, dtype=np.int64)
    if num_clients <= 0:
        return []
    batch_size = max(1, int(batch_size))
    num_classes = max(1, int(num_classes))

    seeded = seed is not None
    rng = create_rng(seed)
    mixture_rng = create_rng((int(seed) ^ MIXTURE_SEED_XOR) & 0xFFFFFFFF if seeded else None)

    by_class: List[List[int]] = [
        [int(i) for i in np.flatnonzero(labels == c)] for c in range(num_classes)
    ]
    for indices in by_class:
        rng.shuffle(indices)

    total = sum(len(indices) for indices in by_class)
    if total < num_clients:
        logger.warning(
            "Only %d examples for %d clients; some clients receive no data",
            total,
            num_clients,
        )

    class_ptrs = [0] * num_classes
    reserved = _reserve_one_per_client(by_class, class_ptrs, num_clients, total, rng, seeded)
    reserved_counts = [len(r) for r in reserved]
    remaining = max(0, total - sum(reserved_counts))
    sizes = _client_sizes(reserved_counts, remaining, balance, rng)

    clients = []
    for client_id in range(num_clients):
        mixture = mixture_rng.dirichlet(num_classes, alpha)
        indices = list(reserved[client_id])

        need = max(0, sizes[client_id] - len(indices))
        while need > 0:
            available = [class_ptrs[c] < len(by_class[c]) for c in range(num_classes)]
            cls = _pick_class(mixture, available, rng)
            if cls < 0:
                break
            indices.append(by_class[cls][class_ptrs[cls]])
            class_ptrs[cls] += 1
            need -= 1

        histogram = np.bincount(labels[np.asarray(indices, dtype=np.int64)], minlength=num_classes)
        clients.append(
            ClientRecord(
                client_id=client_id,
                batches=_make_batches(features, labels, indices, batch_size),
                num_examples=len(indices),
                class_histogram=histogram,
            )
        )
        logger.debug("Client %d: %d examples, classes %s", client_id, len(indices), histogram)

    return clients
