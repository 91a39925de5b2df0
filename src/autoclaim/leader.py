"""Leader Gate: decide whether this process may do side-effecting work.

When the process is horizontally replicated, every replica keeps its timers
running but only the leader performs network-side-effecting ticks and runs.
The core never assumes a mechanism; it only calls an ``is_leader()``
predicate.
"""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger("autoclaim.leader")

LeaderGate = Callable[[], bool]


def always_leader() -> bool:
    """Gate for single-process deployments."""
    return True


def replica_gate(replica_index: int, leader_index: int = 0) -> LeaderGate:
    """Return a gate admitting only the replica with ``leader_index``.

    Args:
        replica_index: This process's shard/worker index.
        leader_index:  Index of the replica allowed to act.
    """
    is_leader = replica_index == leader_index
    logger.info(
        "Replica %d: %s",
        replica_index,
        "leader" if is_leader else f"follower (leader is {leader_index})",
    )

    def gate() -> bool:
        return is_leader

    return gate
