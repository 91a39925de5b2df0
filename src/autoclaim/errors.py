"""Exception taxonomy for the AutoClaim sync engine.

Failures below a Poller tick or BatchRunner run never escape into the timer
loop.  These exceptions travel between the adapters and the tick/run
boundary, where they are logged and turned into skipped ticks or failed
``JobOutcome`` records.

Per-entity job failures are not an exception type: they are represented by
``JobOutcome(ok=False)`` in ``src.autoclaim.base``.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all engine errors."""


class AuthFailure(SyncError):
    """A credential refresh (login / handshake) failed.

    Raised to every caller waiting on ``TokenCache.get`` for that name.
    No stale credential is served after this.
    """

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Credential refresh failed for '{name}': {reason}")
        self.name = name
        self.reason = reason


class UpstreamUnavailable(SyncError):
    """An upstream fetch failed or timed out.  Retried on the next cycle."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class SignatureInputError(SyncError, ValueError):
    """The canonical string could not be built from the given inputs.

    This is a programmer error and is never retried.
    """


class DeliveryFailure(SyncError):
    """A notification could not be delivered.

    Only used inside notifier implementations; ``Notifier.deliver`` converts
    it into ``DeliveryResult(delivered=False)`` before returning.
    """

    def __init__(self, recipient_id: str, reason: str) -> None:
        super().__init__(f"Delivery to {recipient_id} failed: {reason}")
        self.recipient_id = recipient_id
        self.reason = reason
