"""Canonical request signing for SKPORT-style upstream APIs.

The upstream verifier rebuilds the same canonical string on its side, so the
construction below must match byte-for-byte:

    core   = path + ("" if method == "GET" else body)
    core  += timestamp
    core  += JSON({platform, timestamp, dId, vName})   # fixed key order, no spaces
    digest = md5(hex(hmac_sha256(secret, core)))

The HMAC output is hex-encoded to ASCII *before* the MD5 step.  Hashing the
raw HMAC bytes produces a different digest that the upstream rejects.

Usage::

    spec = SignedRequestSpec.build("/web/v1/game/endfield/attendance", "POST",
                                   headers={"platform": "3", "vName": "1.0.0"})
    headers = signed_headers(spec, secret=profile.sk_token_cache_key)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping

from src.autoclaim.errors import SignatureInputError

#: Keys of the header object appended to the canonical string, in order.
FIXED_HEADER_ORDER: tuple[str, ...] = ("platform", "timestamp", "dId", "vName")

#: Name of the outbound header carrying the digest.
SIGN_HEADER = "sign"


def unix_timestamp(clock: Callable[[], float] = time.time) -> str:
    """Return the current time as decimal seconds since the epoch."""
    return str(int(clock()))


@dataclass(frozen=True)
class SignedRequestSpec:
    """Inputs of one signed request.  Built fresh per call, never reused.

    Attributes:
        path:      Request path, without scheme/host/query.
        method:    HTTP method (case-insensitive).
        body:      Raw request body string ('' when empty).
        timestamp: Decimal seconds since the epoch.
        headers:   Values for the fixed header keys.  ``timestamp`` may be
                   omitted (the request's own timestamp is used); ``dId`` may be
                   omitted (serialized as '').
    """

    path: str
    method: str
    body: str
    timestamp: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        path: str,
        method: str,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "SignedRequestSpec":
        """Create a request stamped with the current time."""
        return cls(
            path=path,
            method=method,
            body=body,
            timestamp=unix_timestamp(clock),
            headers=dict(headers or {}),
        )


def _header_object(spec: SignedRequestSpec) -> dict[str, str]:
    obj: dict[str, str] = {}
    for key in FIXED_HEADER_ORDER:
        if key == "timestamp":
            supplied = spec.headers.get("timestamp")
            if supplied not in (None, "") and supplied != spec.timestamp:
                raise SignatureInputError(
                    f"timestamp header {supplied!r} does not match request "
                    f"timestamp {spec.timestamp!r}"
                )
            obj[key] = spec.timestamp
        elif key == "dId":
            obj[key] = spec.headers.get("dId") or ""
        else:
            value = spec.headers.get(key)
            if not value:
                raise SignatureInputError(f"missing required signing header '{key}'")
            obj[key] = value
    return obj


def canonical_string(spec: SignedRequestSpec) -> str:
    """Build the exact string that both sides hash.

    Raises:
        SignatureInputError: Malformed timestamp or missing fixed headers.
    """
    if not isinstance(spec.timestamp, str) or not spec.timestamp.isdigit():
        raise SignatureInputError(
            f"timestamp must be decimal seconds since epoch, got {spec.timestamp!r}"
        )
    if not spec.path.startswith("/"):
        raise SignatureInputError(f"path must start with '/', got {spec.path!r}")

    core = spec.path
    if spec.method.upper() != "GET":
        core += spec.body
    core += spec.timestamp
    core += json.dumps(_header_object(spec), separators=(",", ":"), ensure_ascii=False)
    return core


def sign(spec: SignedRequestSpec, secret: str | None) -> str | None:
    """Return the 32-char hex digest for ``spec``, or None without a secret.

    An unsigned request is valid for read-only pre-auth flows, so a missing
    secret yields None rather than a garbage signature.
    """
    core = canonical_string(spec)
    if not secret:
        return None
    hmac_hex = hmac.new(
        secret.encode("utf-8"), core.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return hashlib.md5(hmac_hex.encode("ascii")).hexdigest()


def signed_headers(
    spec: SignedRequestSpec,
    secret: str | None,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge the fixed signing headers and the digest into ``base``.

    The ``sign`` header is omitted entirely when there is no secret.
    """
    headers = dict(base or {})
    for key, value in _header_object(spec).items():
        if key == "dId" and not value:
            continue
        headers[key] = value
    digest = sign(spec, secret)
    if digest is not None:
        headers[SIGN_HEADER] = digest
    else:
        headers.pop(SIGN_HEADER, None)
    return headers
