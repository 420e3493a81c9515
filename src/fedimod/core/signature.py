"""Webhook signature verification (core domain).

The remote platform signs each delivery with ``X-Hub-Signature:
<algorithm>=<hex digest>``, an HMAC over the raw request body keyed with the
instance's webhook secret. Verification must run on the bytes exactly as
received, before any JSON decoding.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional, Union

from fedimod.core.errors import Unauthorized

SIGNATURE_HEADER = "X-Hub-Signature"

# SHA-1 is deliberately absent.
SUPPORTED_ALGORITHMS = {
    "sha256": hashlib.sha256,
    "sha384": hashlib.sha384,
    "sha512": hashlib.sha512,
}


@dataclass(frozen=True)
class HubSignature:
    """A decoded signature header."""

    algorithm: str
    digest: bytes


def _as_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def parse_signature(header: Optional[str]) -> HubSignature:
    """Decode a signature header, raising ``Unauthorized`` on any malformation."""

    if not header:
        raise Unauthorized("Missing signature header")
    algorithm, sep, hex_digest = header.strip().partition("=")
    if not sep:
        raise Unauthorized("Signature header is not in algorithm=digest form")
    algorithm = algorithm.lower()
    digest_factory = SUPPORTED_ALGORITHMS.get(algorithm)
    if digest_factory is None:
        raise Unauthorized(f"Unsupported signature algorithm: {algorithm}")
    try:
        digest = binascii.unhexlify(hex_digest)
    except (binascii.Error, ValueError) as exc:
        raise Unauthorized("Signature digest is not valid hex") from exc
    if len(digest) != digest_factory().digest_size:
        raise Unauthorized("Signature digest has the wrong length")
    return HubSignature(algorithm=algorithm, digest=digest)


def compute_signature(secret: Union[str, bytes], body: bytes, algorithm: str = "sha256") -> str:
    """Return the header value the remote platform would send for ``body``."""

    digest_factory = SUPPORTED_ALGORITHMS[algorithm]
    digest = hmac.new(_as_bytes(secret), body, digest_factory).hexdigest()
    return f"{algorithm}={digest}"


def verify(secret: Union[str, bytes, None], raw_body: bytes, supplied_signature: Optional[str]) -> bool:
    """Return True only if ``supplied_signature`` was made with ``secret`` over ``raw_body``."""

    if not secret:
        return False
    try:
        signature = parse_signature(supplied_signature)
    except Unauthorized:
        return False
    expected = hmac.new(
        _as_bytes(secret),
        raw_body,
        SUPPORTED_ALGORITHMS[signature.algorithm],
    ).digest()
    return hmac.compare_digest(expected, signature.digest)
