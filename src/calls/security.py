"""Per-call secrets that authorize inbound media-socket connections."""

from __future__ import annotations

import hmac
import secrets

TOKEN_BYTES = 32


def generate_media_token() -> str:
    """Return a random hex token for one session's media socket."""

    return secrets.token_hex(TOKEN_BYTES)


def tokens_match(expected: str | None, actual: str | None) -> bool:
    """Constant-time comparison; empty values never match."""

    if not expected or not actual:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))
