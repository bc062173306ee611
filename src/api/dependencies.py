"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from calls.orchestrator import CallOrchestrator
    from telephony.webhooks import WebhookHandler


@lru_cache(maxsize=1)
def _orchestrator_factory() -> CallOrchestrator:
    # Lazy import to avoid importing speech SDKs at module import time.
    from calls.orchestrator import build_orchestrator

    return build_orchestrator()


def get_orchestrator() -> CallOrchestrator:
    return _orchestrator_factory()


def get_webhook_handler() -> WebhookHandler:
    from config.settings import get_settings
    from telephony.webhooks import get_webhook_handler as handler_for

    return handler_for(get_settings().phone_provider)


async def shutdown_orchestrator() -> None:
    """Hang up and clean up live calls, if an orchestrator was ever built."""

    if _orchestrator_factory.cache_info().currsize:
        await _orchestrator_factory().shutdown()
        _orchestrator_factory.cache_clear()
