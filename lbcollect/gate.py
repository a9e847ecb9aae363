"""Rate-limit gate in front of measurement creation.

The authoritative quota is only fetched when the local shadow counter
runs dry (or is explicitly invalidated after a quota rejection); in
between, each creation just decrements the shadow.
"""

from __future__ import annotations

import logging
from typing import Optional

from lbcollect.backoff import RetryPolicy, Sleep, default_sleep
from lbcollect.errors import ProviderError
from lbcollect.providers.base import MeasurementProvider

logger = logging.getLogger(__name__)


class RateLimitGate:
    """Admits measurement creations against one credential's quota."""

    def __init__(
        self,
        provider: MeasurementProvider,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = default_sleep,
        label: str = "",
    ) -> None:
        self.provider = provider
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.label = label
        self.remaining = 0

    async def admit(self) -> int:
        """Block until the provider reports creation quota; return it.

        A failed limit fetch is retried on a fixed interval without limit.
        An exhausted quota waits out the provider's reset window.
        """
        failures = 0
        while True:
            try:
                limits = await self.provider.get_limits()
            except ProviderError as exc:
                wait = self.policy.limits_unavailable.delay(failures)
                failures += 1
                logger.warning("%sFailed to get limits (%s), waiting %.0fs...", self._prefix, exc, wait)
                await self.sleep(wait)
                continue

            if limits.remaining > 0:
                return limits.remaining

            wait = self.policy.quota_exhausted.delay(reset_seconds=limits.reset_seconds)
            logger.info("%sRate limit reached. Waiting %.0fs...", self._prefix, wait)
            await self.sleep(wait)

    async def ensure_capacity(self) -> int:
        """Re-sync with the provider if the shadow counter is empty."""
        if self.remaining <= 0:
            self.remaining = await self.admit()
            logger.debug("%sRate limit allows %d requests", self._prefix, self.remaining)
        return self.remaining

    def consume(self, units: int = 1) -> None:
        self.remaining = max(self.remaining - units, 0)

    async def acquire(self) -> None:
        """Wait for one unit of quota and spend it."""
        await self.ensure_capacity()
        self.consume()

    def invalidate(self) -> None:
        """Forget the shadow count; the next acquire asks the provider again."""
        self.remaining = 0

    @property
    def _prefix(self) -> str:
        return f"[{self.label}] " if self.label else ""
