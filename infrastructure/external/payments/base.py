"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers subclass and implement provider-specific protocol details.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.entity import StandardStatus
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._retry_cfg = retry or {
            "max": payment_settings.retry.max,
            "base": payment_settings.retry.base_backoff,
        }
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            pool=self._timeouts_cfg["connect"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        # Kept open for reuse; aclose() releases it.
        yield self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    def map_response_code(self, code: Optional[str]) -> StandardStatus:
        """Static lookup; unknown or missing codes are FAILED, never SUCCESS."""
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return StandardStatus(mapping.get(code or "", StandardStatus.FAILED.value))

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
