"""
Retry-once-after-refresh wrapper for CRM calls.

``ResilientCaller`` wraps any awaitable operation. When the operation fails
because the access credential expired, the caller asks its refresh strategy
for a new credential and runs the operation one more time. Everything else,
including a second failure, reaches the caller untouched.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

import structlog

from fitscore.infrastructure.observability.logging import component_logger
from fitscore.services.crm.hubspot_client import HubSpotAuthExpiredError

T = TypeVar("T")


class RefreshStrategy(Protocol):
    """Obtains a new access credential and makes it active for later calls."""

    tenant_id: str

    async def refresh(self) -> None: ...


class CredentialRefreshError(Exception):
    """Raised when the credential could not be refreshed."""

    def __init__(self, message: str, tenant_id: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.recoverable = recoverable


def is_auth_expired(error: BaseException) -> bool:
    return isinstance(error, HubSpotAuthExpiredError)


class ResilientCaller:
    def __init__(
        self,
        refresh_strategy: RefreshStrategy,
        *,
        is_auth_expired: Callable[[BaseException], bool] = is_auth_expired,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._strategy = refresh_strategy
        self._is_auth_expired = is_auth_expired
        self._lock = asyncio.Lock()
        # Bumped on every successful refresh
        self._generation = 0
        self._log = component_logger(
            __name__, logger, component="resilient_caller", tenant_id=refresh_strategy.tenant_id
        )

    @property
    def refresh_count(self) -> int:
        return self._generation

    async def call(self, action: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        generation = self._generation
        try:
            return await action(*args, **kwargs)
        except Exception as e:
            if not self._is_auth_expired(e):
                raise
            self._log.info(
                "Access credential expired, refreshing",
                action=getattr(action, "__name__", repr(action)),
            )

        await self._refresh(generation)
        return await action(*args, **kwargs)

    async def _refresh(self, seen_generation: int) -> None:
        async with self._lock:
            if self._generation != seen_generation:
                # Another call rotated the credential while this one was failing
                return
            try:
                await self._strategy.refresh()
            except CredentialRefreshError:
                raise
            except Exception as e:
                self._log.error("Credential refresh failed", error=str(e))
                raise CredentialRefreshError(
                    f"Token refresh failed: {e}", tenant_id=self._strategy.tenant_id
                ) from e
            self._generation += 1
            self._log.info("Access credential refreshed", generation=self._generation)

    def wrap(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Decorate ``func`` so every invocation goes through ``call``."""

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await self.call(func, *args, **kwargs)

        return wrapper
