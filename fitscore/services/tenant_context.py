"""
Per-tenant wiring: decrypted credentials, the tenant's CRM client and the
resilient caller that keeps that client's token fresh.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.tenant import AIConfig, TenantAccount
from fitscore.repositories.tenant_repository import TenantRepository
from fitscore.services.ai.llm_oracle import default_ai_config
from fitscore.services.crm.hubspot_client import HubSpotClient
from fitscore.services.crm.resilient_caller import ResilientCaller
from fitscore.services.crm.token_refresher import HubSpotTokenRefresher
from fitscore.services.infrastructure.encryption_service import decrypt_credentials


@dataclass(slots=True)
class TenantContext:
    tenant_id: str
    client: HubSpotClient
    caller: ResilientCaller
    ai_config: AIConfig
    logger: structlog.stdlib.BoundLogger


@asynccontextmanager
async def open_tenant_context(
    account: TenantAccount, *, logger: structlog.stdlib.BoundLogger | None = None
) -> AsyncGenerator[TenantContext, None]:
    log = component_logger(__name__, logger, tenant_id=account.portal_id)
    access_token, refresh_token = decrypt_credentials(
        account.encrypted_access_token, account.encrypted_refresh_token
    )

    client = HubSpotClient(access_token, logger=log)
    refresher = HubSpotTokenRefresher(account.portal_id, refresh_token, client, logger=log)
    try:
        yield TenantContext(
            tenant_id=account.portal_id,
            client=client,
            caller=ResilientCaller(refresher, logger=log),
            ai_config=default_ai_config(account.ai_config),
            logger=log,
        )
    finally:
        await client.close()


class TenantNotFoundError(Exception):
    def __init__(self, tenant_id: str, recoverable: bool = False):
        super().__init__(f"No active tenant '{tenant_id}'")
        self.tenant_id = tenant_id
        self.recoverable = recoverable


async def load_tenants(
    tenant_id: str | None, repository: type[TenantRepository] = TenantRepository
) -> list[TenantAccount]:
    """Every active tenant, or exactly the one asked for."""
    if tenant_id is None:
        return await repository.list_active_tenants()
    account = await repository.get_tenant(tenant_id)
    if account is None or account.status != "active":
        raise TenantNotFoundError(tenant_id)
    return [account]
