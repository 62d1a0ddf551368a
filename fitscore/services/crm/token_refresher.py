"""
Refresh strategy that rotates a tenant's HubSpot credentials.
"""

import structlog

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.repositories.tenant_repository import TenantRepository
from fitscore.services.crm.hubspot_client import HubSpotClient
from fitscore.services.crm.resilient_caller import CredentialRefreshError
from fitscore.services.infrastructure.encryption_service import encrypt_credentials


class HubSpotTokenRefresher:
    """
    Exchanges the tenant's refresh token, persists the new pair encrypted and
    points the shared client at the new access token.
    """

    def __init__(
        self,
        tenant_id: str,
        refresh_token: str,
        client: HubSpotClient,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        repository: type[TenantRepository] = TenantRepository,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.tenant_id = tenant_id
        self._refresh_token = refresh_token
        self._client = client
        self._client_id = client_id or settings.HUBSPOT_CLIENT_ID
        self._client_secret = client_secret or settings.HUBSPOT_CLIENT_SECRET
        self._repository = repository
        self._log = component_logger(
            __name__, logger, component="token_refresher", tenant_id=tenant_id
        )

    async def refresh(self) -> None:
        if not self._client_id or not self._client_secret:
            raise CredentialRefreshError(
                "HUBSPOT_CLIENT_ID/HUBSPOT_CLIENT_SECRET not configured", tenant_id=self.tenant_id
            )

        tokens = await self._client.refresh_token(
            self._refresh_token, self._client_id, self._client_secret
        )
        encrypted_access, encrypted_refresh = encrypt_credentials(
            tokens.access_token, tokens.refresh_token
        )
        await self._repository.update_credentials(
            self.tenant_id, encrypted_access, encrypted_refresh, tokens.expires_at
        )

        self._client.set_access_token(tokens.access_token)
        self._refresh_token = tokens.refresh_token
        self._log.info("Tenant credentials rotated", expires_in=tokens.expires_in)
