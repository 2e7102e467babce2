# sfsync/salesforce/auth.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import httpx

from sfsync.core.config import settings
from sfsync.core.errors import SalesforceApiError, TransientNetworkError

logger = logging.getLogger(settings.APP_NAME)

# Salesforce does not return expires_in for the password flow; assume the default session length.
ASSUMED_SESSION_SECONDS = 2 * 60 * 60


class SalesforceAuth:
    """
    Caches a Salesforce access token obtained with the OAuth 2.0 password flow.
    Re-authenticates when the token is missing, inside the refresh buffer,
    or when a request came back 401.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._lock = asyncio.Lock()
        self._access_token: Optional[str] = None
        self._instance_url: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

    def _is_token_expired(self) -> bool:
        if not self._access_token or not self._token_expiry:
            return True
        buffer = timedelta(seconds=settings.SALESFORCE_TOKEN_REFRESH_BUFFER)
        return datetime.now(timezone.utc) >= self._token_expiry - buffer

    async def authenticate(self) -> None:
        payload = {
            "grant_type": "password",
            "client_id": settings.SALESFORCE_CLIENT_ID,
            "client_secret": settings.SALESFORCE_CLIENT_SECRET,
            "username": settings.SALESFORCE_USERNAME,
            "password": settings.SALESFORCE_PASSWORD,
        }

        logger.info("Authenticating with Salesforce...")
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                response = await client.post(str(settings.SALESFORCE_TOKEN_URL), data=payload)
                response.raise_for_status()
            except httpx.RequestError as e:
                logger.error(f"Salesforce authentication request failed (network issue): {e.__class__.__name__}: {e}")
                raise TransientNetworkError(f"Failed to authenticate with Salesforce: {e.__class__.__name__}") from e
            except httpx.HTTPStatusError as e:
                detail = e.response.text
                try:
                    err_json = e.response.json()
                    detail = err_json.get("error_description") or err_json.get("error") or detail
                except ValueError: # Not JSON
                    pass
                logger.error(f"Salesforce authentication failed with status {e.response.status_code}: {detail}")
                raise SalesforceApiError(e.response.status_code, f"Authentication failed: {detail}") from e

        auth_response = response.json()
        access_token = auth_response.get("access_token")
        instance_url = auth_response.get("instance_url")
        if not access_token or not instance_url:
            logger.error("Authentication response missing access_token or instance_url.")
            raise SalesforceApiError(response.status_code, "Authentication response missing access_token or instance_url.")

        issued_at = auth_response.get("issued_at")
        issued = (
            datetime.fromtimestamp(int(issued_at) / 1000.0, tz=timezone.utc)
            if issued_at else datetime.now(timezone.utc)
        )
        self._access_token = access_token
        self._instance_url = instance_url
        self._token_expiry = issued + timedelta(seconds=ASSUMED_SESSION_SECONDS)
        logger.info(f"Authentication successful. Instance URL: {instance_url}. Estimated expiry: {self._token_expiry.isoformat()}")

    async def get_auth_details(self) -> Tuple[str, str]:
        """Returns (access_token, instance_url), authenticating first if needed."""
        async with self._lock:
            if self._is_token_expired() or not self._instance_url:
                await self.authenticate()
        return self._access_token, self._instance_url

    async def handle_401_unauthorized(self) -> None:
        logger.warning("Received 401 Unauthorized from Salesforce. Forcing token refresh.")
        async with self._lock:
            self._access_token = None
            self._token_expiry = None
            await self.authenticate()


_auth_instance: Optional[SalesforceAuth] = None

async def get_salesforce_auth_instance() -> SalesforceAuth:
    """FastAPI dependency returning the process-wide SalesforceAuth."""
    global _auth_instance
    if _auth_instance is None:
        _auth_instance = SalesforceAuth()
    return _auth_instance
