# app/services/settings_service.py
"""
Per-tenant sync settings: read, save (after a live connectivity test),
connection test, and registration of the order webhooks on the remote store.
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.enums import WebhookTopic
from app.core.exceptions import RemoteAPIError, RemoteAuthError, SettingsValidationError, SyncError
from app.core.security import generate_webhook_secret
from app.models.sync_settings import SyncSettings
from app.schemas.sync import SyncSettingsPayload
from app.services.woocommerce.client import client_for_settings

logger = logging.getLogger(__name__)


async def get_sync_settings(db: AsyncSession, company_id: str) -> Optional[SyncSettings]:
    result = await db.execute(select(SyncSettings).where(SyncSettings.company_id == company_id))
    return result.scalars().first()


async def require_sync_settings(db: AsyncSession, company_id: str) -> SyncSettings:
    sync_settings = await get_sync_settings(db, company_id)
    if sync_settings is None:
        raise SyncError(f"No store is configured for company {company_id}")
    return sync_settings


class SyncSettingsService:

    def __init__(
        self,
        db: AsyncSession,
        client_factory: Callable[[Any], Any] = client_for_settings,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.client_factory = client_factory
        self.settings = settings or get_settings()

    async def get(self, company_id: str) -> Optional[SyncSettings]:
        return await get_sync_settings(self.db, company_id)

    async def _check_store(self, candidate: SyncSettings) -> Dict[str, Any]:
        client = self.client_factory(candidate)
        try:
            return await client.test_connection()
        except RemoteAuthError as e:
            raise SettingsValidationError(f"The store rejected the credentials: {e}")
        except RemoteAPIError as e:
            raise SettingsValidationError(f"Could not connect to the store: {e}")

    async def test_connection(self, company_id: str, payload: Optional[SyncSettingsPayload] = None) -> Dict[str, Any]:
        """Check the store with the submitted (or stored) credentials; nothing is persisted."""
        existing = await self.get(company_id)
        if payload is None:
            if existing is None:
                raise SettingsValidationError("No store is configured and no credentials were given")
            candidate = existing
        else:
            candidate = self._candidate(company_id, payload, existing)
        # Release the connection before talking to the store
        await self.db.commit()
        return await self._check_store(candidate)

    def _candidate(self, company_id: str, payload: SyncSettingsPayload, existing: Optional[SyncSettings]) -> SyncSettings:
        secret = payload.consumer_secret or (existing.consumer_secret if existing else None)
        if not secret:
            raise SettingsValidationError("Consumer secret is required")
        # Transient row, never added to the session
        return SyncSettings(
            company_id=company_id,
            store_url=payload.store_url,
            consumer_key=payload.consumer_key,
            consumer_secret=secret,
        )

    async def save(self, company_id: str, payload: SyncSettingsPayload) -> SyncSettings:
        """
        Persist settings for a tenant after confirming the store accepts the
        credentials.

        Raises:
            SettingsValidationError: connectivity or authentication test failed
        """
        existing = await self.get(company_id)
        candidate = self._candidate(company_id, payload, existing)
        await self.db.commit()

        info = await self._check_store(candidate)
        logger.info(f"Connectivity test passed for {company_id} ({candidate.store_url}, version {info.get('version')})")

        sync_settings = existing or SyncSettings(company_id=company_id)
        sync_settings.store_url = candidate.store_url
        sync_settings.consumer_key = candidate.consumer_key
        sync_settings.consumer_secret = candidate.consumer_secret
        sync_settings.sync_enabled = payload.sync_enabled
        sync_settings.sync_direction = payload.sync_direction.value
        sync_settings.sync_interval_minutes = payload.sync_interval_minutes
        sync_settings.webhook_enabled = payload.webhook_enabled
        if payload.webhook_secret:
            sync_settings.webhook_secret = payload.webhook_secret
        sync_settings.status_mapping = payload.status_mapping or None

        if existing is None:
            self.db.add(sync_settings)
        await self.db.commit()
        logger.info(f"Saved sync settings for {company_id}")
        return sync_settings

    async def set_interval(self, company_id: str, minutes: int) -> SyncSettings:
        if minutes < 1:
            raise SettingsValidationError("Interval must be at least 1 minute")
        sync_settings = await require_sync_settings(self.db, company_id)
        sync_settings.sync_interval_minutes = minutes
        await self.db.commit()
        logger.info(f"Polling interval for {company_id} set to {minutes} minutes")
        return sync_settings

    async def register_webhooks(self, company_id: str, base_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Register the order webhooks on the remote store.

        Generates a webhook secret when none is stored. Per-topic failures are
        reported in the result rather than raised.
        """
        sync_settings = await require_sync_settings(self.db, company_id)
        base_url = (base_url or self.settings.PUBLIC_BASE_URL or "").rstrip("/")
        if not base_url:
            raise SettingsValidationError("A public base URL is required to register webhooks")

        if not sync_settings.webhook_secret:
            sync_settings.webhook_secret = generate_webhook_secret()
        delivery_url = f"{base_url}/webhook/{company_id}"
        secret = sync_settings.webhook_secret
        await self.db.commit()

        client = self.client_factory(sync_settings)
        registered: Dict[str, Any] = dict(sync_settings.webhook_ids or {})
        failures: Dict[str, str] = {}
        for topic in WebhookTopic:
            try:
                remote = await client.create("webhooks", {
                    "name": f"Order sync - {topic.value}",
                    "topic": topic.value,
                    "delivery_url": delivery_url,
                    "secret": secret,
                    "status": "active",
                })
                registered[topic.value] = remote.get("id")
                logger.info(f"Registered {topic.value} webhook for {company_id}: {remote.get('id')}")
            except RemoteAPIError as e:
                failures[topic.value] = str(e)
                logger.warning(f"Failed to register {topic.value} webhook for {company_id}: {e}")

        sync_settings.webhook_ids = registered
        sync_settings.webhook_url = delivery_url
        if registered:
            sync_settings.webhook_enabled = True
        await self.db.commit()

        return {
            "webhook_url": delivery_url,
            "registered": registered,
            "failed": failures,
        }
