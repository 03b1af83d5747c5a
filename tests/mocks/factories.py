"""Database row builders shared by the test modules."""

from app.core.enums import SyncDirection
from app.models.sync_settings import SyncSettings
from tests.mocks.fake_store import COMPANY_ID, STORE_URL


async def create_tenant(db, company_id: str = COMPANY_ID, **overrides) -> SyncSettings:
    values = dict(
        company_id=company_id,
        store_url=STORE_URL,
        consumer_key="ck_test",
        consumer_secret="cs_test",
        sync_enabled=True,
        sync_direction=SyncDirection.BOTH.value,
        sync_interval_minutes=15,
        webhook_enabled=True,
        webhook_secret=None,
    )
    values.update(overrides)
    sync_settings = SyncSettings(**values)
    db.add(sync_settings)
    await db.commit()
    return sync_settings
