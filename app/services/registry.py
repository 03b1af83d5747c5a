"""
Process-wide service registry.

Built once in the application lifespan and handed to routes through the
get_registry dependency; tests build their own with fakes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import Request

from app.core.config import Settings, get_settings
from app.services.import_jobs import ImportJobRunner
from app.services.sync_scheduler import PollingSyncScheduler
from app.services.websockets.manager import ConnectionManager
from app.services.woocommerce.client import client_for_settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    settings: Settings
    session_factory: Any
    client_factory: Callable[[Any], Any]
    connections: ConnectionManager
    scheduler: PollingSyncScheduler
    import_jobs: ImportJobRunner

    async def startup(self, start_scheduler: Optional[bool] = None) -> None:
        # Jobs left running by a previous process are re-spawned before new work is accepted
        await self.import_jobs.recover_jobs()
        if self.settings.SYNC_SCHEDULER_ENABLED if start_scheduler is None else start_scheduler:
            self.scheduler.start()
        else:
            logger.info("Polling scheduler disabled (SYNC_SCHEDULER_ENABLED=false)")

    async def shutdown(self) -> None:
        self.scheduler.stop()
        await self.import_jobs.shutdown()


def build_registry(
    settings: Optional[Settings] = None,
    session_factory=None,
    client_factory: Optional[Callable[[Any], Any]] = None,
    page_delay: Optional[float] = None,
) -> ServiceRegistry:
    settings = settings or get_settings()
    if session_factory is None:
        from app.database import async_session
        session_factory = async_session
    client_factory = client_factory or client_for_settings
    connections = ConnectionManager()

    return ServiceRegistry(
        settings=settings,
        session_factory=session_factory,
        client_factory=client_factory,
        connections=connections,
        scheduler=PollingSyncScheduler(session_factory, client_factory, settings),
        import_jobs=ImportJobRunner(
            session_factory,
            client_factory,
            publisher=connections,
            settings=settings,
            page_delay=page_delay,
        ),
    )


def get_registry(request: Request) -> ServiceRegistry:
    return request.app.state.registry
