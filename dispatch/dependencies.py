"""
Service wiring for the HTTP layer.

Routers depend on ``get_services``; tests swap it through
``app.dependency_overrides`` to run against in-memory repositories.
"""
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis

from dispatch.repositories.base import UnitOfWorkFactory
from dispatch.repositories.sql import SqlUnitOfWork
from dispatch.redis_client import get_redis
from dispatch.services.catalog import CatalogClient
from dispatch.services.groups import SharedRideGroupManager
from dispatch.services.lifecycle import BookingLifecycleManager
from dispatch.services.matching import ProviderMatcher
from dispatch.services.notifications import NotificationDispatcher, build_sink
from dispatch.services.orchestrator import DispatchOrchestrator
from dispatch.services.pricing import FareEstimator
from dispatch.services.zones import ZoneService

_notifier: Optional[NotificationDispatcher] = None


def get_notifier() -> NotificationDispatcher:
    global _notifier
    if _notifier is None:
        _notifier = NotificationDispatcher(build_sink())
    return _notifier


@dataclass
class DispatchServices:
    uow_factory: UnitOfWorkFactory
    orchestrator: DispatchOrchestrator
    lifecycle: BookingLifecycleManager
    groups: SharedRideGroupManager
    matcher: ProviderMatcher


def build_services(
    uow_factory: UnitOfWorkFactory,
    notifier: NotificationDispatcher,
    redis: Optional[aioredis.Redis] = None,
    catalog: Optional[CatalogClient] = None,
    estimator: Optional[FareEstimator] = None,
) -> DispatchServices:
    estimator = estimator or FareEstimator(redis)
    groups = SharedRideGroupManager(uow_factory, estimator)
    matcher = ProviderMatcher(uow_factory, notifier, redis)
    lifecycle = BookingLifecycleManager(uow_factory, groups, notifier)
    orchestrator = DispatchOrchestrator(
        uow_factory,
        estimator,
        ZoneService(),
        groups,
        matcher,
        notifier,
        catalog or CatalogClient(),
    )
    return DispatchServices(
        uow_factory=uow_factory,
        orchestrator=orchestrator,
        lifecycle=lifecycle,
        groups=groups,
        matcher=matcher,
    )


async def get_services() -> DispatchServices:
    redis = await get_redis()
    return build_services(SqlUnitOfWork, get_notifier(), redis=redis)
