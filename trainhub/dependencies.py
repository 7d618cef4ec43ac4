# trainhub/dependencies.py
"""
Engine container and FastAPI dependencies.

The container is built once per application (lifespan) from Settings and
stored on app.state; request handlers reach it through get_services().
Identity is the X-User-ID header set by the auth gateway in front of the
API; the bearer token is forwarded to the checkout gateway untouched.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from redis import Redis

from .config import Settings
from .database import create_db_engine, init_db
from .exceptions import AuthError
from .services.aggregation import SessionAggregator, build_policy
from .services.bookings import BookingManager
from .services.cache import FileCache, LocalCache, MemoryCache, RedisCache
from .services.checkout import CheckoutClient, CheckoutService
from .services.remote import (
    ChangeFeed,
    HttpRemoteStore,
    LocalChangeFeed,
    RedisChangeFeed,
    RemoteStore,
    SqlRemoteStore,
)
from .services.sessions import SessionService
from .services.sync import Reconciler, SyncLoop, SyncScope
from .services.trainers import TrainerCatalog

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    cache: LocalCache
    remote: RemoteStore
    catalog: TrainerCatalog
    reconciler: Reconciler
    bookings: BookingManager
    aggregator: SessionAggregator
    sessions: SessionService
    checkout: CheckoutService
    sync_loop: SyncLoop

    async def aclose(self) -> None:
        await self.sync_loop.stop()
        await self.remote.aclose()
        if self.remote.feed is not None:
            await self.remote.feed.aclose()


def build_cache(settings: Settings) -> LocalCache:
    if settings.cache_backend == "redis":
        if not settings.redis_url:
            raise ValueError("cache_backend=redis requires redis_url")
        return RedisCache(Redis.from_url(settings.redis_url, decode_responses=True))
    if settings.cache_backend == "memory":
        return MemoryCache()
    return FileCache(settings.cache_dir)


def build_feed(settings: Settings) -> ChangeFeed:
    if settings.redis_url:
        return RedisChangeFeed(settings.redis_url)
    return LocalChangeFeed()


def build_remote(settings: Settings, feed: Optional[ChangeFeed] = None) -> RemoteStore:
    if settings.remote_backend == "http":
        if not settings.remote_url:
            raise ValueError("remote_backend=http requires remote_url")
        return HttpRemoteStore(
            settings.remote_url,
            api_key=settings.remote_api_key,
            timeout=settings.remote_timeout_seconds,
            feed=feed,
        )
    engine = create_db_engine(settings.resolved_database_url)
    init_db(engine)
    return SqlRemoteStore(engine, feed=feed, timeout=settings.remote_timeout_seconds)


def build_services(
    settings: Settings,
    *,
    cache: Optional[LocalCache] = None,
    remote: Optional[RemoteStore] = None,
    checkout_client: Optional[CheckoutClient] = None,
    catalog: Optional[TrainerCatalog] = None,
) -> Services:
    cache = cache or build_cache(settings)
    remote = remote or build_remote(settings, build_feed(settings))
    catalog = catalog or TrainerCatalog()
    reconciler = Reconciler(cache, remote)

    bookings = BookingManager(
        cache,
        remote,
        reconciler,
        require_identity=settings.require_identity,
        cache_ttl=settings.cache_ttl_seconds,
    )
    aggregator = SessionAggregator(
        cache,
        remote,
        catalog,
        build_policy(settings),
        meeting_base_url=settings.meeting_base_url,
    )
    sessions = SessionService(cache, remote, reconciler, cache_ttl=settings.cache_ttl_seconds)
    checkout = CheckoutService(
        checkout_client
        or CheckoutClient(
            settings.checkout_url,
            price_map=settings.price_map,
            timeout=settings.remote_timeout_seconds,
        ),
        bookings,
        catalog,
        settings.public_base_url,
    )
    sync_loop = SyncLoop(
        reconciler,
        [SyncScope(trainer_id=t) for t in settings.sync_trainer_ids],
        interval=settings.sync_interval_seconds,
    )

    logger.info(
        f"Engine ready: remote={settings.remote_backend} cache={settings.cache_backend} "
        f"policy={aggregator.policy!r}"
    )
    return Services(
        settings=settings,
        cache=cache,
        remote=remote,
        catalog=catalog,
        reconciler=reconciler,
        bookings=bookings,
        aggregator=aggregator,
        sessions=sessions,
        checkout=checkout,
        sync_loop=sync_loop,
    )


# ── FastAPI dependencies ─────────────────────────────────────────────────


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id or None


def require_user_id(user_id: Optional[str] = Depends(get_user_id)) -> str:
    if not user_id:
        raise AuthError("Sign in required")
    return user_id


def get_auth_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None
