from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlsplit, urlunsplit

from mockchain.config import Settings, get_settings, reset_settings_cache
from mockchain.logging import get_logger
from mockchain.service.chain import ChainRunner
from mockchain.service.dispatch import ExternalFetcher
from mockchain.service.notifications import NotificationService
from mockchain.service.request_log import RequestLogWriter
from mockchain.service.resolver import TargetResolver
from mockchain.service.stateful import StatefulRequestHandler
from mockchain.storage.memory import MemoryStore
from mockchain.storage.postgres import PostgresStore
from mockchain.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """``redis://:secret@host:6379`` -> ``redis://:***@host:6379`` for log output."""
    if not url:
        return url
    try:
        parts = urlsplit(url)
        password = parts.password
    except ValueError:
        return "***url_parse_error***"
    if not password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    masked = parts._replace(netloc=f"{parts.username or ''}:***@{host}")
    return urlunsplit(masked)


def _build_store(settings: Settings) -> Union[MemoryStore, PostgresStore]:
    store_type = "memory" if settings.use_memory_store else "postgres"
    try:
        store = MemoryStore() if settings.use_memory_store else PostgresStore(settings.database_url)
    except Exception as exc:
        logger.error(
            "runtime_store_init_failed",
            store_type=store_type,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    logger.info("runtime_store_initialized", store_type=store_type)
    return store


def _connect_cache(settings: Settings) -> Optional[RedisCache]:
    """Return a verified Redis client, or None when publishing is disabled.

    Without Redis, notifications are still recorded but never published. That
    is only accepted in test mode or with ``ALLOW_REDIS_FALLBACK``.
    """
    failure: Optional[Exception] = None
    if settings.redis_url:
        try:
            cache = RedisCache(settings.redis_url)
            cache.verify_connection()
            return cache
        except Exception as exc:
            failure = exc

    if not settings.test_mode and not settings.allow_redis_fallback:
        raise RuntimeError(
            "Redis is unreachable; notifications cannot be published. Start Redis "
            "or set ALLOW_REDIS_FALLBACK=true to only record them."
        ) from failure
    logger.warning(
        "notification_publish_disabled",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(failure) if failure else "redis_url_missing",
    )
    return None


class Runtime:
    """Process-wide service graph behind the HTTP routes.

    The chain runner gets the stateful handler bound after both exist, so
    chained internal calls go through the same code path as HTTP traffic.
    """

    def __init__(self):
        self.settings = get_settings()
        self.store = _build_store(self.settings)
        self.cache = _connect_cache(self.settings)
        self.notifications = NotificationService(
            self.store, self.cache, channel=self.settings.notification_channel
        )
        self.log_writer = RequestLogWriter(self.store, notifier=self.notifications)
        self.chain_runner = ChainRunner(
            self.store,
            resolver=TargetResolver(self.store),
            fetcher=ExternalFetcher(connect_timeout=self.settings.external_connect_timeout),
            log_writer=self.log_writer,
            settings=self.settings,
        )
        self.handler = StatefulRequestHandler(
            self.store,
            chain_runner=self.chain_runner,
            log_writer=self.log_writer,
            inline_chains=self.settings.test_mode,
        )
        self.chain_runner.bind_handler(self.handler.handle)
        logger.info(
            "runtime_ready",
            store_type=type(self.store).__name__,
            publishing=self.cache is not None,
            inline_chains=self.settings.test_mode,
        )


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the service graph from fresh settings; TEST_MODE only."""
    global runtime

    with _runtime_lock:
        previous = runtime
        if previous is not None and previous.cache is not None:
            try:
                asyncio.get_running_loop().create_task(previous.cache.close())
            except RuntimeError:
                asyncio.run(previous.cache.close())

        reset_settings_cache()
        if not get_settings().test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
