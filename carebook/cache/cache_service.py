import asyncio
import time
from typing import Any, Optional

from .. import metrics
from ..config import Settings
from ..utils.logging_utils import setup_logger
from .redis_client import RedisClient

logger = setup_logger(__name__)

COMPANY_SETTINGS_KEY = "company:settings"
TAX_RATES_KEY = "tax:rates"
HEALTH_CHECK_KEY = "health:check"
HEALTH_CHECK_TTL = 10


def quote_key(quote_id: str) -> str:
    return f"quote:{quote_id}"


def client_key(client_id: str) -> str:
    return f"client:{client_id}"


def template_key(template_id: str) -> str:
    return f"template:{template_id}"


def search_key(key: str) -> str:
    return f"search:{key}"


def session_key(user_id: str) -> str:
    return f"session:{user_id}"


def dashboard_stats_key(user_id: str) -> str:
    return f"dashboard:stats:{user_id}"


class CacheService:
    """Domain-namespaced cache-aside helpers; never the source of truth."""

    def __init__(
        self,
        redis_client: RedisClient,
        default_ttl: int = 3600,
        session_ttl: int = 86400,
        search_ttl: int = 300,
        dashboard_ttl: int = 1800,
        settings_ttl: int = 7200,
    ):
        self.redis = redis_client
        self.default_ttl = default_ttl
        self.session_ttl = session_ttl
        self.search_ttl = search_ttl
        self.dashboard_ttl = dashboard_ttl
        self.settings_ttl = settings_ttl

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[Any] = None) -> "CacheService":
        return cls(
            RedisClient(settings.redis_url, enabled=settings.redis_enabled, client=client),
            default_ttl=settings.cache_default_ttl,
            session_ttl=settings.cache_session_ttl,
            search_ttl=settings.cache_search_ttl,
            dashboard_ttl=settings.cache_dashboard_ttl,
            settings_ttl=settings.cache_settings_ttl,
        )

    async def connect(self) -> None:
        await self.redis.connect()

    async def disconnect(self) -> None:
        await self.redis.disconnect()

    @property
    def enabled(self) -> bool:
        return self.redis.enabled

    # --- generic ---

    async def get(self, key: str) -> Optional[Any]:
        value = await self.redis.get_json(key)
        metrics.cache_lookups.labels(result="miss" if value is None else "hit").inc()
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await self.redis.set_json(key, value, ttl or self.default_ttl)

    async def delete(self, key: str) -> bool:
        return await self.redis.delete(key)

    async def exists(self, key: str) -> bool:
        return await self.redis.exists(key)

    # --- quotes ---

    async def cache_quote(self, quote_id: str, quote: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(quote_key(quote_id), quote, ttl)

    async def get_quote(self, quote_id: str) -> Optional[Any]:
        return await self.get(quote_key(quote_id))

    async def invalidate_quote(self, quote_id: str) -> bool:
        return await self.delete(quote_key(quote_id))

    # --- clients ---

    async def cache_client(self, client_id: str, client: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(client_key(client_id), client, ttl)

    async def get_client(self, client_id: str) -> Optional[Any]:
        return await self.get(client_key(client_id))

    async def invalidate_client(self, client_id: str) -> bool:
        return await self.delete(client_key(client_id))

    # --- templates ---

    async def cache_template(
        self, template_id: str, template: Any, ttl: Optional[int] = None
    ) -> bool:
        return await self.set(template_key(template_id), template, ttl)

    async def get_template(self, template_id: str) -> Optional[Any]:
        return await self.get(template_key(template_id))

    async def invalidate_template(self, template_id: str) -> bool:
        return await self.delete(template_key(template_id))

    # --- search results ---

    async def cache_search_results(
        self, key: str, results: Any, ttl: Optional[int] = None
    ) -> bool:
        return await self.set(search_key(key), results, ttl or self.search_ttl)

    async def get_search_results(self, key: str) -> Optional[Any]:
        return await self.get(search_key(key))

    # --- user sessions ---

    async def cache_user_session(
        self, user_id: str, session: Any, ttl: Optional[int] = None
    ) -> bool:
        return await self.set(session_key(user_id), session, ttl or self.session_ttl)

    async def get_user_session(self, user_id: str) -> Optional[Any]:
        return await self.get(session_key(user_id))

    async def invalidate_user_session(self, user_id: str) -> bool:
        return await self.delete(session_key(user_id))

    # --- dashboard stats ---

    async def cache_dashboard_stats(
        self, user_id: str, stats: Any, ttl: Optional[int] = None
    ) -> bool:
        return await self.set(dashboard_stats_key(user_id), stats, ttl or self.dashboard_ttl)

    async def get_dashboard_stats(self, user_id: str) -> Optional[Any]:
        return await self.get(dashboard_stats_key(user_id))

    async def invalidate_dashboard_stats(self, user_id: str) -> bool:
        return await self.delete(dashboard_stats_key(user_id))

    # --- company settings / tax rates ---

    async def cache_company_settings(self, settings: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(COMPANY_SETTINGS_KEY, settings, ttl or self.settings_ttl)

    async def get_company_settings(self) -> Optional[Any]:
        return await self.get(COMPANY_SETTINGS_KEY)

    async def invalidate_company_settings(self) -> bool:
        return await self.delete(COMPANY_SETTINGS_KEY)

    async def cache_tax_rates(self, tax_rates: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(TAX_RATES_KEY, tax_rates, ttl or self.settings_ttl)

    async def get_tax_rates(self) -> Optional[Any]:
        return await self.get(TAX_RATES_KEY)

    async def invalidate_tax_rates(self) -> bool:
        return await self.delete(TAX_RATES_KEY)

    # --- bulk invalidation ---

    async def invalidate_user_data(self, user_id: str) -> None:
        await asyncio.gather(
            self.invalidate_user_session(user_id),
            self.invalidate_dashboard_stats(user_id),
        )

    async def invalidate_quote_related_data(
        self, quote_id: str, client_id: Optional[str] = None
    ) -> None:
        pending = [self.invalidate_quote(quote_id)]
        if client_id:
            pending.append(self.invalidate_client(client_id))
        await asyncio.gather(*pending)

    # --- health ---

    async def health_check(self) -> bool:
        """Write, read back and delete a probe key."""
        try:
            probe = str(time.time_ns())
            await self.redis.set(HEALTH_CHECK_KEY, probe, HEALTH_CHECK_TTL)
            retrieved = await self.redis.get(HEALTH_CHECK_KEY)
            await self.redis.delete(HEALTH_CHECK_KEY)
            return retrieved == probe
        except Exception as e:
            logger.error("Redis health check failed: %s", e)
            return False
