"""
Process-wide wiring.

One RateLimiter and one pair of ConcurrencyLimiters exist per process so
request pacing stays global no matter how many searches run at once.
Everything is created lazily from settings on first use.
"""
import logging
from typing import Optional

from parkwatch.config import get_settings
from parkwatch.services.booking_client import HolidayParkClient
from parkwatch.services.execution_registry import ExecutionRegistry
from parkwatch.services.notification import NotificationAdapter, build_notifier
from parkwatch.services.persistence import SqlPersistence
from parkwatch.services.rate_limiter import ConcurrencyLimiter, RateLimiter
from parkwatch.services.retry import RetryConfig, RetryStrategy
from parkwatch.services.search_executor import SearchExecutor

logger = logging.getLogger(__name__)

_rate_limiter: Optional[RateLimiter] = None
_request_limiter: Optional[ConcurrencyLimiter] = None
_search_limiter: Optional[ConcurrencyLimiter] = None
_booking_client: Optional[HolidayParkClient] = None
_notifier: Optional[NotificationAdapter] = None
_executor: Optional[SearchExecutor] = None
_registry: Optional[ExecutionRegistry] = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        _rate_limiter = RateLimiter(
            min_delay_ms=settings.rate_limit_delay_min_ms,
            max_delay_ms=settings.rate_limit_delay_max_ms,
            jitter_enabled=settings.rate_limit_jitter,
            adaptive_enabled=settings.rate_limit_adaptive,
        )
    return _rate_limiter


def get_request_limiter() -> ConcurrencyLimiter:
    global _request_limiter
    if _request_limiter is None:
        _request_limiter = ConcurrencyLimiter(get_settings().max_concurrent_requests, name="requests")
    return _request_limiter


def get_search_limiter() -> ConcurrencyLimiter:
    global _search_limiter
    if _search_limiter is None:
        _search_limiter = ConcurrencyLimiter(get_settings().max_concurrent_searches, name="searches")
    return _search_limiter


def get_booking_client() -> HolidayParkClient:
    global _booking_client
    if _booking_client is None:
        settings = get_settings()
        _booking_client = HolidayParkClient(
            base_url=settings.holiday_park_api_url,
            timeout=settings.booking_timeout_seconds,
        )
    return _booking_client


def get_notifier() -> NotificationAdapter:
    global _notifier
    if _notifier is None:
        _notifier = build_notifier(get_settings())
    return _notifier


def get_executor() -> SearchExecutor:
    global _executor
    if _executor is None:
        settings = get_settings()
        _executor = SearchExecutor(
            persistence=SqlPersistence(),
            booking_client=get_booking_client(),
            notifier=get_notifier(),
            rate_limiter=get_rate_limiter(),
            request_limiter=get_request_limiter(),
            search_limiter=get_search_limiter(),
            retry_strategy=RetryStrategy(
                RetryConfig(
                    max_attempts=settings.retry_max_attempts,
                    initial_delay_ms=settings.retry_initial_delay_ms,
                    max_delay_ms=settings.retry_max_delay_ms,
                )
            ),
        )
    return _executor


def get_registry() -> ExecutionRegistry:
    global _registry
    if _registry is None:
        _registry = ExecutionRegistry(get_executor())
    return _registry


def get_limiter_status() -> dict:
    return {
        "requests": get_request_limiter().get_status(),
        "searches": get_search_limiter().get_status(),
        "request_rate_per_minute": get_rate_limiter().get_request_rate(),
        "avg_response_time_ms": get_rate_limiter().get_average_response_time(),
    }


async def shutdown_runtime():
    """Close HTTP clients held by the shared collaborators."""
    global _booking_client, _notifier, _executor, _registry
    if _booking_client is not None:
        await _booking_client.close()
    if _notifier is not None:
        await _notifier.close()
    _booking_client = None
    _notifier = None
    _executor = None
    _registry = None
    logger.info("Runtime collaborators closed")
