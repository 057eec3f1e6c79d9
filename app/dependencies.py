"""
Dependency Injection Configuration

Holds the long-lived service instances built at startup (HTTP client, guide
cache, channel listing) and exposes them as FastAPI dependencies. Tests swap
instances by registering their own before issuing requests.
"""
import logging
from typing import Any, TypeVar

from app.services.channel_listing_service import ChannelListingService
from app.services.guide_cache_service import GuideCache


logger = logging.getLogger(__name__)

T = TypeVar('T')


class ServiceLocator:
    """
    Registry of singleton service instances keyed by their type.
    """

    def __init__(self):
        """Start with nothing registered; main.register_services() fills it."""
        self._singletons: dict[type, Any] = {}

    def register_singleton(self, service_type: type[T], instance: T) -> None:
        """
        Register a singleton service instance.

        Args:
            service_type: The service type
            instance: The concrete instance to use
        """
        self._singletons[service_type] = instance
        logger.debug(f"Registered {service_type.__name__}")

    def get(self, service_type: type[T]) -> T:
        """
        Get a service instance.

        Raises:
            KeyError: If service type is not registered
        """
        try:
            return self._singletons[service_type]
        except KeyError:
            raise KeyError(f"Service {service_type.__name__} not registered in locator") from None

    def reset(self) -> None:
        """Forget every registered instance (lifespan shutdown and tests)."""
        self._singletons = {}
        logger.debug("Service registry cleared")


# Process-wide registry, created on first use
_service_locator: ServiceLocator | None = None


def get_service_locator() -> ServiceLocator:
    """
    Process-wide service registry.

    Returns:
        The global ServiceLocator
    """
    global _service_locator
    if _service_locator is None:
        _service_locator = ServiceLocator()
    return _service_locator


def reset_service_locator() -> None:
    """
    Drop the process-wide registry so the next lookup starts empty.
    """
    global _service_locator
    _service_locator = None


def get_guide_cache() -> GuideCache:
    """Guide cache dependency"""
    return get_service_locator().get(GuideCache)


def get_channel_listing_service() -> ChannelListingService:
    """Channel listing dependency"""
    return get_service_locator().get(ChannelListingService)
