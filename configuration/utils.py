from typing import Any

from django.conf import settings
from django.core.cache import caches

from configuration.models import Configuration

CONFIGURATION_KEY_PREFIX = "config"

_MISSING = object()


def configuration_value(key: str, default: Any = _MISSING) -> Any:
    """
    Retrieve a configuration value by key with caching and type casting.

    Values are read from the ``configuration_cache`` cache alias first; on a
    miss the ``Configuration`` row is loaded, cast with ``get_value()`` and
    cached for ``settings.CONFIGURATION_CACHE_TIMEOUT`` seconds.

    Args:
        key (str): The configuration key to resolve.
        default (Any): Returned when no ``Configuration`` row exists for the
            key. Defaults are not cached, so adding the row later takes effect
            immediately.

    Returns:
        Any: The resolved and type-cast configuration value.

    Raises:
        Configuration.DoesNotExist: If the key is not present in the database
            and no default was given.
    """
    config_cache = caches["configuration_cache"]
    cache_key = f"{CONFIGURATION_KEY_PREFIX}_{key}"
    value = config_cache.get(cache_key)

    if value is None:
        try:
            value = cache_configuration_value(key)
        except Configuration.DoesNotExist:
            if default is _MISSING:
                raise
            return default

    return value


def cache_configuration_value(key: str, value: Any | None = None) -> Any:
    """
    Populate or refresh the cached value for a configuration key.

    If ``value`` is ``None`` the ``Configuration`` row is loaded and cast via
    ``get_value()``; otherwise ``value`` is cached as given.

    Raises:
        Configuration.DoesNotExist: If ``value`` is ``None`` and there is no
            ``Configuration`` row with the given key.
    """
    config_cache = caches["configuration_cache"]
    cache_key = f"{CONFIGURATION_KEY_PREFIX}_{key}"

    if value is None:
        config = Configuration.objects.get(key=key)
        value = config.get_value()

    config_cache.set(cache_key, value, timeout=settings.CONFIGURATION_CACHE_TIMEOUT)
    return value
