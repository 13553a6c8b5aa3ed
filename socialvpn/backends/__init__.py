"""
Identity-provider and social-network backends for SocialVPN.

Supports a static in-memory directory and an HTTP directory service,
fronted by the ProviderAggregator.
"""

import logging
from typing import Dict, Type

from .base import IdentityProvider, SocialNetwork
from .static import StaticBackend
from .http_backend import HttpSocialBackend
from .aggregator import ProviderAggregator, ProviderStatus
from socialvpn.exceptions import ConfigError

logger = logging.getLogger(__name__)


BACKEND_TYPES: Dict[str, Type] = {
    "static": StaticBackend,
    "http": HttpSocialBackend,
}


def create_backend(backend_type: str, local_user, options: Dict):
    """
    Build one backend by type name.

    Args:
        backend_type: "static" or "http"
        local_user: The local identity
        options: Backend-specific options

    Returns:
        Backend instance

    Raises:
        ConfigError: if the type is unknown or options are incomplete
    """
    backend_cls = BACKEND_TYPES.get(backend_type)
    if backend_cls is None:
        raise ConfigError(f"Unknown backend type: {backend_type}")
    try:
        return backend_cls.from_options(local_user, options or {})
    except KeyError as e:
        raise ConfigError(f"Backend {backend_type} missing option {e}") from e


def load_backends(config, local_user, aggregator: ProviderAggregator) -> int:
    """
    Register every configured backend with the aggregator.

    Args:
        config: SocialConfig with a "backends" list
        local_user: The local identity
        aggregator: Aggregator to register with

    Returns:
        Number of backends registered
    """
    count = 0
    for backend_config in config.backends:
        backend = create_backend(backend_config.type, local_user, backend_config.options)
        aggregator.register_backend(backend_config.name, backend)
        count += 1
    logger.info(f"Loaded {count} backends")
    return count


__all__ = [
    "IdentityProvider",
    "SocialNetwork",
    "StaticBackend",
    "HttpSocialBackend",
    "ProviderAggregator",
    "ProviderStatus",
    "BACKEND_TYPES",
    "create_backend",
    "load_backends",
]
