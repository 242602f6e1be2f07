"""Resource providers and the registry that federates them."""

from .aitmpl import AitmplProvider
from .base import ResourceProvider
from .errors import (
    AllProvidersFailedError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitedError,
    ResourceNotFoundError,
)
from .github import GitHubProvider
from .local import LocalProvider
from .registry import ProviderRegistry

__all__ = [
    "AitmplProvider",
    "AllProvidersFailedError",
    "GitHubProvider",
    "LocalProvider",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderRegistry",
    "ProviderUnavailableError",
    "RateLimitedError",
    "ResourceNotFoundError",
    "ResourceProvider",
]
