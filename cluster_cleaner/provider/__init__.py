"""Infrastructure provider resolution."""

from cluster_cleaner.provider.resolver import ProviderResolutionError, ProviderResolver

__all__ = ["ProviderResolutionError", "ProviderResolver"]
