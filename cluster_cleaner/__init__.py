"""cluster-cleaner - TTL based cleanup controller for ephemeral clusters."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cluster-cleaner")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
