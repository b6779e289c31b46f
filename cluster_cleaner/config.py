"""Load :class:`CleanerConfig` from ``CLUSTER_CLEANER_*`` environment variables."""

from __future__ import annotations

import os
import re
from datetime import timedelta

from cluster_cleaner.models.config import (
    CleanerConfig,
    ControllerConfig,
    LogConfig,
    MarkerConfig,
    MetricsConfig,
    NotificationConfig,
    PolicyConfig,
    ProviderConfig,
)

_PREFIX = "CLUSTER_CLEANER_"

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_DURATION_UNITS: dict[str, str] = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}

_VALID_LOG_LEVELS = frozenset({"debug", "info", "warning", "error"})
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def parse_duration(value: str) -> timedelta:
    """Parse ``30m``, ``4h``, ``1d`` style durations.

    Raises ValueError for anything else, including zero.
    """
    match = _DURATION_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid duration format: {value!r} (expected e.g. 30m, 4h, 1d)")
    amount = int(match.group(1))
    if amount == 0:
        raise ValueError(f"Invalid duration format: {value!r} must be positive")
    return timedelta(**{_DURATION_UNITS[match.group(2)]: amount})


def _env(name: str, default: str) -> str:
    return os.environ.get(_PREFIX + name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _parse_configmap_ref(value: str) -> tuple[str, str]:
    namespace, sep, name = value.partition("/")
    if not sep or not namespace or not name:
        raise ValueError(f"Invalid ConfigMap reference: {value!r} (expected namespace/name)")
    return namespace, name


def load_config() -> CleanerConfig:
    """Read the environment and return a validated configuration.

    Raises ValueError on malformed durations, log levels or references.
    """
    ttl = parse_duration(_env("TTL", "4h"))
    warn_lead = parse_duration(_env("WARN_LEAD", "1h"))
    if ttl <= warn_lead:
        raise ValueError(f"Invalid TTL: {ttl} must be longer than the warning lead time {warn_lead}")

    log_level = _env("LOG_LEVEL", "info").strip().lower()
    if log_level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {log_level!r}")

    cm_namespace, cm_name = _parse_configmap_ref(_env("PROVIDER_CONFIGMAP", "giantswarm/cluster-cleaner"))
    vintage_kinds = frozenset(
        kind.strip().lower() for kind in _env("VINTAGE_PROVIDERS", "aws,azure,kvm").split(",") if kind.strip()
    )

    defaults = MarkerConfig()
    markers = MarkerConfig(
        gitops_label=_env("GITOPS_LABEL", defaults.gitops_label),
        ignore_annotation=_env("IGNORE_ANNOTATION", defaults.ignore_annotation),
        keep_until_label=_env("KEEP_UNTIL_LABEL", defaults.keep_until_label),
        keep_until_format=_env("KEEP_UNTIL_FORMAT", defaults.keep_until_format),
    )

    return CleanerConfig(
        dry_run=_env_bool("DRY_RUN"),
        policy=PolicyConfig(ttl=ttl, warn_ttl=ttl - warn_lead),
        markers=markers,
        provider=ProviderConfig(
            kind=_env("PROVIDER", "").strip().lower(),
            configmap_namespace=cm_namespace,
            configmap_name=cm_name,
            configmap_key=_env("PROVIDER_CONFIGMAP_KEY", "values"),
            vintage_kinds=vintage_kinds,
        ),
        controller=ControllerConfig(
            watch_namespace=_env("WATCH_NAMESPACE", ""),
            workers=_env_int("WORKERS", 4, minimum=1, maximum=32),
            resync_interval=parse_duration(_env("RESYNC_INTERVAL", "10m")),
        ),
        notifications=NotificationConfig(slack_secret_ref=_env("SLACK_SECRET_REF", "")),
        log=LogConfig(level=log_level),
        metrics=MetricsConfig(port=_env_int("METRICS_PORT", 8080, minimum=1024, maximum=65535)),
    )
