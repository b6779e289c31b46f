"""Configuration model for cluster-cleaner.

All sections are frozen dataclasses with production defaults, so tests can
construct a ``CleanerConfig()`` directly without touching the environment.
Environment loading and validation live in :mod:`cluster_cleaner.config`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True)
class PolicyConfig:
    """Time based deletion policy."""

    ttl: timedelta = timedelta(hours=4)
    warn_ttl: timedelta = timedelta(hours=3)
    recheck_interval: timedelta = timedelta(minutes=5)
    warn_recheck_interval: timedelta = timedelta(hours=1)
    retry_interval: timedelta = timedelta(minutes=5)
    keep_until_recheck: timedelta = timedelta(hours=24)


@dataclass(frozen=True)
class MarkerConfig:
    """Label and annotation keys the controller reads."""

    gitops_label: str = "kustomize.toolkit.fluxcd.io/name"
    ignore_annotation: str = "alpha.giantswarm.io/ignore-cluster-deletion"
    keep_until_label: str = "keep-until"
    keep_until_format: str = "%Y-%m-%d"
    release_version_label: str = "cluster-operator.giantswarm.io/version"
    release_name_annotation: str = "meta.helm.sh/release-name"
    release_namespace_annotation: str = "meta.helm.sh/release-namespace"
    cluster_label: str = "giantswarm.io/cluster"


@dataclass(frozen=True)
class ProviderConfig:
    """Where the installation's provider kind comes from.

    ``kind`` overrides the ConfigMap lookup when non-empty.
    """

    kind: str = ""
    configmap_namespace: str = "giantswarm"
    configmap_name: str = "cluster-cleaner"
    configmap_key: str = "values"
    vintage_kinds: frozenset[str] = frozenset({"aws", "azure", "kvm"})


@dataclass(frozen=True)
class ControllerConfig:
    watch_namespace: str = ""
    workers: int = 4
    resync_interval: timedelta = timedelta(minutes=10)


@dataclass(frozen=True)
class NotificationConfig:
    # Name of the env var holding the Slack webhook URL, not the URL itself.
    slack_secret_ref: str = ""


@dataclass(frozen=True)
class LogConfig:
    level: str = "info"


@dataclass(frozen=True)
class MetricsConfig:
    port: int = 8080


@dataclass(frozen=True)
class CleanerConfig:
    """Top-level configuration passed to every component at construction."""

    dry_run: bool = False
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log: LogConfig = field(default_factory=LogConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
