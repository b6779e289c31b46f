"""Application bootstrap for cluster-cleaner.

Startup order::

    config -> logging -> API client -> metrics endpoint -> reconciler
           -> reconcile queue -> cluster watcher -> periodic resync

Shutdown runs in reverse. A component that fails to stop is logged and
skipped so the remaining components still get their chance.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from cluster_cleaner.config import load_config
from cluster_cleaner.models.config import CleanerConfig
from cluster_cleaner.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from cluster_cleaner.controller.queue import ReconcileQueue
    from cluster_cleaner.controller.reconciler import ClusterReconciler
    from cluster_cleaner.controller.watcher import ClusterWatcher
    from cluster_cleaner.store.kubernetes import KubernetesObjectStore

_STOP_TIMEOUT_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a component the controller cannot run without fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ClusterCleanerApp:
    """Owns the controller's components and their lifecycle.

    Args:
        config: Pre-built configuration. Loaded from the environment when None.
    """

    def __init__(self, config: CleanerConfig | None = None) -> None:
        self.config: CleanerConfig | None = config

        self._api_client: Any = None
        self._custom_api: Any = None
        self._core_api: Any = None
        self._store: KubernetesObjectStore | None = None
        self._reconciler: ClusterReconciler | None = None
        self._queue: ReconcileQueue | None = None
        self._watcher: ClusterWatcher | None = None
        self._resync_task: asyncio.Task[None] | None = None

        self._running = False
        self._stopped = asyncio.Event()
        self._log: FilteringBoundLogger = get_logger("app")

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bring every component up in dependency order.

        Raises _ComponentError naming the first component that failed.
        """
        if self.config is None:
            self.config = load_config()
        cfg = self.config

        setup_logging(cfg.log.level, dry_run=cfg.dry_run)
        self._log.info(
            "controller_starting",
            version=_cleaner_version(),
            ttl=str(cfg.policy.ttl),
            warn_ttl=str(cfg.policy.warn_ttl),
            watch_namespace=cfg.controller.watch_namespace or "*",
            dry_run=cfg.dry_run,
        )

        await self._connect()
        self._serve_metrics()
        self._build_reconciler()
        await self._start_queue()
        await self._start_watcher()
        self._start_resync_loop()

        self._running = True
        self._stopped.clear()
        self._log.info("controller_started", workers=cfg.controller.workers, metrics_port=cfg.metrics.port)

    async def _connect(self) -> None:
        """Load in-cluster credentials, falling back to the local kubeconfig."""
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                source = "in-cluster"
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                source = "kubeconfig"

            # Both API groups share one connection pool.
            self._api_client = k8s_client.ApiClient()
            self._custom_api = k8s_client.CustomObjectsApi(self._api_client)
            self._core_api = k8s_client.CoreV1Api(self._api_client)
            self._log.info("api_client_configured", source=source)
        except Exception as exc:
            raise _ComponentError("api_client", exc) from exc

    def _serve_metrics(self) -> None:
        assert self.config is not None
        port = self.config.metrics.port
        try:
            from prometheus_client import start_http_server

            start_http_server(port)
        except Exception as exc:
            raise _ComponentError("metrics", exc) from exc
        self._log.info("metrics_endpoint_listening", port=port)

    def _build_reconciler(self) -> None:
        """Assemble store, policy, cascade and notifications behind the reconciler."""
        assert self.config is not None
        try:
            from cluster_cleaner.cascade.orchestrator import CascadeOrchestrator
            from cluster_cleaner.controller.reconciler import ClusterReconciler
            from cluster_cleaner.notifications import build_notification_dispatcher
            from cluster_cleaner.observability.metrics import PrometheusMetricsSink
            from cluster_cleaner.policy.evaluator import PolicyEvaluator
            from cluster_cleaner.policy.ownership import OwnershipGuard
            from cluster_cleaner.policy.time_policy import TimePolicy
            from cluster_cleaner.provider.resolver import ProviderResolver
            from cluster_cleaner.store.kubernetes import KubernetesObjectStore

            cfg = self.config
            store = KubernetesObjectStore(self._custom_api, self._core_api)
            evaluator = PolicyEvaluator(
                TimePolicy(cfg.policy.ttl, cfg.policy.warn_ttl),
                OwnershipGuard(cfg.markers, keep_until_recheck=cfg.policy.keep_until_recheck),
                ProviderResolver(cfg.provider, cfg.markers, store),
                recheck_interval=cfg.policy.recheck_interval,
                warn_recheck_interval=cfg.policy.warn_recheck_interval,
            )
            orchestrator = CascadeOrchestrator(
                store,
                cfg.markers,
                retry_interval=cfg.policy.retry_interval,
                dry_run=cfg.dry_run,
            )
            self._store = store
            self._reconciler = ClusterReconciler(
                store,
                evaluator,
                orchestrator,
                PrometheusMetricsSink(),
                notifier=build_notification_dispatcher(cfg.notifications, self._core_api),
                policy=cfg.policy,
                dry_run=cfg.dry_run,
            )
        except Exception as exc:
            raise _ComponentError("reconciler", exc) from exc

    async def _start_queue(self) -> None:
        assert self.config is not None
        assert self._reconciler is not None
        from cluster_cleaner.controller.queue import ReconcileQueue

        queue = ReconcileQueue(
            self._reconciler.reconcile,
            workers=self.config.controller.workers,
            error_requeue=self.config.policy.retry_interval,
        )
        await queue.start()
        self._queue = queue

    async def _start_watcher(self) -> None:
        assert self.config is not None
        assert self._queue is not None
        assert self._store is not None
        try:
            from cluster_cleaner.controller.watcher import ClusterWatcher

            watcher = ClusterWatcher(
                self._custom_api,
                self._store,
                self._queue.add,
                namespace=self.config.controller.watch_namespace,
            )
            await watcher.start()
        except Exception as exc:
            raise _ComponentError("watcher", exc) from exc
        self._watcher = watcher

    def _start_resync_loop(self) -> None:
        """Relist on a fixed period so every cluster is revisited even without watch events."""
        assert self.config is not None
        interval = self.config.controller.resync_interval.total_seconds()

        async def _resync_forever() -> None:
            while True:
                await asyncio.sleep(interval)
                if self._watcher is not None:
                    await self._watcher.resync()

        self._resync_task = asyncio.create_task(_resync_forever(), name="cluster-resync")
        self._log.info("resync_loop_started", interval_s=interval)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def stop(self) -> None:
        """Tear components down in reverse startup order."""
        was_running = self._running
        self._running = False

        if self._resync_task is not None:
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
            self._resync_task = None

        for name, component in (("watcher", self._watcher), ("queue", self._queue)):
            await self._stop_quietly(name, component)
        self._watcher = None
        self._queue = None
        self._reconciler = None

        if self._api_client is not None:
            try:
                await self._api_client.close()
            except Exception as exc:
                self._log.debug("api_client_close_failed", error=str(exc))
            self._api_client = None

        self._stopped.set()
        if was_running:
            self._log.info("controller_stopped")

    async def _stop_quietly(self, name: str, component: Any) -> None:
        if component is None:
            return
        try:
            await asyncio.wait_for(component.stop(), timeout=_STOP_TIMEOUT_SECONDS)
        except TimeoutError:
            self._log.warning("component_stop_timeout", component=name, timeout_s=_STOP_TIMEOUT_SECONDS)
        except Exception as exc:
            self._log.error("component_stop_failed", component=name, error=str(exc))


def _cleaner_version() -> str:
    from cluster_cleaner import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: CleanerConfig | None = None) -> None:
    """Run the controller until SIGTERM or SIGINT."""
    app = ClusterCleanerApp(config)
    loop = asyncio.get_running_loop()
    shutdown: asyncio.Task[None] | None = None

    def _on_signal(sig: signal.Signals) -> None:
        nonlocal shutdown
        if shutdown is None:
            app._log.info("shutdown_requested", signal=sig.name)
            shutdown = asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _on_signal, sig)

    try:
        try:
            await app.start()
        except _ComponentError as exc:
            app._log.critical("controller_start_failed", component=exc.component, error=str(exc.cause))
            await app.stop()
            raise SystemExit(1) from exc

        await app.wait_stopped()
    finally:
        if app.running:
            await app.stop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
