"""cluster-cleaner command-line interface.

Commands:
    cluster-cleaner run [--dry-run] [--log-level LEVEL]   Run the controller.
    cluster-cleaner check MANIFEST [--ttl 4h] [--now TS]  Evaluate a Cluster
                                                          manifest offline.
    cluster-cleaner version                               Print version and exit.

Configuration is read from ``CLUSTER_CLEANER_*`` environment variables;
command-line options override the matching variables.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from datetime import UTC, datetime
from typing import TextIO

import click
import yaml

from cluster_cleaner import __version__
from cluster_cleaner.config import load_config, parse_duration
from cluster_cleaner.models.cluster import Action, ClusterResource, Decision
from cluster_cleaner.models.config import CleanerConfig, LogConfig
from cluster_cleaner.policy.evaluator import PolicyEvaluator
from cluster_cleaner.policy.ownership import OwnershipGuard
from cluster_cleaner.policy.time_policy import TimePolicy

_ACTION_COLORS: dict[Action, str] = {
    Action.IGNORE: "cyan",
    Action.WAIT: "green",
    Action.WARN: "yellow",
    Action.DELETE: "red",
}


def _load_config_or_fail() -> CleanerConfig:
    try:
        return load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc


def _styled_action(action: Action) -> str:
    return click.style(action.value.upper(), fg=_ACTION_COLORS.get(action, "white"), bold=True)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
def cli() -> None:
    """cluster-cleaner - TTL based cleanup of ephemeral clusters."""


@cli.command("version")
def cmd_version() -> None:
    """Print the cluster-cleaner version and exit."""
    click.echo(f"cluster-cleaner {__version__}")


# ---------------------------------------------------------------------------
# cluster-cleaner run
# ---------------------------------------------------------------------------


@cli.command("run")
@click.option("--dry-run", is_flag=True, default=None, help="Log intended deletions instead of issuing them.")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override CLUSTER_CLEANER_LOG_LEVEL.",
)
def cmd_run(dry_run: bool | None, log_level: str | None) -> None:
    """Run the controller until SIGINT/SIGTERM."""
    from cluster_cleaner.app import main

    config = _load_config_or_fail()
    if dry_run:
        config = dataclasses.replace(config, dry_run=True)
    if log_level:
        config = dataclasses.replace(config, log=LogConfig(level=log_level.lower()))
    asyncio.run(main(config))


# ---------------------------------------------------------------------------
# cluster-cleaner check
# ---------------------------------------------------------------------------


@cli.command("check")
@click.argument("manifest", type=click.File("r"))
@click.option("--ttl", default=None, metavar="DURATION", help="Override the TTL, e.g. 8h.")
@click.option("--now", "now_str", default=None, metavar="TIMESTAMP", help="Evaluate at this ISO 8601 UTC time.")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print the decision as JSON.")
def cmd_check(manifest: TextIO, ttl: str | None, now_str: str | None, output_json: bool) -> None:
    """Show the decision the controller would make for a Cluster MANIFEST.

    Runs offline: no API access, no provider lookup, nothing is deleted.
    """
    config = _load_config_or_fail()
    if ttl is not None:
        try:
            ttl_delta = parse_duration(ttl)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--ttl") from exc
        lead = config.policy.ttl - config.policy.warn_ttl
        if ttl_delta <= lead:
            raise click.BadParameter(f"must be longer than the warning lead time {lead}", param_hint="--ttl")
        policy = dataclasses.replace(config.policy, ttl=ttl_delta, warn_ttl=ttl_delta - lead)
        config = dataclasses.replace(config, policy=policy)

    now = _parse_now(now_str)

    try:
        obj = yaml.safe_load(manifest)
        cluster = ClusterResource.from_object(obj if isinstance(obj, dict) else {})
    except (yaml.YAMLError, ValueError) as exc:
        raise click.ClickException(f"Cannot read Cluster manifest: {exc}") from exc

    decision = _offline_evaluator(config).decide(cluster, now)

    if output_json:
        click.echo(json.dumps(_decision_dict(cluster, decision), indent=2))
        return

    click.echo(f"{click.style('Cluster', bold=True)} {cluster.namespace}/{cluster.name}")
    click.echo(f"  decision:  {_styled_action(decision.action)}")
    click.echo(f"  reason:    {decision.reason}")
    click.echo(f"  remaining: {max(0, decision.minutes_remaining)} min")
    if decision.requeue_after is not None:
        click.echo(f"  recheck:   {decision.requeue_after}")


def _parse_now(value: str | None) -> datetime:
    if value is None:
        return datetime.now(tz=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--now") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _offline_evaluator(config: CleanerConfig) -> PolicyEvaluator:
    policy = config.policy
    return PolicyEvaluator(
        TimePolicy(policy.ttl, policy.warn_ttl),
        OwnershipGuard(config.markers, keep_until_recheck=policy.keep_until_recheck),
        recheck_interval=policy.recheck_interval,
        warn_recheck_interval=policy.warn_recheck_interval,
    )


def _decision_dict(cluster: ClusterResource, decision: Decision) -> dict[str, object]:
    return {
        "cluster": cluster.name,
        "namespace": cluster.namespace,
        "action": decision.action.value,
        "reason": decision.reason,
        "minutes_remaining": decision.minutes_remaining,
        "requeue_after_seconds": (
            int(decision.requeue_after.total_seconds()) if decision.requeue_after is not None else None
        ),
        "misconfigured": decision.misconfigured,
    }
