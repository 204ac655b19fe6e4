"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..ai import LLMClient, SubscriptionAIService
from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..resilience import ResilientCaller
from ..services import JsonMailSource, PipelineJobs, SubscriptionReconciler
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="subtrack",
        description="Extract recurring subscriptions from mail and keep them current",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    subparsers.add_parser("init", help="Write a default config file and create the database")

    # ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Admit messages from a JSON mail export")
    ingest_parser.add_argument(
        "--file",
        type=Path,
        required=True,
        help="JSON export to read",
    )
    ingest_parser.add_argument(
        "--account",
        type=str,
        help="Source account id (required for a bare message list)",
    )
    ingest_parser.add_argument(
        "--user",
        type=str,
        help="Owning user id (required for a bare message list)",
    )
    ingest_parser.add_argument(
        "--process",
        action="store_true",
        help="Process admitted messages right away (keeps full message bodies)",
    )

    # process command
    process_parser = subparsers.add_parser("process", help="Process pending messages of an account")
    process_parser.add_argument(
        "--account",
        type=str,
        required=True,
        help="Source account id",
    )
    process_parser.add_argument(
        "--workers",
        type=int,
        help="Worker threads (default: pipeline.workers)",
    )

    # maintenance commands
    subparsers.add_parser("update", help="Advance renewal dates, end trials, flag overdue")
    subparsers.add_parser("alerts", help="Generate renewal, trial, price and unused alerts")
    subparsers.add_parser("enrich", help="Link subscriptions to vendors and fill in vendor metadata")

    # review commands
    approve_parser = subparsers.add_parser("approve", help="Confirm a subscription")
    approve_parser.add_argument("subscription_id", type=int)
    reject_parser = subparsers.add_parser("reject", help="Archive a subscription")
    reject_parser.add_argument("subscription_id", type=int)

    # status command
    subparsers.add_parser("status", help="Show pipeline status and statistics")

    return parser


def build_jobs(config: Config, source: JsonMailSource | None = None) -> PipelineJobs:
    """Wire store, remote client and services for one CLI run."""
    store = StateStore(config.state_db_path)
    ai_service = SubscriptionAIService(
        client=LLMClient(config.llm),
        caller=ResilientCaller(config.resilience),
        config=config,
    )
    return PipelineJobs(store, config, ai_service, source=source)


def cmd_init(config_path: Path) -> int:
    """Create config file and database."""
    if config_path.exists():
        print(f"⏭ Config already exists: {config_path}")
    else:
        create_default_config(config_path)
        print(f"✓ Wrote default config to {config_path}")

    config = load_config(config_path)
    StateStore(config.state_db_path)
    print(f"✓ Database ready at {config.state_db_path}")
    return 0


def cmd_ingest(
    config: Config,
    file: Path,
    account: str | None,
    user: str | None,
    process: bool = False,
) -> int:
    """Admit messages from a JSON export."""
    print(f"📥 Ingesting messages from {file}...")

    try:
        source = JsonMailSource(file, account_id=account, user_id=user)
    except (OSError, ValueError) as e:
        print(f"❌ Could not read {file}: {e}")
        return 1

    jobs = build_jobs(config, source)
    summaries = jobs.scan_all_accounts()

    for account_id, summary in summaries.items():
        print(
            f"  📬 {account_id}: {summary.admitted} new, {summary.duplicates} duplicate, "
            f"{summary.invalid} invalid"
        )

    if process:
        for account_id in summaries:
            _print_worker_stats(account_id, jobs.process_pending_emails(account_id))

    print(f"\n✓ Ingested {len(summaries)} account(s)")
    return 0


def cmd_process(config: Config, account: str, workers: int | None) -> int:
    """Process pending messages of one account."""
    print(f"⚙️  Processing pending messages for {account}...")

    jobs = build_jobs(config)
    stats = jobs.process_pending_emails(account, workers=workers)
    _print_worker_stats(account, stats)
    return 0 if not stats.failed else 1


def _print_worker_stats(account_id: str, stats) -> None:
    print(f"  ⚙️  {account_id}:")
    print(f"     → Subscriptions updated: {stats.completed}")
    print(f"     → Unrelated messages:    {stats.ignored}")
    print(f"     → Failed:                {stats.failed}")
    if stats.released:
        print(f"     → Released (cancelled):  {stats.released}")


def cmd_update(config: Config) -> int:
    """Run renewal maintenance."""
    print("🔄 Updating subscriptions...")

    summary = build_jobs(config).update_all_subscriptions()

    print(f"  Examined:        {summary.examined}")
    print(f"  Trials ended:    {summary.trials_ended}")
    print(f"  Dates advanced:  {summary.dates_advanced}")
    print(f"  Overdue flagged: {summary.overdue_flagged}")
    if summary.errors:
        print(f"  ❌ Errors:       {summary.errors}")
        return 1
    return 0


def cmd_alerts(config: Config) -> int:
    """Generate alerts."""
    print("🔔 Generating alerts...")

    summary = build_jobs(config).generate_alerts()

    for alert in summary.alerts:
        print(f"  🔔 [{alert.alert_type.value}] {alert.message}")
    print(f"\n✓ Created {summary.total} alert(s)")
    return 0


def cmd_enrich(config: Config) -> int:
    """Link and enrich vendors."""
    print("🏷️  Enriching vendors...")

    summary = build_jobs(config).enrich_vendors()

    print(f"  Subscriptions linked: {summary.linked}")
    print(f"  Vendors enriched:     {summary.enriched}")
    if summary.failed:
        print(f"  ❌ Failed:            {len(summary.failed)}")
        return 1
    return 0


def cmd_review(config: Config, subscription_id: int, approve: bool) -> int:
    """Approve or reject a subscription."""
    reconciler = SubscriptionReconciler(StateStore(config.state_db_path), config)
    if approve:
        result = reconciler.approve(subscription_id)
    else:
        result = reconciler.reject(subscription_id)

    if not result.ok:
        print(f"❌ {result.error}")
        return 1

    subscription = result.value
    print(f"✓ {subscription.service_name} is now {subscription.status.value}")
    return 0


def cmd_status(config: Config) -> int:
    """Show pipeline status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Pipeline Status")
    print("=" * 40)
    print("  Processing records:")
    for status, count in sorted(stats["records"].items()):
        print(f"    {status:<20} {count}")
    print("  Subscriptions:")
    for status, count in sorted(stats["subscriptions"].items()):
        print(f"    {status:<20} {count}")
    print(f"  Needing review:         {stats['subscriptions_needing_review']}")
    print(f"  Vendors:                {stats['vendors']}")
    print(f"  Awaiting enrichment:    {stats['vendors_needing_enrichment']}")
    print("  Alerts:")
    for status, count in sorted(stats["alerts"].items()):
        print(f"    {status:<20} {count}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init":
        return cmd_init(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Only the commands that call the remote model need a complete LLM section
    if parsed.command in ("ingest", "process"):
        try:
            config.ensure_valid()
        except ConfigValidationError as e:
            print(f"❌ Invalid config: {e}")
            return 1

    # Route to command
    if parsed.command == "ingest":
        return cmd_ingest(config, parsed.file, parsed.account, parsed.user, parsed.process)
    elif parsed.command == "process":
        return cmd_process(config, parsed.account, parsed.workers)
    elif parsed.command == "update":
        return cmd_update(config)
    elif parsed.command == "alerts":
        return cmd_alerts(config)
    elif parsed.command == "enrich":
        return cmd_enrich(config)
    elif parsed.command == "approve":
        return cmd_review(config, parsed.subscription_id, approve=True)
    elif parsed.command == "reject":
        return cmd_review(config, parsed.subscription_id, approve=False)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
