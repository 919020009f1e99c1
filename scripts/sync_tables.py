#!/usr/bin/env python3
"""
Merged Table Sync Tool for Airtable team mappings

Keeps "<mapping table> Merged Table" in step with the right join of the
shared source table and each team's mapping table, with support for:
- One-off and periodic (--watch) runs
- Dry-run planning
- Provisioning of merged tables
- Status and row counts
- An in-memory demo base (--demo)

Usage:
    ./scripts/sync_tables.py --base-id appXXXXXXXXXXXXXX sync
    ./scripts/sync_tables.py --config sync.yaml sync --watch --interval 600
    ./scripts/sync_tables.py --config sync.yaml plan
    ./scripts/sync_tables.py --config sync.yaml provision
    ./scripts/sync_tables.py --demo status
"""

import sys
import argparse
import logging
import json
import threading
from typing import Any, Dict, List, Optional
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import SyncSettings, load_settings, resolve_credentials
from src.monitoring import SyncMetrics
from src.store import AirtableStore, InMemoryStore, TableStore
from src.sync import (
    FieldDescriptor,
    FieldType,
    ProvisioningState,
    SyncPipeline,
    TableJoiner,
    TableProvisioner,
)
from src.sync.errors import ConfigurationError, StoreError
from src.utils.logging_config import setup_logging

logger = logging.getLogger("sync_tables")


def build_demo_store(settings: SyncSettings) -> InMemoryStore:
    """
    Seed an in-memory base with a source table and the configured mapping tables.

    Args:
        settings: Settings naming the tables and join keys

    Returns:
        InMemoryStore holding the sample tables
    """
    store = InMemoryStore()

    owner_choices = {"choices": [
        {"id": "selDemo1", "name": "Platform", "color": "blueLight2"},
        {"id": "selDemo2", "name": "Data", "color": "greenLight2"},
    ]}

    store.add_table(
        settings.source_table,
        [
            FieldDescriptor(name=settings.left_key),
            FieldDescriptor(name="Definition", type=FieldType.MULTILINE_TEXT),
            FieldDescriptor(name="Owner Group", type=FieldType.SINGLE_SELECT, options=owner_choices),
        ],
        [
            {settings.left_key: "Active User", "Definition": "Signed in within 30 days",
             "Owner Group": {"id": "selDemo1", "name": "Platform", "color": "blueLight2"}},
            {settings.left_key: "Churned Account", "Definition": "No paid seats for 90 days",
             "Owner Group": {"id": "selDemo2", "name": "Data", "color": "greenLight2"}},
            {settings.left_key: "Trial", "Definition": "Account in its first 14 days"},
        ]
    )

    team_rows = [
        [
            {settings.right_key: "Active User", "Team Field": "dau_flag"},
            {settings.right_key: "Trial", "Team Field": "is_trial"},
            {settings.right_key: "Unmapped Concept", "Team Field": "legacy_col"},
        ],
        [
            {settings.right_key: "Churned Account", "Team Field": "churned_at"},
        ],
    ]

    for index, mapping_table in enumerate(settings.mapping_tables):
        store.add_table(
            mapping_table,
            [
                FieldDescriptor(name=settings.right_key),
                FieldDescriptor(name="Team Field"),
            ],
            team_rows[index % len(team_rows)]
        )

    logger.info(f"Seeded demo base with {len(store.table_names())} tables")
    return store


class SyncTool:
    """Runs merged table sync commands against one base."""

    def __init__(
        self,
        store: TableStore,
        settings: SyncSettings,
        metrics: Optional[SyncMetrics] = None
    ):
        """
        Initialize the tool.

        Args:
            store: Store for the base
            settings: Validated settings
            metrics: Optional metrics sink
        """
        self.store = store
        self.settings = settings
        self.metrics = metrics
        self.pipeline = SyncPipeline(store, settings, metrics=metrics)

    def sync(
        self,
        watch: bool = False,
        iterations: Optional[int] = None,
        stop_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """
        Sync every mapping table, once or periodically.

        Args:
            watch: Keep running every settings.interval_seconds
            iterations: Stop a watch loop after this many runs
            stop_event: Event ending a watch loop

        Returns:
            Result of the last run
        """
        if not watch:
            return self.pipeline.run().to_dict()

        last: Dict[str, Any] = {}

        def report(run):
            last.clear()
            last.update(run.to_dict())
            print(json.dumps(last, indent=2))

        self.pipeline.watch(iterations=iterations, stop_event=stop_event, on_result=report)
        return last

    def plan(self) -> Dict[str, Any]:
        """Compute inserts and deletes without writing anything."""
        run = self.pipeline.run(dry_run=True)
        return run.to_dict(include_rows=True)

    def provision(self) -> Dict[str, Any]:
        """Create missing merged tables without syncing rows."""
        joiner = TableJoiner()
        source_fields = self.store.list_fields(self.settings.source_table)

        tables = []
        for mapping_table in self.settings.mapping_tables:
            destination = self.settings.merged_table_name(mapping_table)
            provisioner = TableProvisioner(self.store)
            entry: Dict[str, Any] = {"mapping_table": mapping_table, "destination_table": destination}

            try:
                fields = joiner.union_fields(source_fields, self.store.list_fields(mapping_table))
                state = provisioner.ensure_table(destination, fields, key_field=self.settings.right_key)
            except StoreError as e:
                logger.error(f"Could not provision {destination}: {e}")
                entry.update(provisioning_state=ProvisioningState.NOT_PROVISIONED.value, error=str(e))
                tables.append(entry)
                continue

            entry["provisioning_state"] = state.value
            entry["errors"] = [error.to_dict() for error in provisioner.errors]
            tables.append(entry)

        return {
            "succeeded": all(t["provisioning_state"] == ProvisioningState.PROVISIONED.value for t in tables),
            "tables": tables,
        }

    def status(self) -> Dict[str, Any]:
        """Report existence and row counts of every table involved."""
        def describe(table_name: str) -> Dict[str, Any]:
            if not self.store.table_exists(table_name):
                return {"table": table_name, "exists": False, "rows": None}
            return {
                "table": table_name,
                "exists": True,
                "rows": len(self.store.list_records(table_name)),
            }

        return {
            "source": describe(self.settings.source_table),
            "mappings": [
                {
                    "mapping": describe(mapping_table),
                    "merged": describe(self.settings.merged_table_name(mapping_table)),
                }
                for mapping_table in self.settings.mapping_tables
            ],
            "succeeded": True,
        }

    def close(self) -> None:
        self.store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Merged Table Sync Tool for Airtable team mappings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Sync merged tables")
    sync_parser.add_argument("--watch", action="store_true", help="Run periodically")
    sync_parser.add_argument("--interval", type=float, help="Seconds between runs in watch mode")
    sync_parser.add_argument("--iterations", type=int, help="Stop watch mode after N runs")
    sync_parser.add_argument("--dry-run", action="store_true", default=None, help="Dry run mode")
    sync_parser.add_argument("--max-workers", type=int, help="Mapping tables synced concurrently")

    # Plan command
    subparsers.add_parser("plan", help="Show the inserts and deletes a sync would make")

    # Provision command
    subparsers.add_parser("provision", help="Create missing merged tables")

    # Status command
    subparsers.add_parser("status", help="Show table existence and row counts")

    # Global options
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--base-id", help="Airtable base id")
    parser.add_argument("--token", help="Airtable personal access token")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    parser.add_argument("--demo", action="store_true", help="Use an in-memory sample base")
    parser.add_argument("--json-logs", action="store_true", default=None, help="Log JSON lines")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    return parser


def build_tool(args: argparse.Namespace) -> SyncTool:
    """Create the store, metrics and tool described by parsed arguments."""
    settings = load_settings(
        args.config,
        base_id=args.base_id,
        metrics_port=args.metrics_port,
        interval_seconds=getattr(args, "interval", None),
        dry_run=getattr(args, "dry_run", None),
        max_workers=getattr(args, "max_workers", None),
    )

    if args.demo:
        store = build_demo_store(settings)
    else:
        token, base_id = resolve_credentials(settings, token=args.token)
        store = AirtableStore(
            base_id=base_id,
            token=token,
            api_url=settings.api_url,
            max_read_retries=settings.max_retries,
            backoff_base_seconds=settings.backoff_base_seconds,
            max_backoff_seconds=settings.max_backoff_seconds
        )

    metrics = None
    if settings.metrics_port:
        metrics = SyncMetrics(port=settings.metrics_port)
        metrics.start_server()

    return SyncTool(store, settings, metrics=metrics)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level="DEBUG" if args.verbose else "INFO", json_format=args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        tool = build_tool(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        if args.command == "sync":
            result = tool.sync(watch=args.watch, iterations=args.iterations)
            if not args.watch:
                print(json.dumps(result, indent=2))

        elif args.command == "plan":
            result = tool.plan()
            print(json.dumps(result, indent=2))

        elif args.command == "provision":
            result = tool.provision()
            print(json.dumps(result, indent=2))

        else:
            result = tool.status()
            print(json.dumps(result, indent=2))

        return 0 if result.get("succeeded", False) else 1

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 1
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.verbose)
        return 1
    finally:
        tool.close()


if __name__ == "__main__":
    sys.exit(main())
