"""
Intune Graph Automation — Command-line entry point

Usage:
    python -m intune_automation compliance --platform Windows
    python -m intune_automation apps --duplicates-only
    python -m intune_automation app-status --name-contains "Company Portal" --install-state failed
    python -m intune_automation audit --days 14
    python -m intune_automation stale --stale-days 45
    python -m intune_automation sync --device-name LAPTOP-0042
    python -m intune_automation wipe --device-id <GUID> --force

Authentication:
    --context local     device code sign-in, or certificate with --cert-path
    --context runbook   managed identity (no prompts)

Exit code 0 on success, 1 when authentication or collection fails outright.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .actions import (
    ACTION_RETIRE,
    ACTION_SYNC,
    ACTION_WIPE,
    ActionResult,
    DeviceActionRunner,
    DeviceTarget,
    summarize_results,
    wipe_body,
)
from .actions.device_actions import RESULT_COLUMNS, STATUS_FAILED
from .auth.authenticator import AuthenticationError, Authenticator
from .classifiers import (
    ActivityClassifier,
    ComplianceClassifier,
    DuplicateClassifier,
    InstallStateClassifier,
    SeverityClassifier,
)
from .classifiers.duplicates import DUPLICATE
from .collectors import AppCollector, AuditCollector, DeviceCollector, FatalCollectionError
from .config import (
    CONTEXT_LOCAL,
    CONTEXT_RUNBOOK,
    EXECUTION_CONTEXTS,
    AutomationConfig,
    CertificateAuth,
    DelegatedAuth,
    ManagedIdentityAuth,
)
from .graph.client import GraphAuthError, GraphClient
from .models import Application, RecordParseError
from .reporting import breakdown, count_by, export_csv, export_json, row_fields, summarize, to_rows
from .safety.guardian import SafetyGuardian

logger = logging.getLogger("intune_automation")

REPORT_COMMANDS = ("compliance", "apps", "app-status", "audit", "stale")
ACTION_COMMANDS = (ACTION_SYNC, ACTION_WIPE, ACTION_RETIRE)
DESTRUCTIVE_COMMANDS = (ACTION_WIPE, ACTION_RETIRE)


@dataclass
class Report:
    """Output of one command, ready for the writers."""
    name: str
    rows: list[dict[str, Any]]
    summary: dict[str, Any]
    extra: dict[str, Any] = field(default_factory=dict)
    columns: tuple[str, ...] = ()  # CSV header, also for an empty report


# ---------------------------------------------------------------------------
# Argument parsing & configuration
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument(
        "--context",
        choices=EXECUTION_CONTEXTS,
        default=None,
        help="Execution context: 'local' (interactive) or 'runbook' (managed identity)",
    )
    common.add_argument("--tenant-id", help="Entra tenant ID (GUID)")
    common.add_argument("--client-id", help="App registration client ID (GUID)")
    common.add_argument("--cert-path", type=Path, help="Path to base64-encoded PFX for app-only auth")
    common.add_argument(
        "--managed-identity-client-id",
        help="Client ID of a user-assigned managed identity (runbook context)",
    )
    common.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Output directory for reports (default: ./intune_reports)",
    )
    common.add_argument(
        "--formats",
        nargs="+",
        choices=["csv", "json"],
        default=None,
        help="Report formats to write",
    )
    common.add_argument(
        "--max-throttle-retries",
        type=int,
        default=None,
        help="Give up on a page after this many consecutive throttle responses (default: never)",
    )
    common.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Stop each collection after this many seconds, keeping what was gathered",
    )
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(
        prog="intune_automation",
        description=f"Intune Graph Automation v{__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("compliance", parents=[common], help="Per-device compliance report")
    p.add_argument("--platform", help="Only devices with this operatingSystem (e.g. Windows, iOS)")

    p = sub.add_parser("apps", parents=[common], help="App inventory with duplicate detection")
    p.add_argument("--name-contains", help="Only apps whose name contains this text")
    p.add_argument("--duplicates-only", action="store_true", help="Only report duplicate sets")

    p = sub.add_parser("app-status", parents=[common], help="Per-device install status for apps")
    p.add_argument("--name-contains", required=True, help="Apps whose name contains this text")
    p.add_argument("--install-state", help="Only this installState (e.g. failed, installed)")

    p = sub.add_parser("audit", parents=[common], help="Policy change audit with severity")
    p.add_argument("--days", type=int, default=None, help="Look-back window in days (default: 7)")
    p.add_argument("--category", help="Only this audit category (e.g. DeviceConfiguration)")

    p = sub.add_parser("stale", parents=[common], help="Devices that stopped checking in")
    p.add_argument("--platform", help="Only devices with this operatingSystem")
    p.add_argument("--stale-days", type=int, default=None, help="Days without sync (default: 30)")

    for action in ACTION_COMMANDS:
        p = sub.add_parser(action, parents=[common], help=f"{action.capitalize()} managed devices")
        p.add_argument("--device-id", action="append", default=[], help="Target device ID (repeatable)")
        p.add_argument("--device-name", action="append", default=[], help="Target device name (repeatable)")
        p.add_argument("--force", action="store_true", help="Do not prompt for confirmation")
        if action == ACTION_WIPE:
            p.add_argument("--keep-enrollment-data", action="store_true")
            p.add_argument("--keep-user-data", action="store_true")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> AutomationConfig:
    """Build configuration from an optional JSON file plus CLI overrides."""
    if args.config:
        config = AutomationConfig.from_file(args.config)
    else:
        config = AutomationConfig()

    if args.context:
        config.context = args.context

    if args.tenant_id and args.client_id:
        if args.cert_path:
            config.auth.certificate = CertificateAuth(
                tenant_id=args.tenant_id,
                client_id=args.client_id,
                certificate_path=str(args.cert_path),
            )
        else:
            config.auth.delegated = DelegatedAuth(
                tenant_id=args.tenant_id,
                client_id=args.client_id,
            )
    elif args.cert_path and config.auth.certificate:
        config.auth.certificate.certificate_path = str(args.cert_path)

    if args.managed_identity_client_id:
        config.auth.managed_identity = ManagedIdentityAuth(client_id=args.managed_identity_client_id)

    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    if args.formats:
        config.output.formats = list(args.formats)
    if args.max_throttle_retries is not None:
        config.collection.max_throttle_retries = args.max_throttle_retries
    if args.deadline is not None:
        config.collection.deadline_seconds = args.deadline
    if getattr(args, "days", None) is not None:
        config.collection.audit_days = args.days
    if getattr(args, "stale_days", None) is not None:
        config.collection.stale_days = args.stale_days
    config.verbose = config.verbose or args.verbose
    return config


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Report commands
# ---------------------------------------------------------------------------

async def run_compliance(client: GraphClient, config: AutomationConfig, args) -> Report:
    collector = DeviceCollector(client, config.collection)
    devices_run, evaluations = await collector.evaluate_compliance(args.platform)
    records = ComplianceClassifier().classify_all(evaluations)
    return Report(
        name="device_compliance",
        columns=ComplianceClassifier.columns,
        rows=to_rows(records),
        summary=summarize(records, collector.runs),
        extra={"by_platform": breakdown(records, "OperatingSystem")},
    )


async def run_apps(client: GraphClient, config: AutomationConfig, args) -> Report:
    collector = AppCollector(client, config.collection)
    run = await collector.collect_apps(args.name_contains)
    classifier = DuplicateClassifier()
    records = classifier.classify_all(run.records)
    if args.duplicates_only:
        records = [r for r in records if r.category == DUPLICATE]
    sets = [
        {
            "normalized_name": s.key,
            "size": s.size,
            "tags": s.tags,
            "apps": [a.display_name for a in s.apps],
        }
        for s in classifier.duplicate_sets()
    ]
    return Report(
        name="app_inventory",
        columns=DuplicateClassifier.columns,
        rows=to_rows(records),
        summary=summarize(records, collector.runs),
        extra={"duplicate_sets": sets},
    )


async def run_app_status(client: GraphClient, config: AutomationConfig, args) -> Report:
    collector = AppCollector(client, config.collection)
    apps_run = await collector.collect_apps(args.name_contains)
    records = []
    for raw in apps_run.records:
        try:
            app = Application.from_graph(raw)
        except RecordParseError as e:
            logger.warning(f"Skipping app without usable identity: {e}")
            continue
        try:
            status_run = await collector.collect_install_statuses(app, args.install_state)
        except FatalCollectionError as e:
            if isinstance(e.cause, GraphAuthError):
                raise
            logger.warning(f"No install status for {app.display_name or app.id}: {e.cause}")
            continue
        records.extend(InstallStateClassifier(app).classify_all(status_run.records))
    return Report(
        name="app_install_status",
        columns=InstallStateClassifier.columns,
        rows=to_rows(records),
        summary=summarize(records, collector.runs),
        extra={"by_app": breakdown(records, "AppName")},
    )


async def run_audit(client: GraphClient, config: AutomationConfig, args) -> Report:
    collector = AuditCollector(client, config.collection)
    run = await collector.collect_events(config.collection.audit_days, args.category)
    records = SeverityClassifier().classify_all(run.records)
    return Report(
        name="policy_change_audit",
        columns=SeverityClassifier.columns,
        rows=to_rows(records),
        summary=summarize(records, collector.runs),
        extra={"by_actor": count_by(records, "Actor")},
    )


async def run_stale(client: GraphClient, config: AutomationConfig, args) -> Report:
    collector = DeviceCollector(client, config.collection)
    run = await collector.collect_devices(args.platform)
    records = ActivityClassifier(stale_days=config.collection.stale_days).classify_all(run.records)
    return Report(
        name="device_activity",
        columns=ActivityClassifier.columns,
        rows=to_rows(records),
        summary=summarize(records, collector.runs),
        extra={"by_platform": breakdown(records, "OperatingSystem")},
    )


REPORT_HANDLERS = {
    "compliance": run_compliance,
    "apps": run_apps,
    "app-status": run_app_status,
    "audit": run_audit,
    "stale": run_stale,
}


# ---------------------------------------------------------------------------
# Device actions
# ---------------------------------------------------------------------------

async def resolve_targets(
    client: GraphClient,
    config: AutomationConfig,
    args,
) -> tuple[list[DeviceTarget], list[ActionResult]]:
    """Turn --device-id/--device-name into targets; unresolvable names become failed results."""
    targets = [DeviceTarget(device_id=d) for d in args.device_id]
    unresolved = []
    collector = DeviceCollector(client, config.collection)
    for name in args.device_name:
        run = await collector.find_devices_by_name(name)
        matches = [r for r in run.records if isinstance(r, dict) and r.get("id")]
        if run.is_partial:
            # unseen pages may hold the device or a namesake
            detail = f"Device lookup incomplete: {run.error}"
        elif len(matches) == 1:
            targets.append(DeviceTarget(device_id=matches[0]["id"], device_name=name))
            continue
        elif not matches:
            detail = "No managed device with this name"
        else:
            detail = f"{len(matches)} devices share this name; use --device-id"
        unresolved.append(ActionResult(
            device_id="N/A",
            device_name=name,
            action=args.command,
            status=STATUS_FAILED,
            detail=detail,
        ))
    return targets, unresolved


def confirm(action: str, targets: list[DeviceTarget], config: AutomationConfig, force: bool) -> bool:
    if force:
        return True
    if config.context == CONTEXT_RUNBOOK:
        print(f"  ❌ {action} needs --force in a runbook context (no prompt available).")
        return False
    print(f"\n  About to {action} {len(targets)} device(s):")
    for t in targets:
        print(f"    • {t.device_name or 'N/A'} ({t.device_id})")
    answer = input(f"\n  Type '{action}' to continue: ")
    return answer.strip().lower() == action


async def run_action(
    client: GraphClient,
    guardian: SafetyGuardian,
    config: AutomationConfig,
    args,
) -> Optional[Report]:
    action = args.command
    targets, results = await resolve_targets(client, config, args)

    if targets:
        if not confirm(action, targets, config, args.force):
            print("  Cancelled.")
            return None
        if action in DESTRUCTIVE_COMMANDS:
            guardian.allow_destructive = True

        body = None
        if action == ACTION_WIPE:
            body = wipe_body(args.keep_enrollment_data, args.keep_user_data)
        runner = DeviceActionRunner(client, config.collection)
        results.extend(await runner.run(action, targets, body=body))

    return Report(
        name=f"device_{action}",
        columns=RESULT_COLUMNS,
        rows=[r.to_row() for r in results],
        summary=summarize_results(results),
        extra=guardian.get_audit_record(),
    )


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def write_reports(report: Report, config: AutomationConfig, run_id: str) -> list[Path]:
    created = []
    output_dir = config.output.report_dir
    if "csv" in config.output.formats:
        fields = row_fields(report.rows, report.columns)
        path = export_csv(report.rows, output_dir, report.name, run_id, fieldnames=fields)
        created.append(path)
        print(f"  📊 CSV:   {path}")
    if "json" in config.output.formats:
        path = export_json(report.rows, report.summary, output_dir, report.name, run_id, report.extra)
        created.append(path)
        print(f"  📄 JSON:  {path}")
    return created


def print_summary(report: Report):
    summary = report.summary
    if "by_category" in summary:
        print(f"  Records:  {summary['total']}")
        for category, count in summary["by_category"].items():
            print(f"    {category:<20s} {count}")
        if summary.get("degraded"):
            print(f"  ⚠  {summary['degraded']} records had missing or malformed fields")
        if summary.get("partial_collection"):
            print("  ⚠  Collection was partial — see warnings above")
    else:
        print(f"  Targets:  {summary['total']}  "
              f"succeeded {summary['succeeded']}, failed {summary['failed']}, "
              f"blocked {summary['blocked']}")


async def main_async(argv: Optional[list[str]] = None) -> int:
    """Async entry point. Returns the process exit code."""
    args = parse_args(argv)
    config = build_config(args)
    configure_logging(config.verbose)

    if args.command in ACTION_COMMANDS and not (args.device_id or args.device_name):
        print("❌ No targets given. Use --device-id or --device-name.")
        return 1

    run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]

    print("=" * 70)
    print(f" Intune Graph Automation v{__version__} — {args.command}")
    print(f" Context: {config.context}")
    print("=" * 70)

    # --- Authentication ---
    print("\n🔐 Authenticating...")
    authenticator = Authenticator(config.auth, context=config.context)
    try:
        token = authenticator.acquire_token()
    except AuthenticationError as e:
        print(f"❌ Authentication failed: {e}")
        return 1
    print("✅ Authentication successful.")

    guardian = SafetyGuardian()
    async with GraphClient(access_token=token, guardian=guardian) as client:
        print("\n" + "=" * 70)
        print(" COLLECTION")
        print("=" * 70)
        try:
            if args.command in REPORT_HANDLERS:
                report = await REPORT_HANDLERS[args.command](client, config, args)
            else:
                report = await run_action(client, guardian, config, args)
        except FatalCollectionError as e:
            print(f"\n❌ {e}")
            return 1
        stats = client.get_stats()

    if report is None:
        return 0

    print("\n" + "=" * 70)
    print(" REPORT")
    print("=" * 70)
    print_summary(report)
    print(f"  Requests: {stats['total_requests']} ({stats['throttle_events']} throttled)")
    write_reports(report, config, run_id)
    print()
    return 0


def main():
    """Synchronous entry point for `python -m intune_automation`."""
    try:
        code = asyncio.run(main_async())
    except KeyboardInterrupt:
        print("\nInterrupted.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
