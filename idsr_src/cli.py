"""Command line interface for IDSR case sync.

Usage:
    idsr stage --disease MAL --age-group 15-49 --gender F \\
        --symptoms fever,chills --location "Ward 4, Kisumu"
    idsr stage --file report.json
    idsr sync                  # One sync pass
    idsr sync --daemon         # Sync on reconnect + every --interval seconds
    idsr status                # Staging queue summary and failed reports
    idsr retry CASE-...        # Requeue a failed report (optionally --set field=value)
    idsr suggest fever rash
    idsr detect                # Outbreak cluster candidates
    idsr declare --disease MEAS --location "Ward 4" --by <user-id>
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .alerts import AlertRuleEngine
from .detector import OutbreakClusterDetector, declare_outbreak
from .exceptions import CaseValidationError, IDSRError
from .intake import CaseReportIntake
from .models import SyncStatus
from .remote import SupabaseStore
from .staging import StagingDatabase

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_stage(args) -> int:
    if args.file:
        data = json.loads(Path(args.file).read_text())
    else:
        data = {
            "disease_code": args.disease,
            "age_group": args.age_group,
            "gender": args.gender,
            "symptoms": args.symptoms,
            "location": args.location,
            "facility": args.facility,
            "district": args.district,
            "notes": args.notes,
        }

    intake = CaseReportIntake(StagingDatabase(args.db))
    try:
        report = intake.submit(data, reporter_id=args.reporter)
    except CaseValidationError as e:
        for field_name, message in sorted(e.field_errors.items()):
            print(f"  {field_name}: {message}", file=sys.stderr)
        return 2

    print(f"Case saved offline. Receipt: {report.client_local_id}")
    suggestions = intake.suggest_diseases(report.symptoms)
    if suggestions and suggestions[0].code != report.disease_code:
        names = ", ".join(d.code for d in suggestions)
        print(f"Note: symptoms best match {names}")
    return 0


def cmd_sync(args) -> int:
    from .service import SyncService
    from .sync import build_coordinator

    coordinator = build_coordinator(StagingDatabase(args.db), reporter_id=args.reporter)

    if args.daemon:
        service = SyncService(coordinator, interval_seconds=args.interval)
        try:
            asyncio.run(service.run())
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        return 0

    result = coordinator.run_once()
    print(f"{result['synced']} synced, {result['failed']} failed")
    for error in result["errors"]:
        print(f"  {error.get('client_local_id', error.get('stage'))}: {error['error']}")
    return 1 if result["failed"] else 0


def cmd_status(args) -> int:
    staging = StagingDatabase(args.db)
    stats = staging.get_summary_stats()
    _print_json(stats)

    failed = staging.list_by_state(SyncStatus.FAILED)
    if failed:
        print("\nFailed reports:")
        for report in failed:
            kind = report.failure_kind.value if report.failure_kind else "unknown"
            print(f"  {report.client_local_id} [{kind}] {report.sync_error}")
    return 0


def cmd_retry(args) -> int:
    changes = {}
    for assignment in args.set or []:
        name, _, value = assignment.partition("=")
        if name in ("symptoms", "attachments"):
            changes[name] = [v.strip() for v in value.split(",") if v.strip()]
        else:
            changes[name] = value

    report = StagingDatabase(args.db).amend_report(args.client_local_id, changes)
    print(f"{report.client_local_id} queued for retry")
    return 0


def cmd_suggest(args) -> int:
    engine = AlertRuleEngine()
    for disease in engine.suggest(args.symptoms):
        score = engine.score(args.symptoms, disease)
        print(f"{disease.code:8} {score:.2f}  {disease.name}")
    return 0


def cmd_detect(args) -> int:
    candidates = OutbreakClusterDetector().detect_from_store(SupabaseStore())
    if not candidates:
        print("No cluster candidates")
        return 0
    _print_json([c.to_dict() for c in candidates])
    return 0


def cmd_declare(args) -> int:
    remote = SupabaseStore()
    candidates = OutbreakClusterDetector().detect_from_store(remote)
    match = next(
        (c for c in candidates if c.key == (args.disease.upper(), args.location)),
        None,
    )
    if match is None:
        print(
            f"No current cluster candidate for {args.disease} at {args.location!r}",
            file=sys.stderr,
        )
        return 1

    outbreak = declare_outbreak(
        remote,
        match,
        declared_by=args.by,
        affected_districts=args.districts,
    )
    print(f"Outbreak declared: {outbreak.disease_code} in {outbreak.location} (id {outbreak.id})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="idsr", description="IDSR case sync and outbreak signals")
    parser.add_argument("--db", help="Staging database path (default from config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    stage = sub.add_parser("stage", help="Validate and stage a case report")
    stage.add_argument("--file", help="JSON file with the report")
    stage.add_argument("--disease")
    stage.add_argument("--age-group")
    stage.add_argument("--gender")
    stage.add_argument("--symptoms", help="Comma-separated symptom codes")
    stage.add_argument("--location")
    stage.add_argument("--facility")
    stage.add_argument("--district")
    stage.add_argument("--notes")
    stage.add_argument("--reporter", help="Reporter user id")
    stage.set_defaults(func=cmd_stage)

    sync = sub.add_parser("sync", help="Push staged reports to the remote store")
    sync.add_argument("--daemon", action="store_true", help="Keep running")
    sync.add_argument("--interval", type=int, help="Backstop interval in seconds")
    sync.add_argument("--reporter", help="Reporter id for reports staged without one")
    sync.set_defaults(func=cmd_sync)

    status = sub.add_parser("status", help="Show staging queue summary")
    status.set_defaults(func=cmd_status)

    retry = sub.add_parser("retry", help="Requeue a failed report")
    retry.add_argument("client_local_id")
    retry.add_argument("--set", action="append", metavar="FIELD=VALUE", help="Correct a field")
    retry.set_defaults(func=cmd_retry)

    suggest = sub.add_parser("suggest", help="Suggest diseases for symptoms")
    suggest.add_argument("symptoms", nargs="+")
    suggest.set_defaults(func=cmd_suggest)

    detect = sub.add_parser("detect", help="List outbreak cluster candidates")
    detect.set_defaults(func=cmd_detect)

    declare = sub.add_parser("declare", help="Declare an outbreak from a cluster candidate")
    declare.add_argument("--disease", required=True)
    declare.add_argument("--location", required=True)
    declare.add_argument("--by", required=True, help="Declaring user id")
    declare.add_argument("--districts", nargs="*", help="Affected districts")
    declare.set_defaults(func=cmd_declare)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return args.func(args)
    except (IDSRError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
