import argparse
from dataclasses import replace
from datetime import timedelta
import logging
from pathlib import Path

from organ_etl.batch import RUN_ORDER, run_files
from organ_etl.config import get_settings
from organ_etl.database import build_session_factory
from organ_etl.db_models import utc_now
from organ_etl.pipeline import PipelineRunner
from organ_etl.reporting import query_errors, reconciliation
from organ_etl.run_store import fail_stale_runs
from organ_etl.scheduler import start_scheduler
from organ_etl.schemas import EntityType


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stage, validate and load organ donation data")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="load one batch of input files")
    run_parser.add_argument("--centers", type=Path, help="transplant center CSV file")
    run_parser.add_argument("--donors", type=Path, help="donor referral CSV file")
    run_parser.add_argument("--recipients", type=Path, help="waitlist recipient CSV file")
    run_parser.add_argument("--package-name", help="prefix for the audit ledger package names")

    runs_parser = subparsers.add_parser("runs", help="show the load run reconciliation view")
    runs_parser.add_argument("--days", type=int, default=7, help="look back this many days")
    runs_parser.add_argument("--status", choices=["Running", "Success", "Failed", "Warning"])

    errors_parser = subparsers.add_parser("errors", help="show rejected records for a run")
    errors_parser.add_argument("--run-id", type=int, required=True)
    errors_parser.add_argument("--error-code", required=False)

    subparsers.add_parser("reap-stale", help="seal runs left in Running state as Failed")

    schedule_parser = subparsers.add_parser("schedule", help="start daily scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    if args.command == "runs":
        with session_factory() as db:
            rows = reconciliation(db, since=utc_now() - timedelta(days=args.days), status=args.status)
        for row in rows:
            print(
                "run_id={run_id} package={package} status={status} source={source} staged={staged} "
                "inserted={inserted} updated={updated} errors={errors} error_rate={rate:.2f} balanced={balanced}".format(
                    run_id=row.run_id,
                    package=row.package_name,
                    status=row.status,
                    source=row.source_row_count,
                    staged=row.staged_row_count,
                    inserted=row.inserted_row_count,
                    updated=row.updated_row_count,
                    errors=row.error_row_count,
                    rate=row.error_rate,
                    balanced=row.balanced,
                )
            )
        return

    if args.command == "errors":
        with session_factory() as db:
            errors = query_errors(db, run_id=args.run_id, error_code=args.error_code)
            for error in errors:
                print(
                    f"row={error.source_row_number} key={error.natural_key} code={error.error_code} "
                    f"column={error.error_column} description={error.error_description}"
                )
        return

    if args.command == "reap-stale":
        with session_factory() as db:
            sealed = fail_stale_runs(db, older_than=utc_now() - timedelta(minutes=settings.stale_run_minutes))
        print(f"sealed={len(sealed)} run_ids={','.join(str(run_id) for run_id in sealed)}")
        return

    paths = {
        entity_type: path
        for entity_type, path in (
            (EntityType.CENTER, args.centers),
            (EntityType.DONOR, args.donors),
            (EntityType.RECIPIENT, args.recipients),
        )
        if path is not None
    }
    if not paths:
        raise SystemExit("run needs at least one of --centers, --donors, --recipients")

    if args.package_name:
        settings = replace(settings, app_name=args.package_name)
    runner = PipelineRunner(settings, session_factory)
    try:
        results = run_files(runner, paths)
    except FileNotFoundError as exc:
        raise SystemExit(str(exc)) from exc

    for entity_type in RUN_ORDER:
        result = results.get(entity_type)
        if result is None:
            continue
        print(
            "run_id={run_id} entity={entity} status={status} source={source} staged={staged} inserted={inserted} updated={updated} errors={errors}".format(
                run_id=result.run_id,
                entity=entity_type.value,
                status=result.status,
                source=result.source_row_count,
                staged=result.staged_row_count,
                inserted=result.inserted_row_count,
                updated=result.updated_row_count,
                errors=result.error_row_count,
            )
        )
    if any(not result.succeeded for result in results.values()):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
