import argparse
from pathlib import Path

from warranty_import.config import get_settings
from warranty_import.database import build_session_factory
from warranty_import.errors import ImportRunError
from warranty_import.logging_setup import configure_logging
from warranty_import.pipeline import build_pipeline, new_import_id
from warranty_import.scheduler import start_scheduler


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import partner warranty sales into the CRM")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="import one sales file")
    run_parser.add_argument("--file", required=True, type=Path, help="Path to the partner CSV file")
    run_parser.add_argument("--import-id", required=False, help="Correlation id for this import")

    schedule_parser = subparsers.add_parser("schedule", help="start the daily inbox scheduler")
    schedule_parser.add_argument("--run-now", action="store_true", help="also sweep the inbox immediately")

    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    configure_logging(settings.log_level)

    session_factory = build_session_factory(settings.database_url)
    if args.command == "schedule":
        start_scheduler(settings, session_factory, run_now=args.run_now)
        return

    import_id = args.import_id or new_import_id()
    pipeline = build_pipeline(settings, session_factory)
    try:
        result = pipeline.run_file(args.file, import_id=import_id)
    except ImportRunError as exc:
        print(
            "import_id={import_id} status=failed duration={duration} error={error}".format(
                import_id=exc.import_id,
                duration=exc.elapsed_seconds,
                error=exc.__cause__ or exc,
            )
        )
        raise SystemExit(1)
    finally:
        pipeline.close()

    print(
        "import_id={import_id} status={status} total={total} valid={valid} invalid={invalid} job_id={job_id} "
        "success={success} errors={errors} validation_report={validation_report} bulk_report={bulk_report} "
        "duration={duration}".format(
            import_id=result.import_id,
            status=result.status,
            total=result.total_lines,
            valid=result.valid_records,
            invalid=result.invalid_records,
            job_id=result.job_id or "-",
            success=result.success_count,
            errors=result.error_count,
            validation_report=result.validation_report_path,
            bulk_report=result.bulk_report_path,
            duration=result.duration_seconds,
        )
    )


if __name__ == "__main__":
    main()
