from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from specimen_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from specimen_import.db.postgres import PostgresStore, db_connection
from specimen_import.db.store import MemoryStore, RecordStore, StoreError
from specimen_import.excel.reader import WorkbookLoadError, load_workbook, read_sheet_frames
from specimen_import.importers import IMPORTERS, build_importer
from specimen_import.logging.error_log import MessageLogBuffer
from specimen_import.logging.init import enable_debug, log_summary, setup_logging
from specimen_import.models.config_models import ImportConfig
from specimen_import.models.import_message import ImportMessage
from specimen_import.models.workbook import Workbook, Worksheet
from specimen_import.services.pipeline import ImportPipeline, StructuralImportError
from specimen_import.services.staging import StagingError, WorkbookStaging
from specimen_import.services.summary import render_summary_line

"""CLI entrypoint.

    python -m specimen_import.cli [--debug] [--config PATH] <command> ...

Commands: importers, inspect, stage, preview, commit, cleanup.

Exit codes:
    0  success (no error-flagged messages)
    2  completed with row-level errors, or commit refused after preview
    1  fatal (config, workbook load, structural, store / connection)

DB 接続制御: DISABLE_DB_CONNECT=1 で PostgreSQL に接続せずインメモリストア (mock mode)。
"""

__all__ = [
    "EXIT_SUCCESS_ALL",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_FATAL",
    "main",
]

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

FATAL_ERRORS = (WorkbookLoadError, StructuralImportError, StoreError, StagingError, LookupError)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (values override the process environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="specimen-import",
        description="Spreadsheet import & reconciliation for specimen tracking (preview / commit)",
    )
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Config YAML path")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("importers", help="List available importers")

    inspect = sub.add_parser("inspect", help="Print sheet titles, sizes and first rows")
    inspect.add_argument("file")
    inspect.add_argument("--rows", type=int, default=5)

    stage = sub.add_parser("stage", help="Decode a file and stage it for preview / commit")
    stage.add_argument("file")
    stage.add_argument("--uploaded-by", default=None)
    stage.add_argument("--mime-type", default=None)

    for name, help_text in (("preview", "Validate and show intended changes"), ("commit", "Persist changes")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("importer", choices=sorted(IMPORTERS))
        cmd.add_argument("source", help="Staged workbook id or file path")
        cmd.add_argument("--sheet", default=None, help="Worksheet title (default: first sheet)")
        if name == "commit":
            cmd.add_argument("--force", action="store_true", help="Commit even if the preview has errors")

    cleanup = sub.add_parser("cleanup", help="Find (and with --force delete) expired staged workbooks")
    cleanup.add_argument("--force", action="store_true")
    return p.parse_args(argv)


def _mock_store() -> RecordStore:
    return MemoryStore()


@contextmanager
def _open_store(cfg: ImportConfig, logger) -> Iterator[RecordStore]:
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        yield _mock_store()
        return
    with db_connection(cfg.database) as cur:
        yield PostgresStore(cur)


def _resolve_source(source: str, cfg: ImportConfig, staging: WorkbookStaging) -> tuple[Workbook, str | None]:
    if staging.exists(source):
        return staging.load(source), source
    path = Path(source)
    if not path.exists():
        raise StagingError(f"not a staged workbook id or existing file: {source}")
    return load_workbook(path, timezone=cfg.timezone), None


def _pick_sheet(workbook: Workbook, title: str | None) -> Worksheet:
    return workbook.worksheet(title) if title else workbook.first_worksheet()


def _report(pipeline: ImportPipeline, logger) -> None:
    for message in pipeline.messages.grouped():
        line = f"{message.location} {message.details}"
        if message.is_error:
            logger.error(line)
        else:
            logger.info(line)
    for classification, records in pipeline.output.items():
        if records:
            keys = ", ".join(str(r.natural_key) for r in records)
            logger.info(f"{classification} ({len(records)}): {keys}")
    summary_line = render_summary_line(pipeline.summary())
    log_summary(summary_line[len("SUMMARY "):])


def _record_messages(buffer: MessageLogBuffer, pipeline: ImportPipeline) -> None:
    buffer.extend_from_messages(pipeline.filename, pipeline.worksheet_title, pipeline.name, pipeline.messages)


def _cmd_inspect(args: argparse.Namespace) -> int:
    frames = read_sheet_frames(Path(args.file))
    print(f"FILE: {Path(args.file).name}")
    for title, df in frames.items():
        print(f"  SHEET: {title} rows={df.shape[0]} cols={df.shape[1]}")
        for _, row in df.head(args.rows).iterrows():
            values = ["" if (isinstance(v, float) and v != v) else str(v) for v in row.tolist()]
            print("    " + " | ".join(values))
    return EXIT_SUCCESS_ALL


def _cmd_stage(args: argparse.Namespace, cfg: ImportConfig, staging: WorkbookStaging, logger) -> int:
    path = Path(args.file)
    workbook = load_workbook(
        path,
        mime_type=args.mime_type,
        uploaded_by=args.uploaded_by,
        timezone=cfg.timezone,
    )
    workbook_id = staging.stage(workbook)
    sheets = ", ".join(f"{ws.title}({ws.get_num_rows()} rows)" for ws in workbook.worksheets)
    logger.info(f"staged id={workbook_id} file={workbook.filename} sheets={sheets}")
    return EXIT_SUCCESS_ALL


def _cmd_run(
    args: argparse.Namespace,
    cfg: ImportConfig,
    staging: WorkbookStaging,
    buffer: MessageLogBuffer,
    logger,
) -> int:
    workbook, staged_id = _resolve_source(args.source, cfg, staging)
    worksheet = _pick_sheet(workbook, args.sheet)
    override = cfg.override_for(args.importer)

    def fresh(store: RecordStore) -> ImportPipeline:
        return build_importer(
            args.importer,
            worksheet,
            store,
            column_map=override.column_map,
            starting_row=override.starting_row,
            filename=workbook.filename,
        )

    with _open_store(cfg, logger) as store:
        preview = fresh(store)
        preview.process(commit=False)

        if args.command == "preview":
            _report(preview, logger)
            _record_messages(buffer, preview)
            return EXIT_PARTIAL_FAILURE if preview.has_errors() else EXIT_SUCCESS_ALL

        if preview.has_errors() and not args.force:
            _report(preview, logger)
            _record_messages(buffer, preview)
            logger.error(
                f"commit refused: preview has {len(preview.get_errors())} error(s); "
                "correct the file or re-run with --force"
            )
            return EXIT_PARTIAL_FAILURE

        committed = fresh(store)
        committed.process(commit=True)
        _report(committed, logger)
        _record_messages(buffer, committed)

    if staged_id is not None:
        staging.remove(staged_id)
        logger.debug(f"removed staged workbook {staged_id}")
    return EXIT_PARTIAL_FAILURE if committed.has_errors() else EXIT_SUCCESS_ALL


def _cmd_cleanup(args: argparse.Namespace, staging: WorkbookStaging, logger) -> int:
    expired = staging.purge_expired(force=args.force)
    for workbook_id in expired:
        logger.info(f"expired: {workbook_id}{' (deleted)' if args.force else ''}")
    if expired and not args.force:
        logger.info(f"{len(expired)} expired workbook(s); re-run with --force to delete")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む ([] はそのまま使う)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        enable_debug(logger)
        logger.debug("debug mode enabled")

    if args.command == "importers":
        for name, cls in IMPORTERS.items():
            print(f"{name}\t{cls.title}")
        return EXIT_SUCCESS_ALL

    if args.command == "inspect":
        try:
            return _cmd_inspect(args)
        except WorkbookLoadError as e:
            logger.error(f"inspect: {e}")
            return EXIT_FATAL

    try:
        cfg = load_config(Path(args.config), known_importers=IMPORTERS)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    staging = WorkbookStaging(Path(cfg.staging_directory), cfg.retention_days)
    buffer = MessageLogBuffer(Path(cfg.logs_directory))
    try:
        if args.command == "stage":
            return _cmd_stage(args, cfg, staging, logger)
        if args.command == "cleanup":
            return _cmd_cleanup(args, staging, logger)
        return _cmd_run(args, cfg, staging, buffer, logger)
    except FATAL_ERRORS as e:
        logger.error(f"{args.command}: {e}")
        if args.command in ("preview", "commit"):
            buffer.extend_from_messages(args.source, args.sheet or "", args.importer, [ImportMessage.error(str(e))])
        return EXIT_FATAL
    finally:
        path = buffer.flush()
        if path is not None:
            logger.info(f"messages written to {path}")
