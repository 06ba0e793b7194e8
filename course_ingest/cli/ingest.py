"""Command-line interface for the course ingestion pipeline.

Usage::

    python -m course_ingest.cli add-material --user-id u1 --file notes.pdf
    python -m course_ingest.cli process --material-id <id>
    python -m course_ingest.cli reprocess --material-id <id>
    python -m course_ingest.cli embed --material-id <id>
    python -m course_ingest.cli status --job-id <id>
    python -m course_ingest.cli stats
    python -m course_ingest.cli failed --queue document-processing
    python -m course_ingest.cli worker            # run until interrupted
    python -m course_ingest.cli drain             # process everything, then exit
    python -m course_ingest.cli serve

Every command builds the same :class:`PipelineContext` the API uses.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path

from course_ingest.config.settings import Settings
from course_ingest.models.course import FileMetadata
from course_ingest.pipeline.context import PipelineContext
from course_ingest.pipeline.ingestion_pipeline import IngestionPipeline
from course_ingest.services.ingestion.extractor import DOCX_MIME, PDF_MIME
from course_ingest.utils.errors import CourseIngestError
from course_ingest.utils.logging import configure_logging

_SUFFIX_MIME = {".pdf": PDF_MIME, ".docx": DOCX_MIME}


def _guess_mime(path: Path) -> str:
    return _SUFFIX_MIME.get(path.suffix.lower()) or mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_add_material(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    repository = pipeline.context.repository
    path = Path(args.file).resolve()
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    chapter_id = args.chapter_id
    if chapter_id is None:
        course = await repository.create_course(args.user_id, title=args.course_title, language=args.language)
        chapter = await repository.create_chapter(course.id, title=args.chapter_title)
        chapter_id = chapter.id
        print(f"Created course {course.id} and chapter {chapter_id}")

    material = await repository.create_material(
        chapter_id,
        FileMetadata(
            original_name=path.name,
            file_path=str(path),
            file_size=path.stat().st_size,
            mime_type=args.mime_type or _guess_mime(path),
        ),
    )
    print(f"Created material {material.id}")

    if args.process:
        job = await pipeline.process_material(material.id)
        print(f"Queued extraction job {job.id} on {job.queue_name}")
    return 0


async def _handle_process(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    job = await pipeline.process_material(args.material_id)
    print(f"Queued extraction job {job.id} on {job.queue_name}")
    return 0


async def _handle_reprocess(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    job = await pipeline.reprocess_material(args.material_id)
    print(f"Queued re-extraction job {job.id} on {job.queue_name}")
    return 0


async def _handle_embed(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    job = await pipeline.regenerate_embeddings(args.material_id)
    print(f"Queued embedding job {job.id} on {job.queue_name}")
    return 0


async def _handle_status(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    _print_json(await pipeline.get_job_status(args.job_id))
    return 0


async def _handle_stats(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    stats = await pipeline.get_queue_stats()
    print(f"{'queue':<24}{'waiting':>9}{'active':>8}{'delayed':>9}{'done':>7}{'failed':>8}")
    for s in stats:
        print(f"{s.queue_name:<24}{s.waiting:>9}{s.active:>8}{s.delayed:>9}{s.completed:>7}{s.failed:>8}")
    return 0


async def _handle_failed(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    jobs = await pipeline.list_failed_jobs(args.queue, args.limit)
    if not jobs:
        print(f"No failed jobs on {args.queue}")
        return 0
    for job in jobs:
        print(f"{job.id}  attempts={job.attempts_made}  {job.failed_reason}")
    return 0


async def _handle_worker(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    pools = pipeline.context.pools
    selected = [args.queue] if args.queue else list(pools)
    unknown = [name for name in selected if name not in pools]
    if unknown:
        print(f"Error: unknown queue(s): {', '.join(unknown)}", file=sys.stderr)
        return 1

    for name in selected:
        await pools[name].start()
    print(f"Workers running for: {', '.join(selected)} (Ctrl-C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        for name in selected:
            await pools[name].stop()
    return 0


async def _handle_drain(args: argparse.Namespace, pipeline: IngestionPipeline) -> int:
    processed = await pipeline.drain()
    print(f"Processed {processed} job attempt(s)")
    return 0


_HANDLERS = {
    "add-material": _handle_add_material,
    "process": _handle_process,
    "reprocess": _handle_reprocess,
    "embed": _handle_embed,
    "status": _handle_status,
    "stats": _handle_stats,
    "failed": _handle_failed,
    "worker": _handle_worker,
    "drain": _handle_drain,
}


async def _run(args: argparse.Namespace, context: PipelineContext) -> int:
    await context.initialize()
    pipeline = IngestionPipeline(context)
    try:
        return await _HANDLERS[args.command](args, pipeline)
    except CourseIngestError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await context.aclose()


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m course_ingest.cli",
        description="Queue and run course material ingestion jobs.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    add_parser = subparsers.add_parser("add-material", help="Register a file as a course material")
    add_parser.add_argument("--file", required=True, help="Path to the PDF or DOCX file")
    add_parser.add_argument("--chapter-id", dest="chapter_id", help="Existing chapter (created when omitted)")
    add_parser.add_argument("--user-id", dest="user_id", default="cli", help="Owner for a new course")
    add_parser.add_argument("--course-title", dest="course_title", default="", help="Title for a new course")
    add_parser.add_argument("--chapter-title", dest="chapter_title", default="", help="Title for a new chapter")
    add_parser.add_argument("--language", default="en", help="Language for a new course")
    add_parser.add_argument("--mime-type", dest="mime_type", help="Override the guessed MIME type")
    add_parser.add_argument("--process", action="store_true", help="Queue extraction immediately")

    for name, help_text in (
        ("process", "Queue extraction for a material"),
        ("reprocess", "Drop a material's chunks and extract again"),
        ("embed", "Regenerate embeddings from stored text"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--material-id", dest="material_id", required=True)

    status_parser = subparsers.add_parser("status", help="Show a job's status")
    status_parser.add_argument("--job-id", dest="job_id", required=True)

    subparsers.add_parser("stats", help="Show per-queue counts")

    failed_parser = subparsers.add_parser("failed", help="List terminally failed jobs")
    failed_parser.add_argument("--queue", required=True, help="Queue name")
    failed_parser.add_argument("--limit", type=int, default=50)

    worker_parser = subparsers.add_parser("worker", help="Run worker pools until interrupted")
    worker_parser.add_argument("--queue", help="Serve only this queue")

    subparsers.add_parser("drain", help="Process all ready jobs in-process, then exit")
    subparsers.add_parser("serve", help="Run the HTTP API (workers included by default)")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        from course_ingest.main import main as serve

        serve()
        return

    app_settings = Settings()
    configure_logging(log_level=app_settings.log_level, json_output=(app_settings.app_env == "production"))

    # Imported here so ``--help`` does not pay for chromadb/openai imports.
    from course_ingest.main import build_context

    context = build_context(app_settings)
    try:
        exit_code = asyncio.run(_run(args, context))
    except KeyboardInterrupt:
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
