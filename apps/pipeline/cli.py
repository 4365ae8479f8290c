"""
Scene asset pipeline - batch entry point.

  scene-assets sync [--project-id ID]
  scene-assets thumbnails [--project-id ID] [--dry-run] [--force]
  scene-assets promote [--dry-run]
  scene-assets scenes --project-id ID
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import httpx

from config import Settings, settings, validate_pipeline_settings
from database import check_database_connection, open_database
from media.video import FFmpegFrameExtractor
from services.batch import (
    list_project_scenes,
    promote_completed_projects,
    run_sync_batch,
    run_thumbnail_batch,
)
from services.errors import ConfigurationError, PipelineError
from services.results import RunSummary
from services.storage import ObjectStore, UrlResolver
from services.thumbnails import ThumbnailWorker

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ITEM_FAILED = 1
EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scene-assets", description=__doc__.strip().splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Reconcile rendered videos in object storage with the database")
    sync.add_argument("--project-id", default=None)

    thumbs = sub.add_parser("thumbnails", help="Extract preview thumbnails from final videos")
    thumbs.add_argument("--project-id", default=None)
    thumbs.add_argument("--dry-run", action="store_true", help="Extract only; no upload, no database writes")
    thumbs.add_argument("--force", action="store_true", help="Regenerate even when a thumbnail exists")

    promote = sub.add_parser("promote", help="Mark draft projects with a final video as completed")
    promote.add_argument("--dry-run", action="store_true")

    scenes = sub.add_parser("scenes", help="Print the scene rows of one project")
    scenes.add_argument("--project-id", required=True)
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_summary(summary: RunSummary) -> None:
    print("\n=== Summary ===")
    for line in summary.describe():
        print(line)


async def _sync(args: argparse.Namespace, current: Settings, session_maker) -> int:
    store = ObjectStore.from_settings(current)
    resolver = UrlResolver(
        store,
        signed=current.SYNC_USE_PRESIGNED_URLS,
        ttl_seconds=current.S3_SIGNED_URL_TTL_SECONDS,
    )
    print(f"🔄 Syncing s3://{store.bucket} -> database ({args.project_id or 'all projects'})\n")
    summary = await run_sync_batch(
        session_maker,
        store,
        resolver,
        project_id=args.project_id,
        on_result=lambda result: print(result.describe()),
    )
    _print_summary(summary)
    return summary.exit_code


async def _thumbnails(args: argparse.Namespace, current: Settings, session_maker) -> int:
    store = ObjectStore.from_settings(current)
    resolver = UrlResolver(
        store,
        signed=current.S3_USE_PRESIGNED_URLS,
        ttl_seconds=current.S3_SIGNED_URL_TTL_SECONDS,
    )
    extractor = FFmpegFrameExtractor(
        current.FFMPEG_PATH,
        current.ffprobe_path,
        size=current.THUMBNAIL_SIZE,
        timeout_seconds=current.FRAME_EXTRACTION_TIMEOUT_SECONDS,
    )
    print("=== Thumbnail Generation ===")
    print(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    print(f"FFmpeg: {current.FFMPEG_PATH}")
    print(f"FFprobe: {current.ffprobe_path}")
    print(f"S3 Bucket: {store.bucket}")
    print(f"Project ID filter: {args.project_id or 'all projects'}\n")

    timeout = httpx.Timeout(current.VIDEO_DOWNLOAD_TIMEOUT_SECONDS)
    async with httpx.AsyncClient(timeout=timeout) as http_client:
        worker = ThumbnailWorker(
            store=store,
            resolver=resolver,
            extractor=extractor,
            http_client=http_client,
            session_maker=session_maker,
            offset_seconds=current.THUMBNAIL_OFFSET_SECONDS,
            download_timeout_seconds=current.VIDEO_DOWNLOAD_TIMEOUT_SECONDS,
        )
        summary = await run_thumbnail_batch(
            session_maker,
            worker,
            project_id=args.project_id,
            dry_run=args.dry_run,
            force=args.force,
            on_result=lambda result: print(result.describe()),
        )
    _print_summary(summary)
    return summary.exit_code


async def _promote(args: argparse.Namespace, current: Settings, session_maker) -> int:
    promoted = await promote_completed_projects(session_maker, dry_run=args.dry_run)
    verb = "Would promote" if args.dry_run else "Promoted"
    for project_id in promoted:
        print(f"✅ {project_id}: draft -> completed")
    print(f"\n{verb} {len(promoted)} draft project(s) to completed")
    return EXIT_OK


async def _scenes(args: argparse.Namespace, current: Settings, session_maker) -> int:
    scenes = await list_project_scenes(session_maker, args.project_id)
    print(f"Found {len(scenes)} scene(s) for project {args.project_id}\n")
    for scene in scenes:
        print(
            f"  Scene {scene.scene_number}: duration={scene.duration}s start={scene.start_time}s "
            f"video={'yes' if scene.video_url else 'no'} "
            f"frames={'first ' if scene.first_frame_url else ''}{'last' if scene.last_frame_url else ''}".rstrip()
        )
    return EXIT_OK


COMMANDS = {
    "sync": _sync,
    "thumbnails": _thumbnails,
    "promote": _promote,
    "scenes": _scenes,
}


async def run(args: argparse.Namespace, current: Settings) -> int:
    try:
        validate_pipeline_settings(current, require_ffmpeg=args.command == "thumbnails")
    except ConfigurationError as exc:
        print(f"❌ Configuration error: {exc}")
        return EXIT_FATAL

    try:
        async with open_database(current) as session_maker:
            try:
                await check_database_connection(session_maker)
            except Exception as exc:
                logger.error("Database connection check failed: %s", exc)
                print(f"❌ Database unreachable: {exc}")
                return EXIT_FATAL
            print("✓ Database connection successful\n")
            try:
                return await COMMANDS[args.command](args, current, session_maker)
            except PipelineError as exc:
                print(f"❌ {exc}")
                return EXIT_ITEM_FAILED
    except ConfigurationError as exc:
        print(f"❌ Configuration error: {exc}")
        return EXIT_FATAL


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.LOG_LEVEL)
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
