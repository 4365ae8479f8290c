"""Preview thumbnail derivation from a project's final video."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import httpx
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select

from media.video import FrameExtractor, download_video
from models.project import Project
from models.project_config import ProjectConfig, is_usable_url
from services.asset_keys import thumbnail_key
from services.errors import ExtractionError, PersistenceError, ProjectNotFoundError
from services.results import ItemResult
from services.storage import ObjectStore, UrlResolver

logger = logging.getLogger(__name__)

REASON_THUMBNAIL_EXISTS = "thumbnail_exists"
REASON_NO_VIDEO_URL = "no_video_url"
THUMBNAIL_CONTENT_TYPE = "image/jpeg"


class ThumbnailWorker:
    """Downloads a final video, grabs one frame, uploads it and records the URL."""

    def __init__(
        self,
        *,
        store: ObjectStore,
        resolver: UrlResolver,
        extractor: FrameExtractor,
        http_client: httpx.AsyncClient,
        session_maker: async_sessionmaker,
        offset_seconds: float = 0.1,
        download_timeout_seconds: float = 300,
    ):
        self.store = store
        self.resolver = resolver
        self.extractor = extractor
        self.http_client = http_client
        self.session_maker = session_maker
        self.offset_seconds = offset_seconds
        self.download_timeout_seconds = download_timeout_seconds

    async def extract_thumbnail(self, video_url: str) -> bytes:
        """Download into a private temp dir and extract one frame; the dir is always removed."""
        with tempfile.TemporaryDirectory(prefix="thumbnail-") as tmp_dir:
            video_path = Path(tmp_dir) / "video.mp4"
            logger.info("Downloading video from %s", video_url[:100])
            await download_video(
                self.http_client,
                video_url,
                video_path,
                timeout_seconds=self.download_timeout_seconds,
            )
            image = await self._run_extractor(video_path)
        if not image:
            raise ExtractionError("Frame extraction returned no image data")
        return image

    async def _run_extractor(self, video_path: Path) -> bytes:
        """
        Run the blocking extractor in a worker thread.

        On cancellation the extractor's child processes are killed and the
        thread is awaited, so the work dir outlives every reader of it.
        """
        extraction = asyncio.ensure_future(
            asyncio.to_thread(self.extractor.extract_frame, video_path, self.offset_seconds)
        )
        try:
            return await asyncio.shield(extraction)
        except asyncio.CancelledError:
            logger.warning("Thumbnail extraction cancelled for %s", video_path)
            self.extractor.cancel()
            await asyncio.wait({extraction})
            if not extraction.cancelled() and extraction.exception() is not None:
                logger.debug("Extractor stopped after cancel: %s", extraction.exception())
            raise

    async def process(self, project: Project, *, dry_run: bool = False, force: bool = False) -> ItemResult:
        try:
            config = ProjectConfig.from_raw(project.config)
        except ValueError as exc:
            raise PersistenceError(f"Project {project.id} has an unreadable config document: {exc}") from exc

        if config.has_thumbnail and not (dry_run or force):
            return ItemResult.skipped(project.id, REASON_THUMBNAIL_EXISTS, url=config.thumbnailUrl)

        if not is_usable_url(project.final_video_url):
            return ItemResult.skipped(project.id, REASON_NO_VIDEO_URL)

        image = await self.extract_thumbnail(project.final_video_url.strip())
        logger.info("Frame extracted for %s (%d bytes)", project.id, len(image))

        if dry_run:
            return ItemResult.success(
                project.id,
                detail=f"extracted {len(image)} bytes; would upload thumbnail and update database",
                dry_run=True,
            )

        key = thumbnail_key(project.user_id, project.id)
        metadata = {
            "userId": str(project.user_id),
            "projectId": str(project.id),
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
            "type": "thumbnail",
        }
        await asyncio.to_thread(
            self.store.upload_bytes,
            key,
            image,
            content_type=THUMBNAIL_CONTENT_TYPE,
            metadata=metadata,
        )
        url = await asyncio.to_thread(self.resolver.resolve, key)
        logger.info("Thumbnail uploaded to s3://%s/%s", self.store.bucket, key)

        await self._persist(project.id, url)
        return ItemResult.success(project.id, url=url, detail="thumbnail stored")

    async def _persist(self, project_id: str, url: str) -> None:
        """Write the URL to the column and the config document in one UPDATE."""
        try:
            async with self.session_maker() as db:
                result = await db.execute(select(Project).where(Project.id == project_id))
                project = result.scalar_one_or_none()
                if project is None:
                    raise ProjectNotFoundError(f"Project {project_id} not found")
                config = ProjectConfig.from_raw(project.config)
                config.thumbnailUrl = url
                await db.execute(
                    update(Project)
                    .where(Project.id == project_id)
                    .values(
                        thumbnail_url=url,
                        config=config.to_document(),
                        updated_at=func.now(),
                    )
                )
                await db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to store thumbnail for {project_id}: {exc}") from exc
        except ValueError as exc:
            raise PersistenceError(f"Project {project_id} has an unreadable config document: {exc}") from exc
