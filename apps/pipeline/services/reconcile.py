"""Reconcile rendered videos in object storage with scene and project rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select

from models.project import Project
from models.project_config import ProjectConfig
from models.scene import Scene
from services.asset_keys import AssetDescriptor, AssetKind, parse_asset_key, project_video_prefix
from services.errors import PersistenceError, ProjectNotFoundError
from services.storage import ObjectStore, UrlResolver

logger = logging.getLogger(__name__)

# Placeholders for scenes discovered before the generation pipeline wrote them;
# that pipeline overwrites these with the real values.
PLACEHOLDER_PROMPT = "Synced from object storage"
PLACEHOLDER_DURATION = 5.0
PLACEHOLDER_START_TIME = 0.0


@dataclass
class ReconcileOutcome:
    project_id: str
    status: str  # "reconciled" | "no_op"
    scenes_updated: int = 0
    scenes_inserted: int = 0
    final_video_url: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return self.status == "no_op"


def discover_project_assets(
    store: ObjectStore,
    resolver: UrlResolver,
    user_id: str,
    project_id: str,
) -> Dict[AssetDescriptor, str]:
    """List a project's video prefix and map recognized assets to access URLs."""
    prefix = project_video_prefix(user_id, project_id)
    keys = store.list_keys(prefix)
    logger.info("Found %d object(s) under s3://%s/%s", len(keys), store.bucket, prefix)

    assets: Dict[AssetDescriptor, str] = {}
    # Sorted so duplicate descriptors (scene-1.mp4 + scene-1.webm) resolve the same way every run.
    for key in sorted(keys):
        descriptor = parse_asset_key(key)
        if descriptor.kind is AssetKind.UNRECOGNIZED:
            logger.debug("Ignoring unrecognized object %s", key)
            continue
        assets[descriptor] = resolver.resolve(key)
    return assets


async def reconcile_project_assets(
    session_maker: async_sessionmaker,
    project_id: str,
    assets: Mapping[AssetDescriptor, str],
) -> ReconcileOutcome:
    """
    Upsert scene rows and merge the final video URL into the project config.

    Scene writes come first; the final-video merge is applied only after
    every scene write was attempted, all inside one transaction. An empty
    asset map performs no writes and reports `no_op`.
    """
    scene_urls: Dict[int, str] = {}
    final_url: Optional[str] = None
    for descriptor, url in assets.items():
        if not url:
            continue
        if descriptor.kind is AssetKind.SCENE and descriptor.scene_number:
            scene_urls[descriptor.scene_number] = url
        elif descriptor.kind is AssetKind.FINAL:
            final_url = url

    if not scene_urls and final_url is None:
        return ReconcileOutcome(project_id=project_id, status="no_op")

    outcome = ReconcileOutcome(project_id=project_id, status="reconciled")
    try:
        async with session_maker() as db:
            result = await db.execute(select(Project).where(Project.id == project_id))
            project = result.scalar_one_or_none()
            if project is None:
                raise ProjectNotFoundError(f"Project {project_id} not found")

            for scene_number in sorted(scene_urls):
                video_url = scene_urls[scene_number]
                updated = await db.execute(
                    update(Scene)
                    .where(Scene.project_id == project_id, Scene.scene_number == scene_number)
                    .values(video_url=video_url, updated_at=func.now())
                )
                if updated.rowcount:
                    outcome.scenes_updated += 1
                    logger.info("Scene %d of %s updated", scene_number, project_id)
                    continue
                db.add(
                    Scene(
                        project_id=project_id,
                        scene_number=scene_number,
                        video_url=video_url,
                        prompt=PLACEHOLDER_PROMPT,
                        duration=PLACEHOLDER_DURATION,
                        start_time=PLACEHOLDER_START_TIME,
                    )
                )
                await db.flush()
                outcome.scenes_inserted += 1
                logger.info("Scene %d of %s created", scene_number, project_id)

            if final_url is not None:
                config = ProjectConfig.from_raw(project.config)
                config.merge_final_video(final_url)
                await db.execute(
                    update(Project)
                    .where(Project.id == project_id)
                    .values(
                        config=config.to_document(),
                        final_video_url=final_url,
                        updated_at=func.now(),
                    )
                )
                outcome.final_video_url = final_url

            await db.commit()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to reconcile project {project_id}: {exc}") from exc
    except ValueError as exc:
        raise PersistenceError(f"Project {project_id} has an unreadable config document: {exc}") from exc

    return outcome
