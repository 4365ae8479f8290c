"""Batch passes over projects: storage sync, thumbnails, status promotion."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select

from models.project import Project
from models.project_config import ProjectConfig, is_usable_url
from models.scene import Scene
from services.errors import PersistenceError, PipelineError, ProjectNotFoundError
from services.reconcile import discover_project_assets, reconcile_project_assets
from services.results import ItemResult, RunSummary
from services.storage import ObjectStore, UrlResolver
from services.thumbnails import ThumbnailWorker

logger = logging.getLogger(__name__)

REASON_NO_ASSETS = "no_assets"

ResultCallback = Optional[Callable[[ItemResult], None]]


def _newest_first(query):
    return query.order_by(Project.created_at.desc(), Project.id)


async def select_projects_for_sync(
    session_maker: async_sessionmaker,
    project_id: Optional[str] = None,
) -> List[Project]:
    """The requested project, or every project newest first."""
    query = select(Project)
    if project_id:
        query = query.where(Project.id == project_id)
    async with session_maker() as db:
        result = await db.execute(_newest_first(query))
        return list(result.scalars().all())


async def select_projects_with_final_video(
    session_maker: async_sessionmaker,
    project_id: Optional[str] = None,
) -> List[Project]:
    """Projects whose final_video_url holds something other than '' or 'null'."""
    query = select(Project).where(
        Project.final_video_url.isnot(None),
        Project.final_video_url != "",
        Project.final_video_url != "null",
    )
    if project_id:
        query = query.where(Project.id == project_id)
    async with session_maker() as db:
        result = await db.execute(_newest_first(query))
        return list(result.scalars().all())


def _finish(summary: RunSummary, result: ItemResult, on_result: ResultCallback) -> None:
    summary.record(result)
    if on_result is not None:
        on_result(result)


async def sync_project(
    session_maker: async_sessionmaker,
    store: ObjectStore,
    resolver: UrlResolver,
    project: Project,
) -> ItemResult:
    assets = await asyncio.to_thread(discover_project_assets, store, resolver, project.user_id, project.id)
    outcome = await reconcile_project_assets(session_maker, project.id, assets)
    if outcome.is_noop:
        return ItemResult.skipped(project.id, REASON_NO_ASSETS)
    detail = f"{outcome.scenes_updated} scene(s) updated, {outcome.scenes_inserted} created"
    if outcome.final_video_url:
        detail += ", final video linked"
    return ItemResult.success(project.id, url=outcome.final_video_url, detail=detail)


async def run_sync_batch(
    session_maker: async_sessionmaker,
    store: ObjectStore,
    resolver: UrlResolver,
    *,
    project_id: Optional[str] = None,
    on_result: ResultCallback = None,
) -> RunSummary:
    """Reconcile storage with the database for one project or all of them."""
    summary = RunSummary()
    projects = await select_projects_for_sync(session_maker, project_id)
    if project_id and not projects:
        _finish(summary, ItemResult.failed(project_id, "Project not found"), on_result)
        return summary

    logger.info("Syncing %d project(s)", len(projects))
    for project in projects:
        try:
            result = await sync_project(session_maker, store, resolver, project)
        except PipelineError as exc:
            logger.warning("Sync failed for %s: %s", project.id, exc)
            result = ItemResult.failed(project.id, str(exc))
        except Exception as exc:
            logger.exception("Unexpected sync failure for %s", project.id)
            result = ItemResult.failed(project.id, f"{type(exc).__name__}: {exc}")
        _finish(summary, result, on_result)
    return summary


async def run_thumbnail_batch(
    session_maker: async_sessionmaker,
    worker: ThumbnailWorker,
    *,
    project_id: Optional[str] = None,
    dry_run: bool = False,
    force: bool = False,
    on_result: ResultCallback = None,
) -> RunSummary:
    """Derive thumbnails for every project with a final video; failures never stop the batch."""
    summary = RunSummary()
    projects = await select_projects_with_final_video(session_maker, project_id)
    logger.info("Found %d project(s) with final_video_url", len(projects))

    for project in projects:
        try:
            result = await worker.process(project, dry_run=dry_run, force=force)
        except PipelineError as exc:
            logger.warning("Thumbnail failed for %s: %s", project.id, exc)
            result = ItemResult.failed(project.id, str(exc))
        except Exception as exc:
            logger.exception("Unexpected thumbnail failure for %s", project.id)
            result = ItemResult.failed(project.id, f"{type(exc).__name__}: {exc}")
        _finish(summary, result, on_result)
    return summary


def _has_final_video(project: Project) -> bool:
    if is_usable_url(project.final_video_url):
        return True
    try:
        config = ProjectConfig.from_raw(project.config)
    except ValueError:
        logger.warning("Skipping %s: unreadable config document", project.id)
        return False
    return is_usable_url(config.videoUrl) or is_usable_url(config.finalVideoUrl)


async def promote_completed_projects(
    session_maker: async_sessionmaker,
    *,
    dry_run: bool = False,
) -> List[str]:
    """Mark draft projects that already have a final video as completed."""
    try:
        async with session_maker() as db:
            result = await db.execute(_newest_first(select(Project).where(Project.status == "draft")))
            promotable = [project.id for project in result.scalars().all() if _has_final_video(project)]
            if promotable and not dry_run:
                await db.execute(
                    update(Project)
                    .where(Project.id.in_(promotable), Project.status == "draft")
                    .values(status="completed", updated_at=func.now())
                )
                await db.commit()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to promote draft projects: {exc}") from exc
    return promotable


async def list_project_scenes(session_maker: async_sessionmaker, project_id: str) -> List[Scene]:
    """Scene rows for a project in ordinal order."""
    async with session_maker() as db:
        project = (await db.execute(select(Project.id).where(Project.id == project_id))).scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        result = await db.execute(
            select(Scene).where(Scene.project_id == project_id).order_by(Scene.scene_number.asc())
        )
        return list(result.scalars().all())
