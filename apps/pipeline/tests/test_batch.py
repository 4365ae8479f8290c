import httpx
import pytest
from sqlalchemy.future import select

from conftest import FakeFrameExtractor, FakeObjectStore, add_project, add_scene, failing_extractor
from models.project import Project
from services.batch import (
    REASON_NO_ASSETS,
    list_project_scenes,
    promote_completed_projects,
    run_sync_batch,
    run_thumbnail_batch,
)
from services.errors import ProjectNotFoundError
from services.results import FAILED, SKIPPED, SUCCESS, ItemResult, RunSummary
from services.storage import UrlResolver
from services.thumbnails import ThumbnailWorker


def _video_prefix(project_id: str, user_id: str = "user-1") -> str:
    return f"users/{user_id}/projects/{project_id}/video/"


async def _project(session_maker, project_id):
    async with session_maker() as session:
        result = await session.execute(select(Project).where(Project.id == project_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_sync_batch_isolates_failures_and_keeps_going(session_maker):
    await add_project(session_maker, "newest", age_minutes=0)
    await add_project(session_maker, "broken", age_minutes=5)
    await add_project(session_maker, "empty", age_minutes=10)
    await add_project(session_maker, "oldest", age_minutes=15)
    store = FakeObjectStore(
        [
            f"{_video_prefix('newest')}scene-1.mp4",
            f"{_video_prefix('newest')}output.mp4",
            f"{_video_prefix('oldest')}scene-2.mov",
        ],
        failing_prefixes=[_video_prefix("broken")],
    )
    seen = []

    summary = await run_sync_batch(
        session_maker,
        store,
        UrlResolver(store, signed=False),
        on_result=seen.append,
    )

    assert [item.project_id for item in seen] == ["newest", "broken", "empty", "oldest"]
    assert [item.status for item in seen] == [SUCCESS, FAILED, SKIPPED, SUCCESS]
    assert seen[2].reason == REASON_NO_ASSETS
    assert "AccessDenied" in seen[1].error
    assert (summary.total, summary.success, summary.skipped, summary.failed) == (4, 2, 1, 1)
    assert summary.exit_code == 1

    newest = await _project(session_maker, "newest")
    assert newest.final_video_url == store.public_url(f"{_video_prefix('newest')}output.mp4")
    scenes = await list_project_scenes(session_maker, "oldest")
    assert [(s.scene_number, s.video_url) for s in scenes] == [
        (2, store.public_url(f"{_video_prefix('oldest')}scene-2.mov"))
    ]


@pytest.mark.asyncio
async def test_sync_batch_single_project(session_maker):
    await add_project(session_maker, "proj-a")
    await add_project(session_maker, "proj-b")
    store = FakeObjectStore([f"{_video_prefix('proj-b')}output.mp4"])

    summary = await run_sync_batch(session_maker, store, UrlResolver(store, signed=False), project_id="proj-b")

    assert [item.project_id for item in summary.items] == ["proj-b"]
    assert summary.exit_code == 0


@pytest.mark.asyncio
async def test_sync_batch_unknown_project_is_a_failure(session_maker):
    store = FakeObjectStore()
    summary = await run_sync_batch(session_maker, store, UrlResolver(store, signed=False), project_id="ghost")

    assert summary.failed == 1
    assert summary.items[0].error == "Project not found"
    assert summary.exit_code == 1


@pytest.mark.asyncio
async def test_thumbnail_batch_continues_after_failures(session_maker):
    video = "https://cdn.example.com/{}/output.mp4"
    await add_project(session_maker, "p1", final_video_url=video.format("p1"), age_minutes=0)
    await add_project(session_maker, "p2", final_video_url=video.format("p2"), age_minutes=1)
    await add_project(
        session_maker,
        "p3",
        final_video_url=video.format("p3"),
        config={"thumbnailUrl": "https://cdn.example.com/p3/thumb.jpg"},
        age_minutes=2,
    )
    await add_project(session_maker, "p4", final_video_url="null", age_minutes=3)

    def handler(request: httpx.Request) -> httpx.Response:
        if "/p2/" in request.url.path:
            return httpx.Response(403, content=b"AccessDenied")
        return httpx.Response(200, content=b"video-bytes")

    store = FakeObjectStore()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        worker = ThumbnailWorker(
            store=store,
            resolver=UrlResolver(store, signed=True),
            extractor=FakeFrameExtractor(),
            http_client=client,
            session_maker=session_maker,
        )
        summary = await run_thumbnail_batch(session_maker, worker)

    statuses = {item.project_id: item.status for item in summary.items}
    assert statuses == {"p1": SUCCESS, "p2": FAILED, "p3": SKIPPED}
    assert [item.project_id for item in summary.items] == ["p1", "p2", "p3"]
    assert summary.exit_code == 1
    assert len(store.uploads) == 1
    assert (await _project(session_maker, "p1")).thumbnail_url


@pytest.mark.asyncio
async def test_thumbnail_batch_dry_run_touches_nothing(session_maker):
    await add_project(session_maker, "p1", final_video_url="https://cdn.example.com/p1/output.mp4")
    store = FakeObjectStore()
    extractor = failing_extractor()

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"v"))) as client:
        worker = ThumbnailWorker(
            store=store,
            resolver=UrlResolver(store, signed=True),
            extractor=extractor,
            http_client=client,
            session_maker=session_maker,
        )
        summary = await run_thumbnail_batch(session_maker, worker, dry_run=True)

    assert summary.failed == 1
    assert "moov atom" in summary.items[0].error
    assert store.uploads == []


@pytest.mark.asyncio
async def test_promote_marks_drafts_with_final_video(session_maker):
    await add_project(session_maker, "column", final_video_url="https://cdn/a.mp4")
    await add_project(session_maker, "config", config={"finalVideoUrl": "https://cdn/b.mp4"})
    await add_project(session_maker, "null-url", config={"videoUrl": "null"})
    await add_project(session_maker, "no-video")
    await add_project(session_maker, "failed", status="failed", final_video_url="https://cdn/c.mp4")

    preview = await promote_completed_projects(session_maker, dry_run=True)
    assert sorted(preview) == ["column", "config"]
    assert (await _project(session_maker, "column")).status == "draft"

    promoted = await promote_completed_projects(session_maker)
    assert sorted(promoted) == ["column", "config"]
    assert (await _project(session_maker, "column")).status == "completed"
    assert (await _project(session_maker, "config")).status == "completed"
    assert (await _project(session_maker, "null-url")).status == "draft"
    assert (await _project(session_maker, "failed")).status == "failed"

    assert await promote_completed_projects(session_maker) == []


@pytest.mark.asyncio
async def test_list_project_scenes_in_order(session_maker):
    await add_project(session_maker, "proj-a")
    await add_scene(session_maker, "proj-a", 2)
    await add_scene(session_maker, "proj-a", 1)

    scenes = await list_project_scenes(session_maker, "proj-a")
    assert [s.scene_number for s in scenes] == [1, 2]

    with pytest.raises(ProjectNotFoundError):
        await list_project_scenes(session_maker, "missing")


def test_summary_lines():
    summary = RunSummary()
    summary.record(ItemResult.success("a", url="https://cdn/a.jpg", detail="thumbnail stored"))
    summary.record(ItemResult.skipped("b", "thumbnail_exists"))
    summary.record(ItemResult.failed("c", "ffmpeg failed (exit 1)"))

    assert summary.describe() == ["Total projects: 3", "Success: 1", "Skipped: 1", "Failed: 1"]
    assert summary.items[0].describe() == "✅ a: thumbnail stored -> https://cdn/a.jpg"
    assert summary.items[1].describe() == "⏭️  b: skipped (thumbnail_exists)"
    assert summary.items[2].describe() == "❌ c: failed: ffmpeg failed (exit 1)"
    assert RunSummary().exit_code == 0
