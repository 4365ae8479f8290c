from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import models  # noqa: F401  (registers tables on Base.metadata)
from database import Base
from models.project import Project
from models.scene import Scene
from services.errors import ExtractionError, TransportError


BUCKET = "video-assets"
REGION = "us-west-2"
FAKE_JPEG = b"\xff\xd8\xff\xe0fake-jpeg\xff\xd9"


class FakeObjectStore:
    """In-memory stand-in for ObjectStore; records every upload."""

    def __init__(self, keys: Optional[List[str]] = None, *, failing_prefixes: Optional[List[str]] = None):
        self.bucket = BUCKET
        self.region = REGION
        self.endpoint = None
        self.keys = list(keys or [])
        self.failing_prefixes = list(failing_prefixes or [])
        self.uploads: List[Dict] = []

    def list_keys(self, prefix: str) -> List[str]:
        if any(prefix.startswith(failing) for failing in self.failing_prefixes):
            raise TransportError(f"Failed to list s3://{self.bucket}/{prefix}: AccessDenied")
        return [key for key in self.keys if key.startswith(prefix)]

    def upload_bytes(self, key: str, data: bytes, *, content_type: str, metadata=None) -> None:
        self.uploads.append({"key": key, "data": data, "content_type": content_type, "metadata": metadata})

    def presign_get(self, key: str, expires_in: int = 604800) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}?X-Amz-Expires={expires_in}&X-Amz-Signature=sig"

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


class FakeFrameExtractor:
    """Returns canned bytes and remembers where it was asked to read from."""

    def __init__(self, image: bytes = FAKE_JPEG, error: Optional[Exception] = None):
        self.image = image
        self.error = error
        self.cancelled = False
        self.calls: List[Dict] = []

    def extract_frame(self, video_path, offset_seconds: float) -> bytes:
        video_path = Path(video_path)
        self.calls.append(
            {
                "video_path": video_path,
                "work_dir": video_path.parent,
                "video_bytes": video_path.read_bytes(),
                "offset": offset_seconds,
            }
        )
        if self.error is not None:
            raise self.error
        return self.image

    def cancel(self) -> None:
        self.cancelled = True


def failing_extractor(message: str = "ffmpeg failed (exit 1): moov atom not found") -> FakeFrameExtractor:
    return FakeFrameExtractor(error=ExtractionError(message, returncode=1))


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "pipeline.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


BASE_TIME = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


async def add_project(
    session_maker,
    project_id: str,
    *,
    user_id: str = "user-1",
    status: str = "draft",
    config=None,
    final_video_url: Optional[str] = None,
    thumbnail_url: Optional[str] = None,
    age_minutes: int = 0,
) -> Project:
    project = Project(
        id=project_id,
        user_id=user_id,
        name=f"Project {project_id}",
        status=status,
        config=config if config is not None else {},
        final_video_url=final_video_url,
        thumbnail_url=thumbnail_url,
        created_at=BASE_TIME - timedelta(minutes=age_minutes),
    )
    async with session_maker() as session:
        session.add(project)
        await session.commit()
    return project


async def add_scene(session_maker, project_id: str, scene_number: int, **fields) -> Scene:
    scene = Scene(
        project_id=project_id,
        scene_number=scene_number,
        prompt=fields.pop("prompt", f"Scene {scene_number} prompt"),
        duration=fields.pop("duration", 8.0),
        start_time=fields.pop("start_time", 8.0 * (scene_number - 1)),
        **fields,
    )
    async with session_maker() as session:
        session.add(scene)
        await session.commit()
    return scene
