"""Object key layout and parsing for rendered project videos."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


VIDEO_EXTENSIONS = ("mp4", "mov", "m4v", "webm", "mkv", "avi")

_EXT_PATTERN = "|".join(VIDEO_EXTENSIONS)
_SCENE_NAME_RE = re.compile(rf"^scene-(?P<number>\d+)\.(?:{_EXT_PATTERN})$", re.IGNORECASE)
_FINAL_NAME_RE = re.compile(rf"^output\.(?:{_EXT_PATTERN})$", re.IGNORECASE)


class AssetKind(str, Enum):
    SCENE = "scene"
    FINAL = "final"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class AssetDescriptor:
    kind: AssetKind
    scene_number: Optional[int] = None

    @property
    def label(self) -> str:
        if self.kind is AssetKind.SCENE:
            return f"scene {self.scene_number}"
        return self.kind.value


FINAL_ASSET = AssetDescriptor(AssetKind.FINAL)
UNRECOGNIZED_ASSET = AssetDescriptor(AssetKind.UNRECOGNIZED)


def scene_asset(scene_number: int) -> AssetDescriptor:
    return AssetDescriptor(AssetKind.SCENE, int(scene_number))


def parse_asset_key(key: Any) -> AssetDescriptor:
    """
    Classify an object key by its filename only.

    `scene-<N>.<ext>` is a scene (N >= 1), `output.<ext>` is the final
    video, everything else is unrecognized. Never raises.
    """
    if not isinstance(key, str) or not key:
        return UNRECOGNIZED_ASSET
    filename = key.rsplit("/", 1)[-1].strip()

    match = _SCENE_NAME_RE.match(filename)
    if match:
        number = int(match.group("number"))
        if number < 1:
            return UNRECOGNIZED_ASSET
        return scene_asset(number)
    if _FINAL_NAME_RE.match(filename):
        return FINAL_ASSET
    return UNRECOGNIZED_ASSET


def project_prefix(user_id: str, project_id: str) -> str:
    return f"users/{user_id}/projects/{project_id}/"


def project_video_prefix(user_id: str, project_id: str) -> str:
    return f"{project_prefix(user_id, project_id)}video/"


def thumbnail_key(user_id: str, project_id: str, token: Optional[str] = None) -> str:
    """Thumbnail object key; the token (epoch millis by default) keeps reruns from colliding."""
    if token is None:
        token = str(time.time_ns() // 1_000_000)
    return f"{project_prefix(user_id, project_id)}thumbnails/{token}-thumbnail.jpg"
