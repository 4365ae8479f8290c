"""
Typed view over the project config document.

The document is shared with presentation code that stores its own keys, so
unknown keys ride along untouched and only fields that were present or
explicitly assigned are written back.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    videoUrl: Optional[str] = None
    finalVideoUrl: Optional[str] = None
    thumbnailUrl: Optional[str] = None

    # Legacy arrays kept for older readers. Entries are stored as-is
    # (URL strings, {first, last} pairs, nulls) and never interpreted here.
    sceneUrls: Optional[List[Any]] = None
    frameUrls: Optional[List[Any]] = None
    audioTracks: Optional[List[Any]] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "ProjectConfig":
        """Accept None, a mapping, or the JSON text some older rows hold."""
        if raw is None:
            return cls()
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            if not raw.strip():
                return cls()
            raw = json.loads(raw)
        if not isinstance(raw, dict):
            raise ValueError(f"Project config must be a JSON object, got {type(raw).__name__}")
        return cls.model_validate(raw)

    @property
    def has_thumbnail(self) -> bool:
        return is_usable_url(self.thumbnailUrl)

    def merge_final_video(self, url: str) -> None:
        self.videoUrl = url
        self.finalVideoUrl = url

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


def is_usable_url(value: Any) -> bool:
    """Non-blank and not the literal 'null' some older writers stored."""
    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return bool(stripped) and stripped.lower() != "null"
