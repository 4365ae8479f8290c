import re

import pytest

from services.asset_keys import (
    FINAL_ASSET,
    UNRECOGNIZED_ASSET,
    AssetKind,
    parse_asset_key,
    project_video_prefix,
    scene_asset,
    thumbnail_key,
)


@pytest.mark.parametrize(
    "key,expected",
    [
        ("users/u1/projects/p1/video/scene-1.mp4", scene_asset(1)),
        ("users/u1/projects/p1/video/scene-12.webm", scene_asset(12)),
        ("users/u1/projects/p1/video/SCENE-3.MOV", scene_asset(3)),
        ("scene-007.mkv", scene_asset(7)),
        ("users/u1/projects/p1/video/output.mp4", FINAL_ASSET),
        ("users/u1/projects/p1/video/Output.M4V", FINAL_ASSET),
    ],
)
def test_parse_recognized_keys(key, expected):
    assert parse_asset_key(key) == expected


@pytest.mark.parametrize(
    "key",
    [
        "users/u1/projects/p1/video/scene-0.mp4",
        "users/u1/projects/p1/video/scene-.mp4",
        "users/u1/projects/p1/video/scene-2.txt",
        "users/u1/projects/p1/video/scene-2.mp4.bak",
        "users/u1/projects/p1/video/my-scene-2.mp4",
        "users/u1/projects/p1/video/output-final.mp4",
        "users/u1/projects/p1/video/output.mp4/",
        "users/u1/projects/p1/video/notes.json",
        "",
        None,
        42,
    ],
)
def test_parse_unrecognized_keys_never_raise(key):
    assert parse_asset_key(key) == UNRECOGNIZED_ASSET


def test_only_filename_is_classified():
    # Directory segments that look like assets do not count.
    descriptor = parse_asset_key("users/u1/projects/scene-4.mp4/video/clip.mp4")
    assert descriptor.kind is AssetKind.UNRECOGNIZED


def test_descriptor_labels():
    assert scene_asset(2).label == "scene 2"
    assert FINAL_ASSET.label == "final"


def test_project_video_prefix():
    assert project_video_prefix("u1", "p1") == "users/u1/projects/p1/video/"


def test_thumbnail_key_layout():
    assert thumbnail_key("u1", "p1", token="1700000000000") == (
        "users/u1/projects/p1/thumbnails/1700000000000-thumbnail.jpg"
    )
    generated = thumbnail_key("u1", "p1")
    assert re.fullmatch(r"users/u1/projects/p1/thumbnails/\d{13}-thumbnail\.jpg", generated)
