"""
Shared fakes for pipeline and server tests.
"""

import os

import pytest

from src.captionburn.assets import AssetManager
from src.captionburn.fonts import FontRegistry
from src.captionburn.models import Failure, FailureStage, FontEntry, Success

SRT_TWO_BLOCKS = """1
00:00:01,000 --> 00:00:04,000
Welcome to the sunset tour.

2
00:00:05 --> 00:00:09
The sky turns orange over the sea.
"""

SRT_NO_ARROW = """1
00:00:01,000 00:00:04,000
Welcome to the sunset tour.
"""

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64


class FakeEncoder:
    """Stands in for EncodeOrchestrator: records specs and writes a fake output."""

    def __init__(self, fail_with: str | None = None, payload: bytes = b"burned-video"):
        self.fail_with = fail_with
        self.payload = payload
        self.specs = []

    def run(self, spec, log=None):
        self.specs.append(spec)
        # ffmpeg leaves a partial file behind on failure too
        with open(spec.output, "wb") as f:
            f.write(b"" if self.fail_with else self.payload)
        if self.fail_with:
            return Failure(stage=FailureStage.ENCODE, kind="EncodeFailure", cause=self.fail_with)
        return Success(data=self.payload)


@pytest.fixture
def fonts() -> FontRegistry:
    return FontRegistry(
        {
            "Roboto": FontEntry("Roboto", "/fonts/Roboto-Regular.ttf"),
            "Lato": FontEntry("Lato", "/fonts/Lato-Regular.ttf"),
        },
        default_key="Roboto",
    )


@pytest.fixture
def assets(tmp_path) -> AssetManager:
    return AssetManager(str(tmp_path / "work"))


def leftover_files(assets: AssetManager) -> list[str]:
    """Every file left in the working directories."""

    found = []
    for directory in (assets.uploads_dir, assets.output_dir):
        if os.path.isdir(directory):
            found.extend(os.listdir(directory))
    return found
