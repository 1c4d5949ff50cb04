"""
Data models for the caption burn-in pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True, order=True)
class Timecode:
    """Elapsed time with millisecond precision."""

    ms: int

    @property
    def seconds(self) -> float:
        return self.ms / 1000.0

    def __str__(self) -> str:
        h, rest = divmod(self.ms, 3_600_000)
        m, rest = divmod(rest, 60_000)
        s, ms = divmod(rest, 1000)
        return f"{h:02}:{m:02}:{s:02},{ms:03}"


@dataclass(frozen=True)
class CaptionSegment:
    """A single caption block with timing and text."""

    index: int
    start: Timecode
    end: Timecode
    text: str


@dataclass(frozen=True)
class FontEntry:
    """A registered font: the family name libass matches and the file providing it."""

    family: str
    path: str


@dataclass(frozen=True)
class StyleOptions:
    """Caller-selected styling for one request."""

    font_key: str
    font: FontEntry
    add_broll: bool = False

    @property
    def font_file(self) -> str:
        return self.font.path


class AssetKind(str, Enum):
    INPUT = "input"
    SUBTITLE_FILE = "subtitles"
    BROLL_CLIP = "broll"
    OUTPUT = "output"


@dataclass
class EphemeralAsset:
    """A request-scoped filesystem object."""

    kind: AssetKind
    path: str
    created: bool = False


@dataclass(frozen=True)
class EncodeSpec:
    """Fully resolved instruction set for one ffmpeg invocation."""

    inputs: tuple[str, ...]
    output: str
    filter_graph: str | None = None
    maps: tuple[str, ...] = ()
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    audio_bitrate: str | None = None
    crf: int = 28
    preset: str = "fast"
    extra_args: tuple[str, ...] = ()


class PipelineState(str, Enum):
    RECEIVED = "received"
    ASSETS_STAGED = "assets_staged"
    BROLL_RESOLVED = "broll_resolved"
    SPEC_BUILT = "spec_built"
    ENCODED = "encoded"
    DELIVERED = "delivered"
    FAILED = "failed"


class FailureStage(str, Enum):
    STAGING = "staging"
    SPEC_BUILD = "spec_build"
    ENCODE = "encode"


@dataclass(frozen=True)
class Success:
    data: bytes = field(repr=False)

    ok = True


@dataclass(frozen=True)
class Failure:
    stage: FailureStage
    kind: str
    cause: str

    ok = False


PipelineOutcome = Success | Failure
