"""
ffmpeg filter-graph and encode-spec construction.

Values embedded in a filter description are parsed twice by ffmpeg: once by
the graph parser (where ``[ ] , ;`` are special) and once by the filter's
option parser (where ``:`` separates options). ``escape_filter_value`` applies
both levels, innermost first.
"""

import logging
import os

from .errors import MalformedSpec
from .models import EncodeSpec, FontEntry, StyleOptions

logger = logging.getLogger("captionburn")

VIDEO_OUT = "v"
DEFAULT_BROLL_WINDOW = (5.0, 10.0)

# Fixed caption look: white text, black outline, soft shadow, bottom centre.
SUBTITLE_STYLE = {
    "FontSize": "16",
    "PrimaryColour": "&H00FFFFFF",
    "OutlineColour": "&H00000000",
    "Outline": "2",
    "Shadow": "1",
    "Alignment": "2",
}

_OPTION_SPECIALS = "\\':"
_GRAPH_SPECIALS = "\\'[],;"


def _escape(text: str, specials: str) -> str:
    return "".join("\\" + c if c in specials else c for c in text)


def escape_filter_value(value: str) -> str:
    """Escape ``value`` for use as a filter option inside a filter graph."""
    bad = [c for c in value if ord(c) < 32 or ord(c) == 127]
    if bad:
        raise MalformedSpec(f"filter value contains control characters: {bad!r}")
    if not value:
        raise MalformedSpec("empty filter value")
    return _escape(_escape(value, _OPTION_SPECIALS), _GRAPH_SPECIALS)


def escape_filter_path(path: str) -> str:
    """Escape a filesystem path; Windows separators become forward slashes."""
    return escape_filter_value(path.replace("\\", "/"))


def subtitle_filter(subtitle_path: str, font: FontEntry) -> str:
    """A ``subtitles`` filter burning ``subtitle_path`` with the fixed caption style."""
    style = {"FontName": font.family, **SUBTITLE_STYLE}
    force_style = ",".join(f"{k}={v}" for k, v in style.items())
    fonts_dir = os.path.dirname(font.path) or "."
    return (
        f"subtitles=filename={escape_filter_path(subtitle_path)}"
        f":fontsdir={escape_filter_path(fonts_dir)}"
        f":force_style={escape_filter_value(force_style)}"
    )


def overlay_chain(window: tuple[float, float], out_label: str) -> str:
    """Scale input 1 to input 0's frame and overlay it during ``window`` (seconds)."""
    start, end = window
    if start < 0 or end <= start:
        raise MalformedSpec(f"invalid overlay window {start:g}-{end:g}s")
    return (
        f"[1:v]trim=duration={end - start:g},setpts=PTS-STARTPTS+{start:g}/TB[clip];"
        f"[clip][0:v]scale2ref[broll][base];"
        f"[base][broll]overlay=enable='between(t,{start:g},{end:g})':eof_action=pass[{out_label}]"
    )


def build_filter_graph(
    has_subtitles: bool,
    has_broll: bool,
    style: StyleOptions,
    subtitle_path: str | None = None,
    window: tuple[float, float] = DEFAULT_BROLL_WINDOW,
) -> str | None:
    """Compose the filter graph for a request, or None when nothing is filtered.

    With B-roll the graph has two stages, overlay first so captions are
    drawn over the inserted clip.
    """
    if has_broll and not has_subtitles:
        raise MalformedSpec("B-roll requires a subtitle track")
    if not has_subtitles:
        return None
    if not subtitle_path:
        raise MalformedSpec("subtitle burn requested without a subtitle file")

    burn = subtitle_filter(subtitle_path, style.font)
    if not has_broll:
        return f"[0:v]{burn}[{VIDEO_OUT}]"
    return f"{overlay_chain(window, 'composited')};[composited]{burn}[{VIDEO_OUT}]"


def build_encode_spec(
    input_path: str,
    output_path: str,
    style: StyleOptions,
    subtitle_path: str | None = None,
    broll_path: str | None = None,
    window: tuple[float, float] = DEFAULT_BROLL_WINDOW,
) -> EncodeSpec:
    """Resolve inputs, filter graph and codec settings into one EncodeSpec."""
    graph = build_filter_graph(
        has_subtitles=subtitle_path is not None,
        has_broll=broll_path is not None,
        style=style,
        subtitle_path=subtitle_path,
        window=window,
    )
    if graph is None:
        return EncodeSpec(
            inputs=(input_path,),
            output=output_path,
            video_codec="libx264",
            crf=28,
            preset="fast",
            audio_codec="aac",
            audio_bitrate="128k",
        )

    inputs = (input_path, broll_path) if broll_path else (input_path,)
    logger.debug("Filter graph: %s", graph)
    return EncodeSpec(
        inputs=inputs,
        output=output_path,
        filter_graph=graph,
        maps=(f"[{VIDEO_OUT}]", "0:a?"),
        video_codec="libx264",
        crf=28,
        preset="ultrafast",
        audio_codec="copy",
        extra_args=("-vsync", "cfr", "-movflags", "+faststart"),
    )
