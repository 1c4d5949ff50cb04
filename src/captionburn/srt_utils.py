"""
SRT parsing, validation, writing, and timecode normalization utilities.
"""

import logging
import re
from collections.abc import Iterable, Mapping

from .errors import MalformedSubtitle
from .models import CaptionSegment, Timecode

logger = logging.getLogger("captionburn")

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})(?:[,.](\d{1,3}))?$")
_ARROW_RE = re.compile(r"^(\S+)\s*-->\s*(\S+)")
_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")


def parse_timecode(text: str) -> Timecode:
    """Parse ``HH:MM:SS`` or ``HH:MM:SS,mmm`` into a Timecode."""
    m = _TIME_RE.match(text.strip())
    if not m:
        raise ValueError(f"invalid timecode {text!r}")
    h, mins, secs, frac = m.groups()
    if int(mins) >= 60 or int(secs) >= 60:
        raise ValueError(f"invalid timecode {text!r}")
    # ",5" means 500 ms, as in a decimal fraction
    ms = int((frac or "0").ljust(3, "0"))
    return Timecode(ms=int(h) * 3_600_000 + int(mins) * 60_000 + int(secs) * 1000 + ms)


def normalize_timecode(text: str) -> str:
    """Return the canonical ``HH:MM:SS,mmm`` form of a timecode string."""
    return str(parse_timecode(text))


def parse_srt_text(raw: str) -> list[CaptionSegment]:
    """Parse and validate SRT text into ordered caption segments.

    Blocks are separated by blank lines. Each block is an index line, a
    ``TIME --> TIME`` line and one or more text lines, which are joined with a
    single space. Trailing whitespace and empty blocks are ignored.
    """
    text = raw.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff").strip()
    if not text:
        return []

    out: list[CaptionSegment] = []
    for pos, block in enumerate(_BLOCK_SPLIT_RE.split(text), 1):
        lines = [ln.strip() for ln in block.splitlines() if ln.strip()]
        if not lines:
            continue
        label = lines[0] if lines[0].isdigit() else f"#{pos}"
        if lines[0].isdigit():
            lines = lines[1:]

        m = _ARROW_RE.match(lines[0]) if lines else None
        if not m:
            raise MalformedSubtitle(f"block {label}: missing 'start --> end' timecode line")
        try:
            start = parse_timecode(m.group(1))
            end = parse_timecode(m.group(2))
        except ValueError as e:
            raise MalformedSubtitle(f"block {label}: {e}") from None
        if start >= end:
            raise MalformedSubtitle(f"block {label}: start {start} is not before end {end}")

        body = " ".join(lines[1:]).strip()
        if not body:
            raise MalformedSubtitle(f"block {label}: no caption text")
        if out and start < out[-1].start:
            raise MalformedSubtitle(
                f"block {label}: starts at {start}, before the previous block ({out[-1].start})"
            )
        out.append(CaptionSegment(index=len(out) + 1, start=start, end=end, text=body))

    logger.debug("Parsed %d caption segments", len(out))
    return out


def format_srt(segments: Iterable[CaptionSegment]) -> str:
    """Serialize segments back to canonical SRT text."""
    return "".join(
        f"{i}\n{s.start} --> {s.end}\n{s.text}\n\n" for i, s in enumerate(segments, 1)
    )


def write_srt(segments: list[CaptionSegment], path: str) -> None:
    """Write segments to SRT file."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_srt(segments))


def parse_srt(path: str) -> list[CaptionSegment]:
    """Parse SRT file into segments."""
    with open(path, encoding="utf-8") as f:
        return parse_srt_text(f.read())


def segments_to_srt(rows: Iterable[Mapping[str, str]]) -> str:
    """Build SRT text from transcription rows with ``start_time``/``end_time``/``text``.

    Transcribers often emit ``HH:MM:SS``; times are normalized to the
    canonical SRT form.
    """
    parts = []
    for i, row in enumerate(rows, 1):
        start = normalize_timecode(row["start_time"])
        end = normalize_timecode(row["end_time"])
        parts.append(f"{i}\n{start} --> {end}\n{row['text'].strip()}\n\n")
    return "".join(parts)


def transcript_text(segments: Iterable[CaptionSegment], limit: int | None = None) -> str:
    """Join caption texts into one transcript, optionally truncated to ``limit`` chars."""
    text = " ".join(s.text for s in segments)
    return text[:limit] if limit is not None else text
