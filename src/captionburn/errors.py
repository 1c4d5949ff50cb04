"""
Error taxonomy for the caption burn-in pipeline.
"""


class CaptionburnError(Exception):
    """Base class for every error raised by this package."""


class MissingInput(CaptionburnError):
    """The request did not carry a usable video upload."""


class InvalidUpload(MissingInput):
    """The uploaded file was rejected (type or size)."""


class MalformedSubtitle(CaptionburnError):
    """The subtitle payload violates the SRT grammar."""


class MalformedSpec(CaptionburnError):
    """The filter graph could not be built from the given inputs."""


class StagingFailure(CaptionburnError):
    """An ephemeral asset could not be written or read."""


class EncodeFailure(CaptionburnError):
    """ffmpeg exited non-zero or could not be run."""


class BrollFetchError(CaptionburnError):
    """A B-roll download failed after exhausting its retries."""


USER_ERRORS = (MissingInput, InvalidUpload, MalformedSubtitle)


def is_user_error(kind: str) -> bool:
    """True when an error kind means the caller's input was invalid."""
    return kind in {cls.__name__ for cls in USER_ERRORS}
