"""
Request pipeline: one uploaded video in, one PipelineOutcome out.

    RECEIVED -> ASSETS_STAGED -> (BROLL_RESOLVED) -> SPEC_BUILT -> ENCODED -> DELIVERED
                        any non-terminal state -> FAILED

Assets are held through ``AssetManager.session`` so they are released on
every path out of ``run``.
"""

import logging
import os
from dataclasses import dataclass, field

from .assets import AssetHandle, AssetManager, new_request_id, safe_suffix
from .broll import BrollResolver
from .encoder import EncodeOrchestrator
from .errors import (
    CaptionburnError,
    MalformedSpec,
    MalformedSubtitle,
    MissingInput,
    StagingFailure,
    is_user_error,
)
from .filters import DEFAULT_BROLL_WINDOW, build_encode_spec
from .fonts import FontRegistry
from .models import (
    AssetKind,
    CaptionSegment,
    EncodeSpec,
    Failure,
    FailureStage,
    PipelineOutcome,
    PipelineState,
    StyleOptions,
    Success,
)
from .srt_utils import format_srt, parse_srt_text

logger = logging.getLogger("captionburn")

# stage an unexpected error is charged to, by the last state reached
STAGE_FOR_STATE = {
    PipelineState.RECEIVED: FailureStage.STAGING,
    PipelineState.ASSETS_STAGED: FailureStage.SPEC_BUILD,
    PipelineState.BROLL_RESOLVED: FailureStage.SPEC_BUILD,
    PipelineState.SPEC_BUILT: FailureStage.ENCODE,
    PipelineState.ENCODED: FailureStage.ENCODE,
}


class RequestLog(logging.LoggerAdapter):
    """Prefixes every record with the request id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


@dataclass(frozen=True)
class PipelineRequest:
    video: bytes = field(repr=False)
    filename: str = "video.mp4"
    srt_content: str | None = field(default=None, repr=False)
    font_name: str | None = None
    add_broll: bool = False
    request_id: str = field(default_factory=new_request_id)


def describe_failure(failure: Failure) -> str:
    """Caller-facing message for a failed request."""
    if failure.kind == MalformedSubtitle.__name__:
        return f"Invalid subtitle track: {failure.cause}"
    if is_user_error(failure.kind):
        return f"Invalid upload: {failure.cause}"
    return f"Video processing failed during {failure.stage.value}: {failure.cause}"


class RequestPipeline:
    """Processes exactly one request; holds no state across requests."""

    def __init__(
        self,
        assets: AssetManager,
        fonts: FontRegistry,
        encoder: EncodeOrchestrator,
        resolver: BrollResolver | None = None,
        window: tuple[float, float] = DEFAULT_BROLL_WINDOW,
    ):
        self.assets = assets
        self.fonts = fonts
        self.encoder = encoder
        self.resolver = resolver
        self.window = window

        self.state = PipelineState.RECEIVED
        self.history: list[PipelineState] = [PipelineState.RECEIVED]
        self.style: StyleOptions | None = None
        self.segments: list[CaptionSegment] = []
        self.spec: EncodeSpec | None = None
        self.outcome: PipelineOutcome | None = None
        self._log: logging.LoggerAdapter = RequestLog(logger, {"request_id": "-"})

    def _advance(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)
        self._log.debug("-> %s", state.value)

    def _redact(self, text: str, handle: AssetHandle | None) -> str:
        if handle is not None:
            for asset in handle.assets():
                text = text.replace(asset.path, f"<{asset.kind.value}>")
        root = self.assets.work_dir
        if root != os.sep:
            text = text.replace(root, "<work>")
        return text

    def _fail(self, stage: FailureStage, kind: str, cause: str, handle: AssetHandle | None) -> Failure:
        failure = Failure(stage=stage, kind=kind, cause=self._redact(cause, handle))
        self._log.error("Failed at %s (%s): %s", stage.value, kind, failure.cause)
        self._advance(PipelineState.FAILED)
        return failure

    def run(self, request: PipelineRequest) -> PipelineOutcome:
        if self.outcome is not None:
            raise RuntimeError("RequestPipeline instances process a single request")
        self._log = RequestLog(logger, {"request_id": request.request_id})
        try:
            with self.assets.session(request.request_id) as handle:
                try:
                    self.outcome = self._process(request, handle)
                except Exception as e:
                    self._log.exception("Unexpected error in state %s", self.state.value)
                    stage = STAGE_FOR_STATE.get(self.state, FailureStage.ENCODE)
                    self.outcome = self._fail(stage, type(e).__name__, str(e), handle)
        except StagingFailure as e:
            # working directories could not be prepared
            self.outcome = self._fail(FailureStage.STAGING, type(e).__name__, str(e), None)
        return self.outcome

    def _stage(self, request: PipelineRequest, handle: AssetHandle) -> tuple[str, str | None]:
        if not request.video:
            raise MissingInput("no video uploaded")
        srt = request.srt_content
        self.segments = parse_srt_text(srt) if srt and srt.strip() else []

        input_path = handle.reserve(AssetKind.INPUT, safe_suffix(request.filename))
        handle.commit(AssetKind.INPUT, data=request.video)
        subtitle_path = None
        if self.segments:
            subtitle_path = handle.commit(AssetKind.SUBTITLE_FILE, data=format_srt(self.segments))
        return input_path, subtitle_path

    def _process(self, request: PipelineRequest, handle: AssetHandle) -> PipelineOutcome:
        log = self._log
        font_key = self.fonts.resolve_key(request.font_name)
        self.style = StyleOptions(
            font_key=font_key, font=self.fonts[font_key], add_broll=request.add_broll
        )
        log.info(
            "Processing %s (%d bytes, subtitles=%s, font=%s, broll=%s)",
            request.filename,
            len(request.video or b""),
            bool(request.srt_content),
            font_key,
            request.add_broll,
        )

        try:
            input_path, subtitle_path = self._stage(request, handle)
        except CaptionburnError as e:
            return self._fail(FailureStage.STAGING, type(e).__name__, str(e), handle)
        output_path = handle.reserve(AssetKind.OUTPUT, ".mp4")
        self._advance(PipelineState.ASSETS_STAGED)

        broll_path = None
        if request.add_broll and self.segments:
            if self.resolver is None:
                log.info("B-roll requested but no B-roll collaborators are configured")
            else:
                broll_path = self.resolver.resolve(self.segments, handle, log)
            self._advance(PipelineState.BROLL_RESOLVED)
        elif request.add_broll:
            log.info("B-roll requested without subtitles; skipping")

        try:
            self.spec = build_encode_spec(
                input_path, output_path, self.style, subtitle_path, broll_path, self.window
            )
        except MalformedSpec as e:
            return self._fail(FailureStage.SPEC_BUILD, type(e).__name__, str(e), handle)
        self._advance(PipelineState.SPEC_BUILT)

        outcome = self.encoder.run(self.spec, log)
        if isinstance(outcome, Failure):
            return self._fail(outcome.stage, outcome.kind, outcome.cause, handle)
        self._advance(PipelineState.ENCODED)

        self._advance(PipelineState.DELIVERED)
        log.info("Delivered %d bytes", len(outcome.data))
        return Success(data=outcome.data)
