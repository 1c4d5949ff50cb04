"""
Tests for the request pipeline: state transitions, failure mapping and cleanup.
"""

import httpx
import pytest
from conftest import SRT_NO_ARROW, SRT_TWO_BLOCKS, VIDEO_BYTES, FakeEncoder, leftover_files

from src.captionburn.assets import AssetManager
from src.captionburn.broll import BrollResolver, ClipFetcher
from src.captionburn.errors import is_user_error
from src.captionburn.models import AssetKind, Failure, FailureStage, PipelineState, Success
from src.captionburn.pipeline import PipelineRequest, RequestPipeline, describe_failure

CLIP_URL = "https://videos.example.com/sunset.mp4"


def clip_resolver(keywords=("sunset",), handler=None) -> BrollResolver:
    handler = handler or (lambda request: httpx.Response(200, content=b"clip-bytes"))
    fetcher = ClipFetcher(
        attempts=2,
        timeout=5,
        backoff=0,
        deadline=30,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _: None,
    )
    return BrollResolver(lambda text: list(keywords), lambda keyword: CLIP_URL, fetcher)


def test_delivers_burned_video(assets, fonts):
    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder)

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, filename="clip.mp4", srt_content=SRT_TWO_BLOCKS))

    assert isinstance(outcome, Success)
    assert outcome.data == b"burned-video"
    assert outcome.data != VIDEO_BYTES
    assert pipeline.state is PipelineState.DELIVERED
    assert pipeline.history == [
        PipelineState.RECEIVED,
        PipelineState.ASSETS_STAGED,
        PipelineState.SPEC_BUILT,
        PipelineState.ENCODED,
        PipelineState.DELIVERED,
    ]
    assert "subtitles=" in encoder.specs[0].filter_graph
    assert leftover_files(assets) == []


def test_subtitle_file_is_normalized(assets, fonts):
    written = {}

    class CapturingEncoder(FakeEncoder):
        def run(self, spec, log=None):
            subtitle_path = spec.filter_graph.split("filename=")[1].split(":fontsdir")[0]
            written["srt"] = open(subtitle_path, encoding="utf-8").read()
            return super().run(spec, log)

    RequestPipeline(assets, fonts, CapturingEncoder()).run(
        PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS)
    )

    assert "00:00:05,000 --> 00:00:09,000" in written["srt"]


def test_without_subtitles_reencodes_only(assets, fonts):
    encoder = FakeEncoder()
    outcome = RequestPipeline(assets, fonts, encoder).run(PipelineRequest(video=VIDEO_BYTES))

    assert isinstance(outcome, Success)
    assert encoder.specs[0].filter_graph is None


def test_malformed_subtitles_fail_at_staging(assets, fonts):
    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder)

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_NO_ARROW))

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.STAGING
    assert outcome.kind == "MalformedSubtitle"
    assert describe_failure(outcome).startswith("Invalid subtitle track")
    assert pipeline.history == [PipelineState.RECEIVED, PipelineState.FAILED]
    assert encoder.specs == []
    assert leftover_files(assets) == []


def test_empty_video_fails_at_staging(assets, fonts):
    outcome = RequestPipeline(assets, fonts, FakeEncoder()).run(PipelineRequest(video=b""))

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.STAGING
    assert outcome.kind == "MissingInput"
    assert leftover_files(assets) == []


def test_broll_is_overlaid_before_subtitles(assets, fonts):
    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder, resolver=clip_resolver())

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, add_broll=True))

    assert isinstance(outcome, Success)
    assert PipelineState.BROLL_RESOLVED in pipeline.history
    spec = encoder.specs[0]
    assert len(spec.inputs) == 2
    assert spec.inputs[1].endswith("-broll.mp4")
    assert spec.filter_graph.index("overlay") < spec.filter_graph.index("subtitles=")
    assert leftover_files(assets) == []


def test_broll_failure_degrades_to_subtitles_only(assets, fonts):
    def unreachable(request):
        raise httpx.ConnectError("down", request=request)

    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder, resolver=clip_resolver(handler=unreachable))

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, add_broll=True))

    assert isinstance(outcome, Success)
    assert pipeline.state is PipelineState.DELIVERED
    assert len(encoder.specs[0].inputs) == 1
    assert "overlay" not in encoder.specs[0].filter_graph
    assert leftover_files(assets) == []


def test_broll_without_resolver_is_skipped(assets, fonts):
    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder)

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, add_broll=True))

    assert isinstance(outcome, Success)
    assert len(encoder.specs[0].inputs) == 1


def test_broll_without_subtitles_is_skipped(assets, fonts):
    def never(text):
        raise AssertionError("keywords need a transcript")

    encoder = FakeEncoder()
    resolver = BrollResolver(never, lambda keyword: CLIP_URL)
    outcome = RequestPipeline(assets, fonts, encoder, resolver).run(
        PipelineRequest(video=VIDEO_BYTES, add_broll=True)
    )

    assert isinstance(outcome, Success)
    assert encoder.specs[0].filter_graph is None


def test_unknown_font_uses_default(assets, fonts):
    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder)

    outcome = pipeline.run(
        PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, font_name="Nonexistent Font")
    )

    assert isinstance(outcome, Success)
    assert pipeline.style.font_key == "Roboto"
    assert pipeline.style.font_file == "/fonts/Roboto-Regular.ttf"
    assert "FontName=Roboto" in encoder.specs[0].filter_graph


def test_spec_build_failure(assets, fonts):
    pipeline = RequestPipeline(assets, fonts, FakeEncoder(), resolver=clip_resolver(), window=(10, 5))

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, add_broll=True))

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.SPEC_BUILD
    assert outcome.kind == "MalformedSpec"
    assert pipeline.history[-2:] == [PipelineState.BROLL_RESOLVED, PipelineState.FAILED]
    assert leftover_files(assets) == []


def test_encode_failure(assets, fonts):
    pipeline = RequestPipeline(assets, fonts, FakeEncoder(fail_with="encoder exited with code 1: boom"))

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS))

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.ENCODE
    assert "code 1" in outcome.cause
    assert describe_failure(outcome).startswith("Video processing failed during encode")
    assert pipeline.history[-2:] == [PipelineState.SPEC_BUILT, PipelineState.FAILED]
    assert leftover_files(assets) == []


def test_failure_cause_hides_paths(assets, fonts):
    class LeakyEncoder(FakeEncoder):
        def run(self, spec, log=None):
            self.fail_with = f"{spec.inputs[0]}: Invalid data; could not write {spec.output}"
            return super().run(spec, log)

    outcome = RequestPipeline(assets, fonts, LeakyEncoder()).run(PipelineRequest(video=VIDEO_BYTES))

    assert isinstance(outcome, Failure)
    assert "<input>" in outcome.cause
    assert "<output>" in outcome.cause
    assert assets.work_dir not in outcome.cause


def test_unusable_work_dir_fails_at_staging(tmp_path, fonts):
    blocker = tmp_path / "work"
    blocker.write_text("not a directory")

    outcome = RequestPipeline(AssetManager(str(blocker)), fonts, FakeEncoder()).run(
        PipelineRequest(video=VIDEO_BYTES)
    )

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.STAGING
    assert outcome.kind == "StagingFailure"


def test_pipeline_is_single_use(assets, fonts):
    pipeline = RequestPipeline(assets, fonts, FakeEncoder())
    pipeline.run(PipelineRequest(video=VIDEO_BYTES))

    with pytest.raises(RuntimeError):
        pipeline.run(PipelineRequest(video=VIDEO_BYTES))


def test_concurrent_requests_do_not_share_files(assets, fonts):
    first = RequestPipeline(assets, fonts, FakeEncoder())
    second = RequestPipeline(assets, fonts, FakeEncoder())

    first.run(PipelineRequest(video=VIDEO_BYTES, request_id="req-a"))
    second.run(PipelineRequest(video=VIDEO_BYTES, request_id="req-b"))

    assert first.spec.output != second.spec.output
    assert "req-a" in first.spec.output
    assert "req-b" in second.spec.output


@pytest.mark.parametrize(
    "kind, expected",
    [
        ("MalformedSubtitle", True),
        ("MissingInput", True),
        ("InvalidUpload", True),
        ("MalformedSpec", False),
        ("EncodeFailure", False),
        ("StagingFailure", False),
    ],
)
def test_is_user_error(kind, expected):
    assert is_user_error(kind) is expected


def redirect_loop(request):
    return httpx.Response(302, headers={"Location": str(request.url)})


def undecodable_body(request):
    return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"this is not gzip data")


@pytest.mark.parametrize("handler", [redirect_loop, undecodable_body])
def test_unusable_clip_download_still_delivers(assets, fonts, handler):
    encoder = FakeEncoder()
    pipeline = RequestPipeline(assets, fonts, encoder, resolver=clip_resolver(handler=handler))

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, add_broll=True))

    assert isinstance(outcome, Success)
    assert pipeline.state is PipelineState.DELIVERED
    assert len(encoder.specs[0].inputs) == 1
    assert leftover_files(assets) == []


def test_unexpected_encoder_error_becomes_failure(assets, fonts):
    class CrashingEncoder(FakeEncoder):
        def run(self, spec, log=None):
            super().run(spec, log)
            raise RuntimeError(f"lost track of {spec.output}")

    pipeline = RequestPipeline(assets, fonts, CrashingEncoder())

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS))

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.ENCODE
    assert outcome.kind == "RuntimeError"
    assert "<output>" in outcome.cause
    assert pipeline.outcome is outcome
    assert pipeline.history[-2:] == [PipelineState.SPEC_BUILT, PipelineState.FAILED]
    assert leftover_files(assets) == []


def test_unexpected_broll_error_becomes_failure(assets, fonts):
    class CrashingResolver:
        def resolve(self, segments, handle, log=None):
            handle.commit(AssetKind.BROLL_CLIP, data=b"half a clip")
            raise KeyError("broll")

    pipeline = RequestPipeline(assets, fonts, FakeEncoder(), resolver=CrashingResolver())

    outcome = pipeline.run(PipelineRequest(video=VIDEO_BYTES, srt_content=SRT_TWO_BLOCKS, add_broll=True))

    assert isinstance(outcome, Failure)
    assert outcome.stage is FailureStage.SPEC_BUILD
    assert pipeline.history[-2:] == [PipelineState.ASSETS_STAGED, PipelineState.FAILED]
    assert leftover_files(assets) == []
