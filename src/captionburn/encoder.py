"""
ffmpeg invocation: EncodeSpec -> argv -> subprocess -> PipelineOutcome.
"""

import logging
import shlex
import subprocess
import threading
from collections import deque
from pathlib import Path

from .errors import EncodeFailure
from .models import EncodeSpec, Failure, FailureStage, PipelineOutcome, Success

logger = logging.getLogger("captionburn")

DIAGNOSTIC_LINES = 20


def build_command(spec: EncodeSpec, binary: str = "ffmpeg") -> list[str]:
    """Translate an EncodeSpec into an ffmpeg argument list."""
    cmd = [binary, "-y", "-hide_banner", "-nostdin"]
    for src in spec.inputs:
        cmd += ["-i", src]
    if spec.filter_graph:
        cmd += ["-filter_complex", spec.filter_graph]
    for m in spec.maps:
        cmd += ["-map", m]
    cmd += ["-c:v", spec.video_codec, "-crf", str(spec.crf), "-preset", spec.preset]
    cmd += ["-c:a", spec.audio_codec]
    if spec.audio_bitrate:
        cmd += ["-b:a", spec.audio_bitrate]
    cmd += list(spec.extra_args)
    cmd.append(spec.output)
    return cmd


def _failure(cause: str) -> Failure:
    return Failure(stage=FailureStage.ENCODE, kind=EncodeFailure.__name__, cause=cause)


class EncodeOrchestrator:
    """Runs ffmpeg once per spec. Never retries.

    ``timeout`` (seconds) kills a run that takes too long; ``max_concurrent``
    bounds how many encodes this orchestrator lets run at once (0 = unbounded).
    """

    def __init__(
        self, binary: str = "ffmpeg", timeout: float | None = None, max_concurrent: int = 0
    ):
        self.binary = binary
        self.timeout = timeout
        self._slots = threading.BoundedSemaphore(max_concurrent) if max_concurrent > 0 else None

    def run(self, spec: EncodeSpec, log: logging.Logger | logging.LoggerAdapter = logger) -> PipelineOutcome:
        if self._slots is None:
            return self._run(spec, log)
        with self._slots:
            return self._run(spec, log)

    def _run(self, spec: EncodeSpec, log) -> PipelineOutcome:
        cmd = build_command(spec, self.binary)
        log.info("Spawned ffmpeg with command: %s", shlex.join(cmd))
        tail: deque[str] = deque(maxlen=DIAGNOSTIC_LINES)

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            log.error("Could not start ffmpeg: %s", e)
            return _failure(f"could not start encoder: {e.strerror or e}")

        timed_out = threading.Event()

        def _kill() -> None:
            timed_out.set()
            proc.kill()

        timer = threading.Timer(self.timeout, _kill) if self.timeout else None
        if timer:
            timer.daemon = True
            timer.start()
        try:
            # text mode turns ffmpeg's \r progress updates into separate lines
            for line in proc.stderr:
                line = line.rstrip()
                if line:
                    tail.append(line)
                    log.debug("[ffmpeg] %s", line)
            returncode = proc.wait()
        finally:
            if timer:
                timer.cancel()
            proc.stderr.close()

        # a kill that lands after a clean exit does not void the encode
        if timed_out.is_set() and returncode != 0:
            log.error("ffmpeg killed after %ss", self.timeout)
            return _failure(f"encoder timed out after {self.timeout:g}s")
        if returncode != 0:
            log.error("ffmpeg failed with code %d", returncode)
            detail = "\n".join(tail) or "no diagnostics"
            return _failure(f"encoder exited with code {returncode}: {detail}")

        try:
            data = Path(spec.output).read_bytes()
        except OSError as e:
            log.error("Could not read encoder output: %s", e)
            return _failure(f"encoder output unreadable: {e.strerror or e}")
        if not data:
            return _failure("encoder produced an empty file")
        log.info("Encoded %d bytes", len(data))
        return Success(data=data)
