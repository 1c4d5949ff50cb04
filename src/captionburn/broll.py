"""
B-roll resolution: captions -> keyword -> stock clip URL -> downloaded clip.

B-roll is an enhancement. Every failure in here is logged and turned into
"no clip"; nothing raised by a collaborator reaches the request pipeline.
"""

import contextlib
import logging
import os
import time
from collections.abc import Callable, Iterator, Sequence
from urllib.parse import urlparse

import httpx

from .assets import AssetHandle, safe_suffix
from .errors import BrollFetchError
from .models import AssetKind, CaptionSegment
from .srt_utils import transcript_text

logger = logging.getLogger("captionburn")

KeywordExtractor = Callable[[str], list[str]]
ClipFinder = Callable[[str], str | None]

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


def _remove_partial(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)


class ClipFetcher:
    """Download a URL to a path with bounded retries and an overall deadline."""

    def __init__(
        self,
        attempts: int = 3,
        timeout: float = 30.0,
        backoff: float = 0.5,
        deadline: float = 120.0,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.attempts = max(1, attempts)
        self.timeout = timeout
        self.backoff = backoff
        self.deadline = deadline
        self._client = client
        self._sleep = sleep
        self._clock = clock

    @contextlib.contextmanager
    def _http(self) -> Iterator[httpx.Client]:
        if self._client is not None:
            yield self._client
        else:
            with httpx.Client(follow_redirects=True) as client:
                yield client

    def _download(self, client: httpx.Client, url: str, dest: str, timeout: float) -> int:
        written = 0
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as r:
            r.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in r.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    written += len(chunk)
        return written

    def fetch(self, url: str, dest: str) -> str:
        """Download ``url`` into ``dest``; raise BrollFetchError once retries are spent."""
        give_up_at = self._clock() + self.deadline
        last_error: Exception | None = None
        attempt = 0
        with self._http() as client:
            while attempt < self.attempts:
                remaining = give_up_at - self._clock()
                if remaining <= 0:
                    break
                attempt += 1
                try:
                    size = self._download(client, url, dest, timeout=min(self.timeout, remaining))
                except httpx.HTTPStatusError as e:
                    _remove_partial(dest)
                    if e.response.status_code not in TRANSIENT_STATUS:
                        raise BrollFetchError(f"clip download refused ({e.response.status_code})") from e
                    last_error = e
                except httpx.TransportError as e:
                    _remove_partial(dest)
                    last_error = e
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    # not transient; another attempt would fail the same way
                    _remove_partial(dest)
                    raise BrollFetchError(f"clip download rejected: {type(e).__name__}: {e}") from e
                except OSError as e:
                    _remove_partial(dest)
                    raise BrollFetchError(f"could not store clip: {e}") from e
                else:
                    if size > 0:
                        logger.debug("Downloaded %d bytes from %s", size, url)
                        return dest
                    _remove_partial(dest)
                    raise BrollFetchError("clip download was empty")

                logger.warning("Clip download attempt %d/%d failed: %s", attempt, self.attempts, last_error)
                if attempt < self.attempts:
                    delay = self.backoff * (2 ** (attempt - 1))
                    if self._clock() + delay >= give_up_at:
                        break
                    self._sleep(delay)

        raise BrollFetchError(f"clip download failed after {attempt} attempt(s): {last_error}")


class BrollResolver:
    """resolve(segments, handle) -> local clip path or None."""

    def __init__(
        self,
        extract_keywords: KeywordExtractor,
        find_clip: ClipFinder,
        fetcher: ClipFetcher | None = None,
        char_budget: int = 4000,
    ):
        self.extract_keywords = extract_keywords
        self.find_clip = find_clip
        self.fetcher = fetcher or ClipFetcher()
        self.char_budget = char_budget

    def resolve(
        self,
        segments: Sequence[CaptionSegment],
        handle: AssetHandle,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> str | None:
        if not segments:
            return None

        transcript = transcript_text(segments, limit=self.char_budget)
        try:
            keywords = [k.strip() for k in self.extract_keywords(transcript) or [] if k and k.strip()]
        except Exception as e:
            log.warning("Keyword extraction failed, continuing without B-roll: %s", e)
            return None
        if not keywords:
            log.info("No B-roll keywords extracted; continuing without B-roll")
            return None

        # Only the first keyword is tried.
        keyword = keywords[0]
        try:
            url = self.find_clip(keyword)
        except Exception as e:
            log.warning("Clip lookup for %r failed, continuing without B-roll: %s", keyword, e)
            return None
        if not url:
            log.info("No B-roll clip found for keyword %r", keyword)
            return None
        log.info("Found B-roll clip for %r: %s", keyword, url)

        dest = handle.reserve(AssetKind.BROLL_CLIP, suffix=safe_suffix(urlparse(url).path))
        try:
            self.fetcher.fetch(url, dest)
        except Exception as e:
            log.warning("B-roll download for %r failed, continuing without B-roll: %s", keyword, e)
            return None
        handle.mark_created(AssetKind.BROLL_CLIP)
        log.info("B-roll clip for %r ready", keyword)
        return dest
