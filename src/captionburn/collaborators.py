"""
External collaborators for B-roll: keyword extraction (OpenAI) and stock clip lookup (Pexels).
"""

import json
import logging

import httpx

logger = logging.getLogger("captionburn")

# Optional OpenAI SDK
try:
    from openai import OpenAI
except ImportError:
    OpenAI = None

PEXELS_VIDEO_SEARCH = "https://api.pexels.com/videos/search"
USER_AGENT = "captionburn/0.1"

KEYWORD_PROMPT = (
    "From the following transcript, extract the top 5-10 most visually descriptive "
    "keywords or short phrases that would be suitable for finding B-roll video clips. "
    "Focus on nouns, objects, actions, and concepts that can be represented visually. "
    "Return ONLY a JSON array of strings."
)


def parse_keyword_reply(content: str) -> list[str]:
    """Pull a JSON array of strings out of a model reply."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        start = content.find("[")
        end = content.rfind("]")
        if start == -1 or end <= start:
            return []
        try:
            data = json.loads(content[start : end + 1])
        except json.JSONDecodeError:
            return []
    if not isinstance(data, list):
        return []
    return [str(k).strip() for k in data if isinstance(k, (str, int, float)) and str(k).strip()]


class OpenAIKeywordExtractor:
    """extract_keywords(transcript) -> [keyword] backed by chat completions."""

    def __init__(self, client: "OpenAI", model: str = "gpt-4o-mini"):
        if client is None:
            raise RuntimeError("OpenAI client is not initialized (missing OPENAI_API_KEY)")
        self.client = client
        self.model = model

    def __call__(self, transcript: str) -> list[str]:
        chat = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": KEYWORD_PROMPT},
                {"role": "user", "content": f"Transcript:\n---\n{transcript}\n---"},
            ],
            temperature=0.2,
        )
        content = chat.choices[0].message.content or ""
        keywords = parse_keyword_reply(content)
        if keywords:
            logger.info("Extracted keywords: %s", ", ".join(keywords))
        else:
            logger.warning("Could not extract keywords from transcript")
        return keywords


def pick_video_file(video: dict) -> str | None:
    """Link of the HD rendition of a Pexels video, else its first file."""
    files = video.get("video_files") or []
    chosen = next((f for f in files if f.get("quality") == "hd"), None) or (files[0] if files else None)
    return chosen.get("link") if chosen else None


class PexelsClipFinder:
    """find_clip(keyword) -> url | None backed by the Pexels video search API."""

    def __init__(self, api_key: str, timeout: float = 30.0, client: httpx.Client | None = None):
        if not api_key:
            raise RuntimeError("PEXELS_API_KEY is not set.")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def __call__(self, keyword: str) -> str | None:
        headers = {"Authorization": self.api_key, "User-Agent": USER_AGENT}
        params = {"query": keyword, "per_page": 1}
        if self._client is not None:
            r = self._client.get(PEXELS_VIDEO_SEARCH, params=params, headers=headers)
        else:
            with httpx.Client(follow_redirects=True, timeout=self.timeout) as client:
                r = client.get(PEXELS_VIDEO_SEARCH, params=params, headers=headers)
        r.raise_for_status()
        for video in r.json().get("videos") or []:
            link = pick_video_file(video)
            if link:
                return link
        return None
