"""
Memories.ai Client
Uploads videos and fetches transcripts and visual fragment search results
from the Memories.ai video understanding API
"""

import asyncio
import httpx
import logging
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# --- Service constants ---
MEMORIES_API_BASE = "https://api.memories.ai"
DEFAULT_UNIQUE_ID = "brand-safety-app"
REQUEST_TIMEOUT = 30.0
LIST_PAGE_SIZE = 50
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0

UPLOAD_SUCCESS_CODE = "0000"
SEARCH_SUCCESS_CODE = "SUCCESS"
SEARCH_TYPE = "BY_CLIP"

# Fallbacks for fragments the search service returns without bounds or score
DEFAULT_FRAGMENT_START = 0.0
DEFAULT_FRAGMENT_END = 10.0
DEFAULT_SIMILARITY = 0.7

TRANSCRIPT_FINISHED = "FINISH"
TRANSCRIPT_PROCESSING = "PROCESSING"


class MemoriesAPIError(Exception):
    """Raised when the Memories.ai service rejects or fails a request."""


@dataclass
class VideoUpload:
    video_no: str
    upload_time: str


@dataclass
class VideoStatus:
    video_no: str
    status: str  # PARSE, UNPARSE, FAIL
    duration: float
    upload_time: str


@dataclass
class TranscriptSegment:
    start_time: float
    end_time: float
    content: str


@dataclass
class TranscriptResult:
    status: str  # FINISH, PROCESSING
    segments: list[TranscriptSegment]

    @property
    def is_finished(self) -> bool:
        return self.status == TRANSCRIPT_FINISHED


@dataclass
class FragmentHit:
    fragment_start_time: float
    fragment_end_time: float
    similarity: float
    video_no: Optional[str] = None


class MemoriesClient:
    """
    Async client for the Memories.ai API.
    Serves as both the transcript source and the fragment search source
    of the analysis pipeline.
    """

    def __init__(self, api_key: Optional[str], base_url: str = MEMORIES_API_BASE, unique_id: str = DEFAULT_UNIQUE_ID):
        """Initialize with a Memories.ai API key (required)."""
        if not api_key:
            raise ValueError("Memories.ai API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.unique_id = unique_id
        self.client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

    async def __aenter__(self) -> "MemoriesClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _headers(self, json_body: bool = True) -> dict:
        headers = {"Authorization": self.api_key}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/serve/api/v1/{endpoint}"

    async def _make_request_with_retry(self, method: str, url: str, retries: int = MAX_RETRIES, **kwargs) -> httpx.Response:
        """Make HTTP request with retry logic for transient errors"""
        delay = RETRY_BASE_DELAY
        last_exception = None
        response = None

        for attempt in range(retries):
            try:
                response = await self.client.request(method, url, **kwargs)
                # Success or client error (4xx) - return immediately
                if response.status_code < 500:
                    return response
                logger.warning(f"Memories.ai server error {response.status_code}, retrying (attempt {attempt+1}/{retries})...")
            except (httpx.RequestError, httpx.TimeoutException) as e:
                last_exception = e
                logger.warning(f"Network error {e!r}, retrying (attempt {attempt+1}/{retries})...")

            if attempt < retries - 1:
                await asyncio.sleep(delay)
                delay *= 2.0

        if response is not None:
            return response
        raise last_exception

    @staticmethod
    def _json_or_raise(response: httpx.Response, action: str) -> dict:
        if response.status_code >= 400:
            raise MemoriesAPIError(f"{action} failed: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise MemoriesAPIError(f"{action} failed: invalid JSON response") from e

    async def upload_video(self, filename: str, content: bytes, content_type: str = "video/mp4") -> VideoUpload:
        """Upload a video file. Single attempt, uploads are not retried."""
        response = await self.client.post(
            self._url("upload"),
            headers=self._headers(json_body=False),
            files={"file": (filename, content, content_type)},
            data={"unique_id": self.unique_id},
        )
        result = self._json_or_raise(response, "Upload")

        data = result.get("data")
        if result.get("code") == UPLOAD_SUCCESS_CODE and data:
            return VideoUpload(
                video_no=data.get("videoNo") or data.get("video_no", ""),
                upload_time=str(data.get("uploadTime") or data.get("upload_time", "")),
            )
        raise MemoriesAPIError(f"Upload failed: {result.get('msg') or 'Unknown error'}")

    async def list_videos(self, video_no: Optional[str] = None) -> list[VideoStatus]:
        """List uploaded videos and their parse status, optionally for one video."""
        body = {"page": 1, "size": LIST_PAGE_SIZE, "unique": self.unique_id}
        if video_no:
            body["video_no"] = video_no

        response = await self._make_request_with_retry(
            "POST", self._url("list_videos"), headers=self._headers(), json=body
        )
        result = self._json_or_raise(response, "Status check")

        videos = (result.get("data") or {}).get("videos") or []
        return [
            VideoStatus(
                video_no=v.get("video_no", ""),
                status=v.get("status", ""),
                duration=float(v.get("duration") or 0),
                upload_time=str(v.get("create_time", "")),
            )
            for v in videos
        ]

    async def get_transcription(self, video_no: str) -> TranscriptResult:
        """Fetch the audio transcription. PROCESSING until segments are available."""
        params = {"video_no": video_no, "unique_id": self.unique_id}
        response = await self._make_request_with_retry(
            "GET", self._url("get_audio_transcription"), headers=self._headers(json_body=False), params=params
        )
        result = self._json_or_raise(response, "Transcription fetch")

        transcriptions = (result.get("data") or {}).get("transcriptions")
        if transcriptions is None:
            return TranscriptResult(status=TRANSCRIPT_PROCESSING, segments=[])

        segments = []
        for t in transcriptions:
            start = float(t.get("startTime") or 0)
            end = float(t.get("endTime") or start)
            segments.append(TranscriptSegment(
                start_time=start,
                end_time=max(start, end),
                content=t.get("content") or "",
            ))
        return TranscriptResult(status=TRANSCRIPT_FINISHED, segments=segments)

    async def search_fragments(self, video_no: str, query: str) -> list[FragmentHit]:
        """
        Search video clips matching a natural-language query.
        Single attempt: a failed search is the caller's to absorb.
        """
        body = {
            "search_param": query,
            "unique_id": self.unique_id,
            "search_type": SEARCH_TYPE,
        }
        response = await self.client.post(self._url("search"), headers=self._headers(), json=body)
        result = self._json_or_raise(response, "Fragment search")

        videos = (result.get("data") or {}).get("videos")
        if result.get("code") != SEARCH_SUCCESS_CODE or not videos:
            return []

        hits = []
        for v in videos:
            hit_video = v.get("videoNo") or v.get("video_no")
            # The search runs across every video of this tenant
            if hit_video and hit_video != video_no:
                continue
            start = v.get("fragmentStartTime")
            end = v.get("fragmentEndTime")
            similarity = v.get("similarity")
            start = float(start if start is not None else DEFAULT_FRAGMENT_START)
            end = float(end if end is not None else DEFAULT_FRAGMENT_END)
            similarity = float(similarity if similarity is not None else DEFAULT_SIMILARITY)
            hits.append(FragmentHit(
                fragment_start_time=start,
                fragment_end_time=max(start, end),
                similarity=min(1.0, max(0.0, similarity)),
                video_no=hit_video,
            ))
        return hits

    async def close(self) -> None:
        await self.client.aclose()
