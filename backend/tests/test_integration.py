import pytest
from unittest.mock import patch, AsyncMock
from httpx import AsyncClient, ASGITransport
from main import app
from memories_client import (
    FragmentHit, TranscriptSegment, VideoStatus, VideoUpload, MemoriesAPIError,
)
from conftest import FakeSearchSource, FakeTranscriptSource


VIDEO_NO = "VI568102998803353600"


class FakeMemoriesClient:
    """Stands in for MemoriesClient inside `async with create_client(...)`."""

    def __init__(self, transcript=None, search=None):
        self.transcript = transcript or FakeTranscriptSource()
        self.search = search or FakeSearchSource()
        self.upload_video = AsyncMock(return_value=VideoUpload(video_no="VI9", upload_time="1700000000"))
        self.list_videos = AsyncMock(return_value=[
            VideoStatus(video_no=VIDEO_NO, status="PARSE", duration=61.0, upload_time="1700000000"),
        ])

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def get_transcription(self, video_no):
        return await self.transcript.get_transcription(video_no)

    async def search_fragments(self, video_no, query):
        return await self.search.search_fragments(video_no, query)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setenv("MEMORIES_API_KEY", "fake-key")
    monkeypatch.setenv("TRANSCRIPT_POLL_INTERVAL", "0")


@pytest.fixture
def fake_memories(configured):
    fake = FakeMemoriesClient(
        transcript=FakeTranscriptSource(segments=[
            TranscriptSegment(start_time=10.0, end_time=12.0, content="this is fucking great"),
        ]),
        search=FakeSearchSource({
            "violence or fighting or weapons": [
                FragmentHit(fragment_start_time=30.0, fragment_end_time=34.0, similarity=0.9),
                FragmentHit(fragment_start_time=50.0, fragment_end_time=52.0, similarity=0.3),
            ],
        }),
    )
    with patch("main.create_client", return_value=fake):
        yield fake


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_returns_ok(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    @pytest.mark.asyncio
    async def test_health_has_security_headers(self, client):
        response = await client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestCategoriesEndpoint:
    @pytest.mark.asyncio
    async def test_get_categories(self, client):
        response = await client.get("/categories")
        assert response.status_code == 200
        data = response.json()
        assert [c["id"] for c in data][:2] == ["profanity", "sexual"]
        assert len(data) == 7


class TestAnalyzeEndpoint:
    @pytest.mark.asyncio
    async def test_analyze_valid_video(self, client, fake_memories):
        response = await client.post("/analyze", json={"video_no": VIDEO_NO})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["video_id"] == VIDEO_NO
        assert data["transcript_available"] is True
        assert [e["category"]["id"] for e in data["events"]] == ["profanity", "violence"]
        # (50*0.85 + 100*0.9) / 2 = 66.25
        assert data["risk_score"] == 66
        assert data["risk_level"] == "Medium Risk"
        assert data["summary"]["total_events"] == 2

    @pytest.mark.asyncio
    async def test_analyze_missing_api_key(self, client, monkeypatch):
        monkeypatch.delenv("MEMORIES_API_KEY", raising=False)
        with patch("main.create_client") as create:
            response = await client.post("/analyze", json={"video_no": VIDEO_NO})
            assert response.status_code == 500
            assert response.json()["detail"] == "API key not configured"
            create.assert_not_called()

    @pytest.mark.asyncio
    async def test_analyze_missing_video_no(self, client, configured):
        response = await client.post("/analyze", json={})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_analyze_invalid_video_no(self, client, configured):
        response = await client.post("/analyze", json={"video_no": "'; DROP TABLE--"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_analyze_unexpected_failure(self, client, fake_memories):
        with patch("main.BrandSafetyAnalyzer.analyze", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            response = await client.post("/analyze", json={"video_no": VIDEO_NO})
            assert response.status_code == 500
            assert response.json()["detail"] == {"error": "Analysis failed", "details": "boom"}

    @pytest.mark.asyncio
    async def test_analyze_survives_search_failures(self, client, configured):
        fake = FakeMemoriesClient(search=FakeSearchSource(failing=["violence or fighting or weapons"]))
        with patch("main.create_client", return_value=fake):
            response = await client.post("/analyze", json={"video_no": VIDEO_NO})
            assert response.status_code == 200
            assert response.json()["data"]["risk_score"] == 0


class TestUploadEndpoint:
    @pytest.mark.asyncio
    async def test_upload(self, client, fake_memories):
        response = await client.post("/upload", files={"file": ("clip.mp4", b"fake video", "video/mp4")})
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"video_no": "VI9", "upload_time": "1700000000"}}
        fake_memories.upload_video.assert_awaited_once_with("clip.mp4", b"fake video", "video/mp4")

    @pytest.mark.asyncio
    async def test_upload_empty_file(self, client, fake_memories):
        response = await client.post("/upload", files={"file": ("clip.mp4", b"", "video/mp4")})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_upload_service_error(self, client, fake_memories):
        fake_memories.upload_video.side_effect = MemoriesAPIError("Upload failed: quota exceeded")
        response = await client.post("/upload", files={"file": ("clip.mp4", b"x", "video/mp4")})
        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "Upload failed"


class TestStatusEndpoint:
    @pytest.mark.asyncio
    async def test_status(self, client, fake_memories):
        response = await client.get("/status", params={"video_no": VIDEO_NO})
        assert response.status_code == 200
        videos = response.json()["data"]["videos"]
        assert videos[0]["status"] == "PARSE"
        fake_memories.list_videos.assert_awaited_once_with(VIDEO_NO)

    @pytest.mark.asyncio
    async def test_status_invalid_video_no(self, client, fake_memories):
        response = await client.get("/status", params={"video_no": "<script>"})
        assert response.status_code == 400


class TestExportEndpoint:
    def _events(self):
        return [
            {
                "id": "transcript-0",
                "category": {"id": "profanity", "name": "Profanity"},
                "start_time": 10.0,
                "end_time": 12.0,
                "confidence": 0.85,
                "evidence": 'Transcript: "this is fucking great..."',
                "source": "transcript",
            },
            {
                "category": "violence",
                "start_time": 30.0,
                "end_time": 34.0,
                "confidence": 0.9,
                "evidence": 'Visual match: "violence or fighting or weapons"',
                "source": "visual",
            },
        ]

    @pytest.mark.asyncio
    async def test_export_json(self, client):
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "json", "events": self._events(), "risk_score": 66,
        })
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["risk_score"] == 66
        assert data["total_events"] == 2
        assert data["events"][1]["confidence"] == 90

    @pytest.mark.asyncio
    async def test_export_json_scores_when_missing(self, client):
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "json", "events": self._events(),
        })
        assert response.json()["data"]["risk_score"] == 66

    @pytest.mark.asyncio
    async def test_export_csv(self, client):
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "CSV", "events": self._events(), "risk_score": 66,
        })
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"brand-safety-report-{VIDEO_NO}.csv" in response.headers["content-disposition"]
        assert '"Transcript: ""this is fucking great..."""' in response.text

    @pytest.mark.asyncio
    async def test_export_srt(self, client):
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "srt", "events": self._events(), "risk_score": 66,
        })
        assert response.status_code == 200
        assert f"brand-safety-markers-{VIDEO_NO}.srt" in response.headers["content-disposition"]
        assert response.text.startswith("1\n00:00:10,000 --> 00:00:12,000\n[🤬 Profanity]")

    @pytest.mark.asyncio
    async def test_export_unsupported_format(self, client):
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "pdf", "events": [], "risk_score": 0,
        })
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_export_unknown_category(self, client):
        events = self._events()
        events[0]["category"] = "gambling"
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "json", "events": events,
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_export_end_before_start(self, client):
        events = self._events()
        events[0]["end_time"] = 1.0
        response = await client.post("/export", json={
            "video_no": VIDEO_NO, "format": "json", "events": events,
        })
        assert response.status_code == 422
