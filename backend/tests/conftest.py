import pytest
import sys
from pathlib import Path

# Add backend directory to path so imports work
backend_path = Path(__file__).parent.parent
sys.path.append(str(backend_path))

from memories_client import FragmentHit, TranscriptResult, TranscriptSegment


class FakeTranscriptSource:
    """Returns PROCESSING `pending_polls` times, then the given segments."""

    def __init__(self, segments=None, pending_polls=0, error=None):
        self.segments = segments or []
        self.pending_polls = pending_polls
        self.error = error
        self.calls = 0

    async def get_transcription(self, video_no):
        self.calls += 1
        if self.error:
            raise self.error
        if self.calls <= self.pending_polls:
            return TranscriptResult(status="PROCESSING", segments=[])
        return TranscriptResult(status="FINISH", segments=list(self.segments))


class FakeSearchSource:
    """Serves fixed hits per query text; queries listed in `failing` raise."""

    def __init__(self, hits_by_query=None, failing=()):
        self.hits_by_query = hits_by_query or {}
        self.failing = set(failing)
        self.queries = []

    async def search_fragments(self, video_no, query):
        self.queries.append(query)
        if query in self.failing:
            raise RuntimeError(f"search unavailable for {query}")
        return list(self.hits_by_query.get(query, []))


@pytest.fixture
def video_no():
    return "VI568102998803353600"


@pytest.fixture
def transcript_source():
    return FakeTranscriptSource(segments=[
        TranscriptSegment(start_time=10.0, end_time=12.0, content="this is fucking great"),
        TranscriptSegment(start_time=20.0, end_time=25.0, content="welcome back to the channel"),
    ])


@pytest.fixture
def search_source():
    return FakeSearchSource({
        "violence or fighting or weapons": [
            FragmentHit(fragment_start_time=30.0, fragment_end_time=34.0, similarity=0.9),
            FragmentHit(fragment_start_time=50.0, fragment_end_time=52.0, similarity=0.3),
        ],
        "advertisement or promotional content": [
            FragmentHit(fragment_start_time=5.0, fragment_end_time=8.0, similarity=0.75),
        ],
    })
