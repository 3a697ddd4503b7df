"""Brand Safety Inspector - Risk Analyzer
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Core analysis engine that combines transcript scanning, visual fragment
search, event deduplication and risk scoring for a single video.

Video understanding provided by Memories.ai
https://memories.ai
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from memories_client import TranscriptResult, TranscriptSegment
from risk_categories import (
    LEXICAL_CATEGORY_ID,
    RiskEvent,
    calculate_risk_score,
    get_category,
    get_risk_level,
)
from vision_analyzer import (
    FragmentSearchSource,
    VisualRiskExtractor,
    SIMILARITY_THRESHOLD,
    MAX_CONCURRENT_SEARCHES,
)

logger = logging.getLogger(__name__)

# --- Analysis constants ---
# Transcript lexicon (case-insensitive substring match)
PROFANITY_WORDS = ("fuck", "shit", "damn", "hell", "bitch", "ass")
TRANSCRIPT_CONFIDENCE = 0.85
EVIDENCE_QUOTE_LENGTH = 50

# Same-category detections closer than this are treated as one occurrence
DEDUP_WINDOW_SECONDS = 5.0

# Transcript polling
TRANSCRIPT_POLL_INTERVAL = 1.0     # Seconds between polls
TRANSCRIPT_MAX_ATTEMPTS = 30       # ~30 seconds max wait

HIGH_RISK_SEVERITIES = ("Floor", "High")


class TranscriptSource(Protocol):
    async def get_transcription(self, video_no: str) -> TranscriptResult:
        ...


@dataclass(frozen=True)
class AnalysisResult:
    video_id: str
    events: tuple[RiskEvent, ...]
    risk_score: int
    transcript_available: bool

    @property
    def risk_level(self) -> str:
        return get_risk_level(self.risk_score)["level"]

    @property
    def summary(self) -> dict:
        categories = []
        for event in self.events:
            if event.category.name not in categories:
                categories.append(event.category.name)
        return {
            "total_events": len(self.events),
            "high_risk_events": sum(1 for e in self.events if e.severity in HIGH_RISK_SEVERITIES),
            "categories_detected": categories,
        }

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "events": [e.to_dict() for e in self.events],
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "transcript_available": self.transcript_available,
            "summary": self.summary,
        }


def extract_transcript_events(
    segments: list[TranscriptSegment],
    video_id: str,
    lexicon: tuple[str, ...] = PROFANITY_WORDS,
) -> list[RiskEvent]:
    """Flag every transcript segment containing a lexicon word as profanity."""
    category = get_category(LEXICAL_CATEGORY_ID)
    words = [w.lower() for w in lexicon]
    events = []

    for index, segment in enumerate(segments):
        text = segment.content.lower()
        if not any(word in text for word in words):
            continue
        events.append(RiskEvent(
            id=f"transcript-{index}",
            video_id=video_id,
            category=category,
            start_time=segment.start_time,
            end_time=segment.end_time,
            confidence=TRANSCRIPT_CONFIDENCE,
            evidence=f'Transcript: "{segment.content[:EVIDENCE_QUOTE_LENGTH]}..."',
            source="transcript",
        ))

    return events


def reconcile_events(events: list[RiskEvent], window: float = DEDUP_WINDOW_SECONDS) -> list[RiskEvent]:
    """
    Drop near-duplicate detections and order the rest by start time.

    First seen wins: an event is dropped when an already *kept* event of the
    same category starts less than `window` seconds away. Dropped events are
    never compared against.
    """
    kept: list[RiskEvent] = []
    for event in events:
        duplicate = any(
            existing.category.id == event.category.id
            and abs(existing.start_time - event.start_time) < window
            for existing in kept
        )
        if not duplicate:
            kept.append(event)

    # sorted() is stable, ties keep dedup order
    return sorted(kept, key=lambda e: e.start_time)


class BrandSafetyAnalyzer:
    """
    Main analysis engine that:
    1. Polls the video transcript (proceeds without it on timeout)
    2. Scans the transcript for lexical risks
    3. Probes every risk category with visual fragment searches
    4. Deduplicates and orders the detected events
    5. Reduces them to a single risk score
    """

    def __init__(
        self,
        transcript_source: TranscriptSource,
        search_source: FragmentSearchSource,
        poll_interval: float = TRANSCRIPT_POLL_INTERVAL,
        max_poll_attempts: int = TRANSCRIPT_MAX_ATTEMPTS,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        dedup_window: float = DEDUP_WINDOW_SECONDS,
        max_concurrent_searches: int = MAX_CONCURRENT_SEARCHES,
    ):
        self.transcript_source = transcript_source
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.dedup_window = dedup_window
        self.visual_extractor = VisualRiskExtractor(
            search_source,
            similarity_threshold=similarity_threshold,
            max_concurrency=max_concurrent_searches,
        )

    async def analyze(self, video_id: str) -> AnalysisResult:
        """
        Perform full brand safety analysis on a video.

        Args:
            video_id: Memories.ai video number

        Returns:
            AnalysisResult with time-ordered events and the risk score
        """
        if not video_id or not video_id.strip():
            raise ValueError("Video number required")

        logger.info(f"📺 Analyzing video {video_id}")

        # Step 1: Transcript (degraded mode if it never completes)
        transcript = await self._poll_transcript(video_id)
        transcript_available = transcript is not None
        segments = transcript.segments if transcript else []

        # Step 2: Lexical risks from the transcript
        transcript_events = extract_transcript_events(segments, video_id)
        logger.info(f"📝 Transcript: {len(segments)} segments, {len(transcript_events)} flagged")

        # Step 3: Visual risks, every search collected before reconciling
        visual_events = await self.visual_extractor.extract(video_id)

        # Step 4: Deduplicate (transcript first so it wins ties) and order
        events = reconcile_events(transcript_events + visual_events, window=self.dedup_window)

        # Step 5: Score
        risk_score = calculate_risk_score(events)
        logger.info(f"🛡️ {video_id}: {len(events)} events, risk score {risk_score}")

        return AnalysisResult(
            video_id=video_id,
            events=tuple(events),
            risk_score=risk_score,
            transcript_available=transcript_available,
        )

    async def _poll_transcript(self, video_id: str) -> Optional[TranscriptResult]:
        """Poll until the transcript is finished. None on timeout or fetch failure."""
        for attempt in range(self.max_poll_attempts):
            await asyncio.sleep(self.poll_interval)
            try:
                result = await self.transcript_source.get_transcription(video_id)
            except Exception as e:
                logger.warning(f"Transcript fetch failed, proceeding with visual analysis only: {e}")
                return None
            if result.is_finished:
                logger.info(f"Transcript ready after {attempt + 1} poll(s)")
                return result

        logger.warning("Transcription incomplete, proceeding with visual analysis only")
        return None
