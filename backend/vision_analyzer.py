"""
Vision Analyzer - Visual risk detection via fragment search
Probes the video understanding service with each category's natural-language
queries and turns confident clip matches into risk events
"""

import asyncio
import logging
from typing import Optional, Protocol

from memories_client import FragmentHit
from risk_categories import RISK_CATEGORIES, LEXICAL_CATEGORY_ID, RiskCategory, RiskEvent

logger = logging.getLogger(__name__)

# Minimum similarity for a clip to count as a detection (strictly greater)
SIMILARITY_THRESHOLD = 0.6

# Max in-flight search calls per analysis
MAX_CONCURRENT_SEARCHES = 4


class FragmentSearchSource(Protocol):
    async def search_fragments(self, video_no: str, query: str) -> list[FragmentHit]:
        ...


class VisualRiskExtractor:
    """Runs every (category, query) search for a video and collects qualifying hits"""

    def __init__(
        self,
        search_source: FragmentSearchSource,
        categories: tuple[RiskCategory, ...] = RISK_CATEGORIES,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        max_concurrency: int = MAX_CONCURRENT_SEARCHES,
    ):
        self.search_source = search_source
        self.categories = categories
        self.similarity_threshold = similarity_threshold
        self.max_concurrency = max(1, max_concurrency)

    def search_plan(self) -> list[tuple[RiskCategory, int, str]]:
        """Every (category, query index, query) pair to probe, in registry order."""
        return [
            (category, query_index, query)
            for category in self.categories
            # Lexical category is handled by the transcript extractor
            if category.id != LEXICAL_CATEGORY_ID
            for query_index, query in enumerate(category.search_queries)
        ]

    async def extract(self, video_id: str) -> list[RiskEvent]:
        """
        Search all category queries and convert hits into risk events.

        A failed search counts as zero hits for that query only. Results are
        gathered in plan order, so the returned events are deterministic
        regardless of which search finishes first.
        """
        plan = self.search_plan()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(category: RiskCategory, query: str) -> list[FragmentHit]:
            async with semaphore:
                try:
                    return await self.search_source.search_fragments(video_id, query)
                except Exception as e:
                    logger.warning(f"Visual search failed for {category.name} ('{query}'): {e}")
                    return []

        results = await asyncio.gather(*(run(category, query) for category, _, query in plan))

        events = []
        for (category, query_index, query), hits in zip(plan, results):
            for hit_index, hit in enumerate(hits):
                event = self._hit_to_event(video_id, category, query_index, query, hit_index, hit)
                if event:
                    events.append(event)

        logger.info(f"🎬 Visual analysis: {len(plan)} searches, {len(events)} qualifying hits")
        return events

    def _hit_to_event(
        self,
        video_id: str,
        category: RiskCategory,
        query_index: int,
        query: str,
        hit_index: int,
        hit: FragmentHit,
    ) -> Optional[RiskEvent]:
        if hit.similarity <= self.similarity_threshold:
            return None

        return RiskEvent(
            id=f"visual-{category.id}-{query_index}-{hit_index}",
            video_id=video_id,
            category=category,
            start_time=hit.fragment_start_time,
            end_time=hit.fragment_end_time,
            confidence=hit.similarity,
            evidence=f'Visual match: "{query}"',
            source="visual",
        )
