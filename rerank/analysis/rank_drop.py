"""
Rank Drop Detection

Compares the impression-weighted position of the latest day against the
comparison window, and flags keywords that fell past a threshold. Search
Console data lags about two days, so the window ends at today-2.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from rerank.integrations.gsc import GSCClient, days_ago
from .prioritizer import KeywordData

logger = logging.getLogger(__name__)

DATA_LAG_DAYS = 2
ANALYSIS_TARGET_COUNT = 3
RISE_KEYWORD_MAX_POSITION = 3


@dataclass
class RankDropResult:
    has_drop: bool
    drop_amount: float
    base_average_position: float
    current_average_position: float
    base_date: str
    current_date: str
    dropped_keywords: List[KeywordData] = field(default_factory=list)
    analysis_target_keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RankRiseResult:
    has_rise: bool
    rise_amount: float
    base_average_position: float
    current_average_position: float
    base_date: str
    current_date: str
    risen_keywords: List[KeywordData] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def weighted_average_position(rows: Sequence[Dict[str, Any]]) -> float:
    """Impression-weighted mean position; plain mean when no impressions; 0 for no rows."""
    if not rows:
        return 0.0

    total_impressions = sum(row.get("impressions", 0) for row in rows)
    if total_impressions > 0:
        weighted = sum(row["position"] * row.get("impressions", 0) for row in rows)
        return weighted / total_impressions
    return sum(row["position"] for row in rows) / len(rows)


def _by_impressions(rows: Sequence[Dict[str, Any]]) -> List[KeywordData]:
    keywords = [KeywordData.from_row(row) for row in rows]
    keywords.sort(key=lambda kw: kw.impressions, reverse=True)
    return keywords


class RankDropDetector:
    """
    Usage:
        detector = RankDropDetector(gsc_client)
        result = await detector.detect_rank_drop(site_url, page_url)
        if result.has_drop:
            ...
    """

    def __init__(self, client: GSCClient):
        self.client = client

    async def _window(self, site_url: str, page_url: str, comparison_days: int, today: Optional[date]):
        start_date = days_ago(comparison_days + DATA_LAG_DAYS, today)
        end_date = days_ago(DATA_LAG_DAYS, today)

        time_series = await self.client.get_page_time_series(site_url, page_url, start_date, end_date)
        keyword_rows = await self.client.get_keyword_data(site_url, page_url, start_date, end_date)

        base = weighted_average_position(time_series[-comparison_days:])
        current = weighted_average_position(time_series[-1:])
        return start_date, end_date, base, current, keyword_rows

    async def detect_rank_drop(
        self,
        site_url: str,
        page_url: str,
        comparison_days: int = 7,
        drop_threshold: float = 2,
        keyword_drop_threshold: float = 10,
        today: Optional[date] = None,
    ) -> RankDropResult:
        start_date, end_date, base, current, keyword_rows = await self._window(
            site_url, page_url, comparison_days, today
        )
        drop_amount = current - base

        dropped = _by_impressions(
            [row for row in keyword_rows if row.get("position", 0) >= keyword_drop_threshold]
        )

        result = RankDropResult(
            has_drop=drop_amount >= drop_threshold or bool(dropped),
            drop_amount=drop_amount,
            base_average_position=base,
            current_average_position=current,
            base_date=start_date,
            current_date=end_date,
            dropped_keywords=dropped,
            analysis_target_keywords=[kw.keyword for kw in dropped[:ANALYSIS_TARGET_COUNT]],
        )
        logger.debug(
            f"Rank drop check {page_url}: {base:.1f} -> {current:.1f}, "
            f"{len(dropped)} dropped keywords"
        )
        return result

    async def detect_rank_rise(
        self,
        site_url: str,
        page_url: str,
        comparison_days: int = 7,
        rise_threshold: float = 2,
        today: Optional[date] = None,
    ) -> RankRiseResult:
        start_date, end_date, base, current, keyword_rows = await self._window(
            site_url, page_url, comparison_days, today
        )
        rise_amount = base - current

        risen = _by_impressions(
            [row for row in keyword_rows if 0 < row.get("position", 0) <= RISE_KEYWORD_MAX_POSITION]
        )

        return RankRiseResult(
            has_rise=rise_amount >= rise_threshold,
            rise_amount=rise_amount,
            base_average_position=base,
            current_average_position=current,
            base_date=start_date,
            current_date=end_date,
            risen_keywords=risen,
        )
