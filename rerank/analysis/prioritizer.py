"""
Keyword Prioritization

Scores Search Console keywords so the analysis only spends SERP and LLM
calls on the queries that matter.

Score (max 100, +10 title bonus):
- impressions: up to 50
- clicks: up to 30
- position: 15 (top 5), 10 (top 10), 5 (top 20), 0 otherwise
- CTR: up to 5
"""

import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

TITLE_RELEVANCE_BONUS = 10


@dataclass
class KeywordData:
    keyword: str
    position: float
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "KeywordData":
        """Build from a Search Console row keyed [query]."""
        return cls(
            keyword=row["keys"][0],
            position=row.get("position", 0.0),
            impressions=row.get("impressions", 0),
            clicks=row.get("clicks", 0),
            ctr=row.get("ctr", 0.0),
        )


@dataclass
class PrioritizedKeyword:
    keyword: str
    priority: float
    impressions: int
    clicks: int
    position: float
    ctr: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_keyword(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower()).strip()


def position_score(position: float) -> int:
    if position <= 5:
        return 15
    if position <= 10:
        return 10
    if position <= 20:
        return 5
    return 0


def calculate_priority(keyword: KeywordData) -> float:
    impressions_score = min(keyword.impressions / 1000 * 50, 50)
    clicks_score = min(keyword.clicks / 100 * 30, 30)
    ctr_score = min(keyword.ctr * 100 * 5, 5)
    return impressions_score + clicks_score + position_score(keyword.position) + ctr_score


def _prioritized(keyword: KeywordData, priority: float) -> PrioritizedKeyword:
    return PrioritizedKeyword(
        keyword=keyword.keyword,
        priority=priority,
        impressions=keyword.impressions,
        clicks=keyword.clicks,
        position=keyword.position,
        ctr=keyword.ctr,
    )


def prioritize_keywords(
    keywords: Iterable[KeywordData],
    max_keywords: int = 5,
    min_impressions: int = 0,
    article_title: Optional[str] = None,
) -> List[PrioritizedKeyword]:
    """Top keywords by priority. Keywords found in the article title get a bonus."""
    title = normalize_keyword(article_title) if article_title else ""

    scored = []
    for kw in keywords:
        if kw.impressions < min_impressions:
            continue
        priority = calculate_priority(kw)
        if title and normalize_keyword(kw.keyword) in title:
            priority += TITLE_RELEVANCE_BONUS
        scored.append(_prioritized(kw, priority))

    scored.sort(key=lambda p: p.priority, reverse=True)
    return scored[:max_keywords]


def prioritize_dropped_keywords(
    dropped: Iterable[KeywordData],
    max_keywords: int = 3,
) -> List[PrioritizedKeyword]:
    """Dropped keywords count double."""
    scored = [_prioritized(kw, calculate_priority(kw) * 2) for kw in dropped]
    scored.sort(key=lambda p: p.priority, reverse=True)
    return scored[:max_keywords]


def group_and_select_keywords(
    keywords: Iterable[KeywordData],
    max_groups: int = 5,
) -> List[PrioritizedKeyword]:
    """
    One representative per group of similar queries.

    Groups on the first two words ("ポケとも 価格" and "ポケとも 価格 比較"
    share a group).
    """
    groups: Dict[str, List[KeywordData]] = {}
    for kw in keywords:
        group_key = " ".join(kw.keyword.split()[:2])
        groups.setdefault(group_key, []).append(kw)

    representatives = []
    for members in groups.values():
        top = prioritize_keywords(members, max_keywords=1)
        if top:
            representatives.append(top[0])

    representatives.sort(key=lambda p: p.priority, reverse=True)
    return representatives[:max_groups]
