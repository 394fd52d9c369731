"""
Article Suggestions

Finds queries the site already gets impressions for but no article covers,
clusters them and proposes new article titles.

Gap = not covered by an existing article, impressions >= 10, position > 20.
"""

import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import urlsplit

from rerank.database.models import Article
from rerank.integrations.gsc import GSCClient, GSCError, alternate_property_format, days_ago
from .llm import ClaudeClient
from .prioritizer import KeywordData, normalize_keyword, prioritize_keywords

logger = logging.getLogger(__name__)

KEYWORD_WINDOW_DAYS = 90
DATA_LAG_DAYS = 2
GSC_ROW_LIMIT = 25000
MIN_GAP_IMPRESSIONS = 10
MIN_GAP_POSITION = 20
MAX_SUGGESTIONS = 10

# Existing titles written as explainers ("〜とは", "〜の方法", ...)
EXPLAINER_MARKERS = ("とは", "の方法", "ガイド", "完全")

BRACKETED = re.compile(r"[（(]([^）)]+)[）)]")
JA_PUNCTUATION = re.compile(r"[・、。！？：；]")
WORD_SPLIT = re.compile(r"\s+|「|」|『|』|【|】")

TITLE_PROMPT = """あなたはSEOコンテンツ戦略の専門家です。

以下の情報を基に、新規記事のタイトルを{count}個提案してください。

## キーワードクラスター情報
{clusters}

## 既存記事のタイトル例
{existing_titles}

## 要件
1. 各キーワードクラスターに対して、自然で魅力的な記事タイトルを1つずつ提案してください
2. タイトルは30文字以内で、検索意図に合った内容にしてください
3. 既存記事のタイトルパターンと一貫性を保ってください

## 出力形式
タイトルのみを{count}行で出力してください（番号は不要）。"""


@dataclass
class KeywordCluster:
    keywords: List[KeywordData]
    representative_keyword: str
    total_impressions: int
    average_position: float


@dataclass
class Suggestion:
    title: str
    keywords: List[str]
    reason: str
    estimated_impressions: int
    priority: int
    outline: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# COVERAGE
# =============================================================================

def _add(covered: Set[str], text: str, min_length: int = 1) -> None:
    normalized = normalize_keyword(text)
    if len(normalized) > min_length:
        covered.add(normalized)


def analyze_coverage(articles: Iterable[Article]) -> Set[str]:
    """Normalised terms already covered by existing articles."""
    covered: Set[str] = set()

    for article in articles:
        if article.title:
            title = article.title
            covered.add(normalize_keyword(title))

            for inner in BRACKETED.findall(title):
                _add(covered, inner)
            _add(covered, re.split(r"[（(]", title)[0])

            stripped = JA_PUNCTUATION.sub(" ", re.sub(r"[（(].*?[）)]", " ", title.lower()))
            words = [w.strip() for w in WORD_SPLIT.split(stripped) if len(w.strip()) > 1]

            for word in words:
                _add(covered, word)
            for first, second in zip(words, words[1:]):
                _add(covered, f"{first} {second}", min_length=2)
            for first, second, third in zip(words, words[1:], words[2:]):
                _add(covered, f"{first} {second} {third}", min_length=3)

        if article.url:
            path = urlsplit(article.url).path
            for part in path.split("/"):
                if len(part) > 1:
                    _add(covered, part.lower())

        for keyword in article.keywords or []:
            if isinstance(keyword, str):
                covered.add(normalize_keyword(keyword))

    return covered


def is_covered(keyword: str, covered: Set[str]) -> bool:
    normalized = normalize_keyword(keyword)

    if normalized in covered:
        return True

    if any(part in covered for part in normalized.split() if len(part) > 2):
        return True

    if len(normalized) > 2:
        for term in covered:
            if len(term) > 2 and (term in normalized or normalized in term):
                return True

    return False


def identify_gaps(keywords: Iterable[KeywordData], covered: Set[str]) -> List[KeywordData]:
    return [
        kw for kw in keywords
        if kw.impressions >= MIN_GAP_IMPRESSIONS
        and kw.position > MIN_GAP_POSITION
        and not is_covered(kw.keyword, covered)
    ]


def cluster_keywords(gaps: Sequence[KeywordData]) -> List[KeywordCluster]:
    """Group by first two words; largest total impressions first."""
    groups: Dict[str, List[KeywordData]] = {}
    for gap in gaps:
        groups.setdefault(" ".join(gap.keyword.split()[:2]), []).append(gap)

    clusters = []
    for members in groups.values():
        top = prioritize_keywords(members, max_keywords=1, min_impressions=MIN_GAP_IMPRESSIONS)
        if not top:
            continue
        clusters.append(KeywordCluster(
            keywords=members,
            representative_keyword=top[0].keyword,
            total_impressions=sum(kw.impressions for kw in members),
            average_position=sum(kw.position for kw in members) / len(members),
        ))

    clusters.sort(key=lambda c: c.total_impressions, reverse=True)
    return clusters


def fallback_title(keyword: str, existing_titles: Sequence[str]) -> str:
    if any(marker in title for title in existing_titles for marker in EXPLAINER_MARKERS):
        return f"{keyword}とは"
    return keyword


def parse_titles(text: str) -> List[str]:
    lines = [line.strip() for line in text.splitlines()]
    return [
        line for line in lines
        if line and not re.match(r"^\d+[.)]", line) and not line.startswith("タイトル")
    ][:MAX_SUGGESTIONS]


def _suggestion(cluster: KeywordCluster, title: str) -> Suggestion:
    return Suggestion(
        title=title,
        keywords=[kw.keyword for kw in cluster.keywords],
        reason=(
            f"インプレッション数: {cluster.total_impressions:,}、"
            f"平均順位: {cluster.average_position:.1f}位"
        ),
        estimated_impressions=cluster.total_impressions,
        priority=cluster.total_impressions // 100,
    )


# =============================================================================
# GENERATOR
# =============================================================================

class ArticleSuggestionGenerator:
    """
    Usage:
        async with GSCClient(token) as gsc:
            generator = ArticleSuggestionGenerator(gsc)
            suggestions = await generator.generate(site.site_url, articles)
    """

    def __init__(self, gsc_client: GSCClient, llm_client: Optional[ClaudeClient] = None):
        self.gsc = gsc_client
        self.llm = llm_client

    async def fetch_all_keywords(self, site_url: str, start_date: str, end_date: str) -> List[KeywordData]:
        """Page through site-wide queries; on 403 retry once with the other property format."""
        keywords: List[KeywordData] = []
        current = site_url
        start_row = 0
        tried_alternate = False

        while True:
            try:
                rows = await self.gsc.get_all_keywords(
                    current, start_date, end_date, row_limit=GSC_ROW_LIMIT, start_row=start_row,
                )
            except GSCError as e:
                alternate = alternate_property_format(current)
                if e.status_code == 403 and not tried_alternate and alternate:
                    logger.info(f"403 for {current}, retrying as {alternate}")
                    tried_alternate = True
                    current = alternate
                    start_row = 0
                    keywords = []
                    continue
                raise

            keywords.extend(KeywordData.from_row(row) for row in rows)
            if len(rows) < GSC_ROW_LIMIT:
                return keywords
            start_row += GSC_ROW_LIMIT

    async def generate(
        self,
        site_url: str,
        existing_articles: Sequence[Article],
        today: Optional[date] = None,
    ) -> List[Suggestion]:
        keywords = await self.fetch_all_keywords(
            site_url,
            days_ago(KEYWORD_WINDOW_DAYS, today),
            days_ago(DATA_LAG_DAYS, today),
        )

        covered = analyze_coverage(existing_articles)
        gaps = identify_gaps(keywords, covered)
        clusters = cluster_keywords(gaps)[:MAX_SUGGESTIONS]

        logger.info(
            f"{site_url}: {len(keywords)} keywords, {len(gaps)} gaps, {len(clusters)} clusters"
        )

        existing_titles = [a.title for a in existing_articles if a.title]
        titles = await self._llm_titles(clusters, existing_titles)
        if not titles:
            titles = [fallback_title(c.representative_keyword, existing_titles) for c in clusters]

        return [_suggestion(cluster, title) for cluster, title in zip(clusters, titles)]

    async def _llm_titles(self, clusters: List[KeywordCluster], existing_titles: List[str]) -> List[str]:
        if not clusters:
            return []
        if self.llm is None:
            if not ClaudeClient.is_available():
                return []
            self.llm = ClaudeClient()

        cluster_lines = "\n".join(
            f"{i + 1}. 代表キーワード: {c.representative_keyword}\n"
            f"   - 関連キーワード: {', '.join(kw.keyword for kw in c.keywords[:5])}\n"
            f"   - インプレッション数: {c.total_impressions:,}\n"
            f"   - 平均順位: {c.average_position:.1f}位"
            for i, c in enumerate(clusters)
        )
        prompt = TITLE_PROMPT.format(
            count=len(clusters),
            clusters=cluster_lines,
            existing_titles="\n".join(existing_titles[:10]) or "（既存記事なし）",
        )

        response = await self.llm.complete_with_retry(prompt=prompt, max_tokens=1000)
        if not response.success:
            logger.warning(f"Title generation failed, using keyword titles: {response.error}")
            return []

        titles = parse_titles(response.content)[:len(clusters)]
        if len(titles) < len(clusters):
            logger.warning(f"Expected {len(clusters)} titles, got {len(titles)}; filling the rest from keywords")
            titles += [
                fallback_title(c.representative_keyword, existing_titles)
                for c in clusters[len(titles):]
            ]
        return titles
