"""
Competitor Analysis Pipeline

Three steps, each callable on its own so the API can run them separately:

1. select_keywords: Search Console data, rank drop check, keyword selection
2. collect_competitors: SERP results per keyword, filtered to real competitors
3. analyze_content: scrape, structural diff, Claude semantic diff

run() chains them; save_analysis_result() persists a finished summary.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from rerank.database.models import Article, AnalysisResult, AnalysisRun, AnalysisTrigger
from rerank.database import repository
from rerank.integrations.gsc import GSCClient, days_ago, to_absolute_page_url
from rerank.integrations.serper import SerperClient, SearchResult
from rerank.integrations.scraper import ArticleScraper, ScrapedArticle
from .competitor_filter import filter_competitor_urls
from .diff import DiffAnalyzer, DiffResult
from .prioritizer import (
    KeywordData,
    PrioritizedKeyword,
    normalize_keyword,
    prioritize_dropped_keywords,
    prioritize_keywords,
)
from .rank_drop import RankDropDetector
from .semantic import KeywordAnalysis, SemanticAnalysis, SemanticDiffAnalyzer

logger = logging.getLogger(__name__)

KEYWORD_WINDOW_DAYS = 32
DATA_LAG_DAYS = 2
MANUAL_KEYWORD_PRIORITY = 100
FIRST_PAGE = 10
MAX_SCRAPED_COMPETITORS = 3
STALE_DATA_DAYS = 3


class AnalysisError(Exception):
    """The analysis cannot continue (no keywords, own article unreachable)."""
    pass


# =============================================================================
# STEP RESULTS
# =============================================================================

@dataclass
class KeywordSelection:
    prioritized_keywords: List[PrioritizedKeyword]
    top_ranking_keywords: List[Dict[str, Any]] = field(default_factory=list)
    keyword_time_series: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class KeywordCompetitors:
    keyword: str
    competitors: List[SearchResult] = field(default_factory=list)
    own_position: Optional[float] = None
    total_results: int = 0
    error: Optional[str] = None


@dataclass
class CompetitorCollection:
    competitor_results: List[KeywordCompetitors]
    unique_competitor_urls: List[str]


@dataclass
class ContentAnalysis:
    diff_analysis: Optional[DiffResult] = None
    semantic_analysis: Optional[SemanticAnalysis] = None


@dataclass
class CompetitorAnalysisSummary:
    prioritized_keywords: List[PrioritizedKeyword]
    competitor_results: List[KeywordCompetitors]
    unique_competitor_urls: List[str]
    top_ranking_keywords: List[Dict[str, Any]] = field(default_factory=list)
    keyword_time_series: List[Dict[str, Any]] = field(default_factory=list)
    diff_analysis: Optional[DiffResult] = None
    semantic_analysis: Optional[SemanticAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_result_url(url: str) -> str:
    """scheme://host/path, query and fragment dropped."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.hostname:
        return url
    return f"{parts.scheme}://{parts.hostname}{parts.path}"


def competitor_limit(own_position: Optional[float], max_competitors: int = FIRST_PAGE) -> int:
    """How many competitors are worth analysing given our own rank."""
    if own_position is None:
        return max_competitors
    if own_position <= 1:
        return 0
    if own_position <= FIRST_PAGE:
        return min(int(own_position - 1), max_competitors)
    return max_competitors


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


# =============================================================================
# PIPELINE
# =============================================================================

class CompetitorAnalysisPipeline:
    """
    Usage:
        async with GSCClient(token) as gsc:
            pipeline = CompetitorAnalysisPipeline(gsc)
            summary = await pipeline.run(site_url, page_url, article_title=title)
    """

    def __init__(
        self,
        gsc_client: GSCClient,
        serper: Optional[SerperClient] = None,
        scraper: Optional[ArticleScraper] = None,
        semantic_analyzer: Optional[SemanticDiffAnalyzer] = None,
        locale: str = "ja",
        custom_excluded_domains: Optional[List[str]] = None,
        keyword_delay: Tuple[float, float] = (1.0, 3.0),
    ):
        self.gsc = gsc_client
        self.serper = serper
        self.scraper = scraper
        self.semantic_analyzer = semantic_analyzer
        self.diff_analyzer = DiffAnalyzer()
        self.locale = locale
        self.custom_excluded_domains = custom_excluded_domains or []
        self.keyword_delay = keyword_delay

    # -------------------------------------------------------------------------
    # Step 1
    # -------------------------------------------------------------------------

    async def select_keywords(
        self,
        site_url: str,
        page_url: str,
        max_keywords: int = 3,
        selected_keywords: Optional[List[Dict[str, Any]]] = None,
        article_title: Optional[str] = None,
        min_impressions: int = 0,
        today: Optional[date] = None,
    ) -> KeywordSelection:
        start_date = days_ago(KEYWORD_WINDOW_DAYS, today)
        end_date = days_ago(DATA_LAG_DAYS, today)

        keyword_rows = await self.gsc.get_keyword_data(site_url, page_url, start_date, end_date)
        keywords = [KeywordData.from_row(row) for row in keyword_rows]

        if selected_keywords:
            prioritized = [
                PrioritizedKeyword(
                    keyword=kw["keyword"],
                    priority=MANUAL_KEYWORD_PRIORITY,
                    impressions=kw.get("impressions", 0),
                    clicks=kw.get("clicks", 0),
                    position=kw.get("position", 0.0),
                    ctr=kw.get("ctr", 0.0),
                )
                for kw in selected_keywords
            ]
        else:
            drop = await RankDropDetector(self.gsc).detect_rank_drop(site_url, page_url, today=today)
            dropped = [kw for kw in drop.dropped_keywords if kw.impressions >= min_impressions]

            candidates = prioritize_dropped_keywords(dropped, max_keywords=max_keywords * 2)
            candidates += prioritize_keywords(
                keywords,
                max_keywords=max_keywords * 2,
                min_impressions=min_impressions,
                article_title=article_title,
            )

            best: Dict[str, PrioritizedKeyword] = {}
            for kw in sorted(candidates, key=lambda p: p.priority, reverse=True):
                key = normalize_keyword(kw.keyword)
                if key not in best or best[key].priority < kw.priority:
                    best[key] = kw
            prioritized = sorted(best.values(), key=lambda p: p.priority, reverse=True)[:max_keywords]

        if not prioritized:
            raise AnalysisError(
                "No search keywords found for this page in Search Console. "
                "Select keywords manually to continue."
            )

        top_ranking = sorted(
            (kw for kw in keywords if 1 <= kw.position <= 5 and kw.impressions >= 10),
            key=lambda kw: kw.position,
        )[:5]

        time_series = await self._keyword_time_series(
            site_url, page_url, start_date, end_date, prioritized
        )

        logger.info(
            f"Selected {len(prioritized)} keywords for {page_url}: "
            f"{', '.join(kw.keyword for kw in prioritized)}"
        )

        return KeywordSelection(
            prioritized_keywords=prioritized,
            top_ranking_keywords=[
                {"keyword": kw.keyword, "position": kw.position,
                 "impressions": kw.impressions, "clicks": kw.clicks}
                for kw in top_ranking
            ],
            keyword_time_series=time_series,
        )

    async def _keyword_time_series(
        self,
        site_url: str,
        page_url: str,
        start_date: str,
        end_date: str,
        prioritized: List[PrioritizedKeyword],
    ) -> List[Dict[str, Any]]:
        """Per-keyword daily data for charts, with staleness metadata."""
        try:
            rows = await self.gsc.get_keyword_time_series(
                site_url, page_url, start_date, end_date,
                keywords=[kw.keyword for kw in prioritized],
            )
        except Exception as e:
            # Charts are optional; the analysis continues without them
            logger.warning(f"Keyword time series unavailable for {page_url}: {e}")
            return []

        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            day, keyword = row["keys"][0], row["keys"][1]
            grouped.setdefault(keyword, []).append({
                "date": day,
                "position": row.get("position"),
                "impressions": row.get("impressions", 0),
                "clicks": row.get("clicks", 0),
            })

        end = _parse_date(end_date)
        series = []
        for keyword, data in grouped.items():
            data.sort(key=lambda point: point["date"])
            last_date = data[-1]["date"]
            days_since = (end - _parse_date(last_date)).days
            series.append({
                "keyword": keyword,
                "data": data,
                "metadata": {
                    "last_data_date": last_date,
                    "days_since_last_data": days_since,
                    "has_recent_drop": days_since >= STALE_DATA_DAYS,
                    "last_position": data[-1]["position"],
                },
            })

        for kw in prioritized:
            if kw.keyword not in grouped:
                series.append({
                    "keyword": kw.keyword,
                    "data": [],
                    "metadata": {
                        "last_data_date": None,
                        "days_since_last_data": None,
                        "has_recent_drop": True,
                        "last_position": kw.position,
                    },
                })

        return series

    # -------------------------------------------------------------------------
    # Step 2
    # -------------------------------------------------------------------------

    async def collect_competitors(
        self,
        site_url: str,
        page_url: str,
        keywords: Sequence[PrioritizedKeyword],
    ) -> CompetitorCollection:
        serper = self.serper or SerperClient()
        own_url = normalize_result_url(to_absolute_page_url(site_url, page_url))

        results: List[KeywordCompetitors] = []
        unique_urls: List[str] = []

        for index, kw in enumerate(keywords):
            gsc_position = kw.position or None
            limit = competitor_limit(gsc_position)
            if limit == 0:
                results.append(KeywordCompetitors(keyword=kw.keyword, own_position=gsc_position))
                continue

            if index > 0:
                await asyncio.sleep(random.uniform(*self.keyword_delay))

            try:
                serp = await serper.search(kw.keyword, num=FIRST_PAGE)
            except Exception as e:
                logger.error(f"SERP lookup failed for '{kw.keyword}': {e}")
                results.append(KeywordCompetitors(
                    keyword=kw.keyword, own_position=gsc_position, error=str(e),
                ))
                continue

            serp_position = next(
                (r.position for r in serp if normalize_result_url(r.url) == own_url), None
            )
            kept_urls = set(filter_competitor_urls(
                [r.url for r in serp],
                own_site_url=site_url,
                custom_excluded=self.custom_excluded_domains,
            )["filtered"])

            if serp_position is not None and serp_position <= FIRST_PAGE:
                competitors = [r for r in serp if r.url in kept_urls and r.position < serp_position]
            else:
                competitors = [
                    r for r in serp
                    if r.url in kept_urls
                    and r.position <= FIRST_PAGE
                    and normalize_result_url(r.url) != own_url
                ]
            competitors = competitors[:limit]

            results.append(KeywordCompetitors(
                keyword=kw.keyword,
                competitors=competitors,
                own_position=serp_position or gsc_position,
                total_results=len(serp),
            ))
            for r in competitors:
                if r.url not in unique_urls:
                    unique_urls.append(r.url)

            logger.info(f"Keyword '{kw.keyword}': {len(competitors)} competitors")

        if self.serper is None:
            await serper.close()

        return CompetitorCollection(competitor_results=results, unique_competitor_urls=unique_urls)

    # -------------------------------------------------------------------------
    # Step 3
    # -------------------------------------------------------------------------

    async def analyze_content(
        self,
        site_url: str,
        page_url: str,
        keywords: Sequence[PrioritizedKeyword],
        competitor_results: Sequence[KeywordCompetitors],
        skip_llm: bool = False,
    ) -> ContentAnalysis:
        unique_urls: List[str] = []
        for result in competitor_results:
            for comp in result.competitors:
                if comp.url not in unique_urls:
                    unique_urls.append(comp.url)

        if not unique_urls:
            return ContentAnalysis()

        scraper = self.scraper or ArticleScraper()
        try:
            return await self._analyze_with(
                scraper, site_url, page_url, keywords, competitor_results, unique_urls, skip_llm
            )
        finally:
            if self.scraper is None:
                await scraper.close()

    async def _analyze_with(
        self,
        scraper: ArticleScraper,
        site_url: str,
        page_url: str,
        keywords: Sequence[PrioritizedKeyword],
        competitor_results: Sequence[KeywordCompetitors],
        unique_urls: List[str],
        skip_llm: bool,
    ) -> ContentAnalysis:
        own_url = to_absolute_page_url(site_url, page_url)
        first_urls = unique_urls[:MAX_SCRAPED_COMPETITORS]

        own, *scraped = await asyncio.gather(
            scraper.scrape_article(own_url),
            *(scraper.scrape_article(url, raise_on_error=False) for url in first_urls),
            return_exceptions=True,
        )
        if isinstance(own, BaseException) or own is None:
            raise AnalysisError(f"Failed to scrape own article {own_url}: {own}")

        articles: Dict[str, ScrapedArticle] = {
            url: article for url, article in zip(first_urls, scraped)
            if isinstance(article, ScrapedArticle)
        }
        if not articles:
            logger.warning(f"No competitor articles could be scraped for {own_url}")
            return ContentAnalysis()

        analysis = ContentAnalysis(diff_analysis=self.diff_analyzer.analyze(own, list(articles.values())))
        logger.info(f"Diff analysis: {len(analysis.diff_analysis.recommendations)} recommendations")

        if skip_llm or not SemanticDiffAnalyzer.is_available():
            return analysis

        semantic = self.semantic_analyzer or SemanticDiffAnalyzer()
        by_keyword = {r.keyword: r for r in competitor_results}
        outcomes = await asyncio.gather(*(
            self._semantic_for_keyword(semantic, scraper, kw.keyword, own, by_keyword.get(kw.keyword), articles)
            for kw in keywords
        ))

        first: Optional[SemanticAnalysis] = None
        keyword_analyses: List[KeywordAnalysis] = []
        for keyword, result, error in outcomes:
            if result is None and error is None:
                continue
            if result is not None:
                first = first or result
                keyword_analyses.extend(result.keyword_specific_analysis or [
                    KeywordAnalysis(keyword=keyword, why_ranking_dropped="")
                ])
            else:
                keyword_analyses.append(KeywordAnalysis(keyword=keyword, why_ranking_dropped=error))

        if first is not None:
            first.keyword_specific_analysis = keyword_analyses
            analysis.semantic_analysis = first
        return analysis

    async def _semantic_for_keyword(
        self,
        semantic: SemanticDiffAnalyzer,
        scraper: ArticleScraper,
        keyword: str,
        own: ScrapedArticle,
        result: Optional[KeywordCompetitors],
        cache: Dict[str, ScrapedArticle],
    ) -> Tuple[str, Optional[SemanticAnalysis], Optional[str]]:
        urls = [c.url for c in (result.competitors if result else [])][:MAX_SCRAPED_COMPETITORS]
        if not urls:
            return keyword, None, None

        try:
            competitors = []
            for url in urls:
                article = cache.get(url) or await scraper.scrape_article(url, raise_on_error=False)
                if article:
                    cache[url] = article
                    competitors.append(article)
            if not competitors:
                return keyword, None, "Competitor articles could not be scraped"

            return keyword, await semantic.analyze(keyword, own, competitors, self.locale), None
        except Exception as e:
            logger.error(f"Semantic analysis failed for '{keyword}': {e}")
            return keyword, None, str(e)

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    async def run(
        self,
        site_url: str,
        page_url: str,
        max_keywords: int = 3,
        selected_keywords: Optional[List[Dict[str, Any]]] = None,
        article_title: Optional[str] = None,
        skip_llm: bool = False,
    ) -> CompetitorAnalysisSummary:
        selection = await self.select_keywords(
            site_url, page_url,
            max_keywords=max_keywords,
            selected_keywords=selected_keywords,
            article_title=article_title,
        )
        collection = await self.collect_competitors(site_url, page_url, selection.prioritized_keywords)
        content = await self.analyze_content(
            site_url, page_url,
            selection.prioritized_keywords,
            collection.competitor_results,
            skip_llm=skip_llm,
        )

        return CompetitorAnalysisSummary(
            prioritized_keywords=selection.prioritized_keywords,
            competitor_results=collection.competitor_results,
            unique_competitor_urls=collection.unique_competitor_urls,
            top_ranking_keywords=selection.top_ranking_keywords,
            keyword_time_series=selection.keyword_time_series,
            diff_analysis=content.diff_analysis,
            semantic_analysis=content.semantic_analysis,
        )


# =============================================================================
# PERSISTENCE
# =============================================================================

def save_analysis_result(
    db: Session,
    article: Article,
    summary: CompetitorAnalysisSummary,
    trigger: AnalysisTrigger = AnalysisTrigger.MANUAL,
    duration_seconds: Optional[float] = None,
    run: Optional[AnalysisRun] = None,
) -> AnalysisResult:
    """Store a finished summary on ``run`` (created when not given); marks the run failed if storing fails."""
    if run is None:
        run = repository.create_analysis_run(db, article.id, trigger)

    try:
        keywords = summary.prioritized_keywords
        average = sum(kw.position for kw in keywords) / len(keywords) if keywords else None

        previous_result = repository.get_latest_analysis_result(db, article.id)
        previous = previous_result.average_position if previous_result else None
        change = average - previous if average is not None and previous is not None else None

        dropped = [
            {"keyword": kw.keyword, "position": kw.position,
             "impressions": kw.impressions, "clicks": kw.clicks}
            for kw in keywords if kw.position >= 10
        ][:5]

        semantic = summary.semantic_analysis
        additions = [asdict(a) for a in semantic.recommended_additions[:10]] if semantic else []
        missing = ", ".join(semantic.missing_content[:5]) if semantic and semantic.missing_content else None

        result = repository.store_analysis_result(
            db, run,
            average_position=average,
            previous_average_position=previous,
            position_change=change,
            analyzed_keywords=[kw.keyword for kw in keywords],
            dropped_keywords=dropped or None,
            top_keywords=summary.top_ranking_keywords[:5] or None,
            recommended_additions=additions or None,
            missing_content_summary=missing,
            competitor_count=len(summary.unique_competitor_urls),
            analysis_duration_seconds=duration_seconds,
            detailed_result=summary.to_dict(),
        )
    except Exception as e:
        db.rollback()
        repository.fail_analysis_run(db, run, str(e))
        raise

    repository.complete_analysis_run(db, run)
    repository.update_article_analysis(db, article, average, previous)
    return result


async def run_and_save(
    db: Session,
    pipeline: CompetitorAnalysisPipeline,
    article: Article,
    site_url: str,
    trigger: AnalysisTrigger = AnalysisTrigger.MANUAL,
    **kwargs,
) -> Tuple[CompetitorAnalysisSummary, AnalysisResult]:
    """Run the pipeline under a RUNNING analysis run so concurrency limits see it."""
    run = repository.create_analysis_run(db, article.id, trigger)
    started = time.monotonic()

    try:
        summary = await pipeline.run(site_url, article.url, article_title=article.title, **kwargs)
    except Exception as e:
        db.rollback()
        repository.fail_analysis_run(db, run, str(e))
        raise

    result = save_analysis_result(db, article, summary, trigger, time.monotonic() - started, run=run)
    return summary, result
