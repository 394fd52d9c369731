"""
Keyword Analysis Tests

Tests for keyword prioritization, rank drop/rise detection and competitor
filtering.
"""

import pytest
from datetime import date

from rerank.analysis.competitor_filter import (
    exclusion_reason_message,
    extract_domain,
    filter_competitor_urls,
    is_domain_excluded,
    is_own_site,
)
from rerank.analysis.prioritizer import (
    KeywordData,
    calculate_priority,
    group_and_select_keywords,
    normalize_keyword,
    prioritize_dropped_keywords,
    prioritize_keywords,
)
from rerank.analysis.rank_drop import RankDropDetector, weighted_average_position
from conftest import FakeGSCClient, gsc_row


TODAY = date(2025, 3, 20)


# =============================================================================
# PRIORITIZATION TESTS
# =============================================================================

class TestCalculatePriority:
    """Tests for the keyword score."""

    def test_maximum_score(self):
        kw = KeywordData("seo", position=3, impressions=5000, clicks=500, ctr=0.1)
        assert calculate_priority(kw) == 100

    def test_position_bands(self):
        base = dict(impressions=0, clicks=0, ctr=0.0)
        assert calculate_priority(KeywordData("a", position=5, **base)) == 15
        assert calculate_priority(KeywordData("a", position=10, **base)) == 10
        assert calculate_priority(KeywordData("a", position=20, **base)) == 5
        assert calculate_priority(KeywordData("a", position=21, **base)) == 0

    def test_partial_scores(self):
        kw = KeywordData("a", position=30, impressions=500, clicks=50, ctr=0.005)
        # 25 + 15 + 0 + 2.5
        assert calculate_priority(kw) == pytest.approx(42.5)


class TestPrioritizeKeywords:
    """Tests for keyword selection."""

    def test_sorted_and_limited(self):
        keywords = [
            KeywordData("low", position=50, impressions=10),
            KeywordData("high", position=2, impressions=2000, clicks=200),
            KeywordData("mid", position=8, impressions=400),
        ]
        result = prioritize_keywords(keywords, max_keywords=2)

        assert [p.keyword for p in result] == ["high", "mid"]

    def test_min_impressions_filter(self):
        keywords = [
            KeywordData("rare", position=1, impressions=5),
            KeywordData("common", position=30, impressions=100),
        ]
        result = prioritize_keywords(keywords, min_impressions=50)

        assert [p.keyword for p in result] == ["common"]

    def test_title_bonus(self):
        keywords = [
            KeywordData("seo ツール", position=30, impressions=100),
            KeywordData("other", position=30, impressions=100),
        ]
        result = prioritize_keywords(keywords, article_title="おすすめ SEO ツール 比較")

        assert result[0].keyword == "seo ツール"
        assert result[0].priority == result[1].priority + 10

    def test_dropped_keywords_count_double(self):
        kw = KeywordData("drop", position=30, impressions=1000)
        result = prioritize_dropped_keywords([kw])

        assert result[0].priority == calculate_priority(kw) * 2

    def test_group_representatives(self):
        keywords = [
            KeywordData("ポケとも 価格", position=5, impressions=900),
            KeywordData("ポケとも 価格 比較", position=9, impressions=100),
            KeywordData("ポケとも 評判", position=12, impressions=300),
        ]
        result = group_and_select_keywords(keywords, max_groups=5)

        assert [p.keyword for p in result] == ["ポケとも 価格", "ポケとも 評判"]

    def test_normalize_keyword(self):
        assert normalize_keyword("  SEO\u3000ツール  比較 ") == "seo ツール 比較"


# =============================================================================
# RANK DROP TESTS
# =============================================================================

class TestWeightedAveragePosition:

    def test_empty(self):
        assert weighted_average_position([]) == 0.0

    def test_impression_weighted(self):
        rows = [
            {"position": 2.0, "impressions": 300},
            {"position": 10.0, "impressions": 100},
        ]
        assert weighted_average_position(rows) == pytest.approx(4.0)

    def test_plain_mean_without_impressions(self):
        rows = [{"position": 2.0, "impressions": 0}, {"position": 6.0, "impressions": 0}]
        assert weighted_average_position(rows) == 4.0


@pytest.mark.asyncio
class TestRankDropDetector:

    async def test_detects_average_drop(self):
        series = [gsc_row(f"2025-03-{d:02d}", 3.0, impressions=100) for d in range(11, 18)]
        series.append(gsc_row("2025-03-18", 8.0, impressions=100))
        client = FakeGSCClient(time_series=series)

        result = await RankDropDetector(client).detect_rank_drop(
            "https://example.com/", "https://example.com/post", comparison_days=7, today=TODAY
        )

        assert result.has_drop is True
        assert result.current_average_position == 8.0
        assert result.base_date == "2025-03-11"
        assert result.current_date == "2025-03-18"
        assert result.drop_amount > 2

    async def test_keyword_past_threshold_counts_as_drop(self):
        series = [gsc_row("2025-03-18", 3.0, impressions=100)]
        keywords = [
            gsc_row("seo", 4.0, impressions=500),
            gsc_row("seo tool", 15.0, impressions=50),
            gsc_row("seo check", 12.0, impressions=300),
        ]
        client = FakeGSCClient(time_series=series, keyword_rows=keywords)

        result = await RankDropDetector(client).detect_rank_drop(
            "https://example.com/", "https://example.com/post", today=TODAY
        )

        assert result.has_drop is True
        assert [kw.keyword for kw in result.dropped_keywords] == ["seo check", "seo tool"]
        assert result.analysis_target_keywords == ["seo check", "seo tool"]

    async def test_stable_rankings(self):
        series = [gsc_row(f"2025-03-{d:02d}", 4.0, impressions=100) for d in range(12, 19)]
        client = FakeGSCClient(time_series=series, keyword_rows=[gsc_row("seo", 4.0)])

        result = await RankDropDetector(client).detect_rank_drop(
            "https://example.com/", "https://example.com/post", today=TODAY
        )

        assert result.has_drop is False
        assert result.drop_amount == 0

    async def test_detects_rise(self):
        series = [gsc_row(f"2025-03-{d:02d}", 9.0, impressions=100) for d in range(12, 18)]
        series.append(gsc_row("2025-03-18", 2.0, impressions=100))
        keywords = [gsc_row("seo", 2.0, impressions=100), gsc_row("seo tool", 8.0, impressions=100)]
        client = FakeGSCClient(time_series=series, keyword_rows=keywords)

        result = await RankDropDetector(client).detect_rank_rise(
            "https://example.com/", "https://example.com/post", today=TODAY
        )

        assert result.has_rise is True
        assert result.rise_amount == pytest.approx(6.0)
        assert [kw.keyword for kw in result.risen_keywords] == ["seo"]


# =============================================================================
# COMPETITOR FILTER TESTS
# =============================================================================

class TestCompetitorFilter:

    def test_extract_domain(self):
        assert extract_domain("https://www.example.com/path") == "example.com"
        assert extract_domain("example.com") == "example.com"

    def test_parent_domain_match(self):
        assert is_domain_excluded("shop.amazon.co.jp", {"amazon.co.jp"}) is True
        assert is_domain_excluded("notamazon.co.jp", {"amazon.co.jp"}) is False

    def test_own_site_variants(self):
        assert is_own_site("https://blog.example.com/a", "https://example.com/") is True
        assert is_own_site("https://example.com/a", "sc-domain:example.com") is True
        assert is_own_site("https://other.com/a", "https://example.com/") is False
        assert is_own_site("https://example.com/a", None) is False

    def test_filter_reasons(self):
        urls = [
            "https://ja.wikipedia.org/wiki/SEO",
            "https://www.amazon.co.jp/dp/123",
            "https://spam.example.net/post",
            "https://example.com/own",
            "https://competitor.jp/article",
        ]
        result = filter_competitor_urls(
            urls, own_site_url="https://example.com/", custom_excluded=["example.net"]
        )

        assert result["filtered"] == ["https://competitor.jp/article"]
        assert [e["reason"] for e in result["excluded"]] == ["global", "default", "custom", "own_site"]

    def test_default_exclusions_can_be_disabled(self):
        result = filter_competitor_urls(["https://www.amazon.co.jp/dp/123"], use_default=False)
        assert result["filtered"] == ["https://www.amazon.co.jp/dp/123"]

    def test_reason_messages(self):
        assert exclusion_reason_message("own_site", "en") == "Excluded (own site)"
        assert exclusion_reason_message("global", "fr") == exclusion_reason_message("global", "ja")
