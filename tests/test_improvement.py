"""
Article Improvement Tests

AI search readiness checks, prompt building and parsing of the LLM's
improvement proposal.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from rerank.analysis.improvement import (
    AIOCheck,
    ArticleImprovementGenerator,
    ImprovementError,
    check_aio,
    missing_aio_elements,
    parse_improvement,
)
from rerank.analysis.llm import LLMResponse, TokenUsage
from rerank.integrations.scraper import ScrapedArticle


def scraped(**values):
    defaults = {
        "url": "https://example.com/seo-tools",
        "title": "SEOツール比較",
        "headings": [(1, "SEOツール比較"), (2, "無料ツール")],
        "paragraphs": ["SEOツールを選ぶときは目的を決めます。"],
        "full_text": "SEOツールを選ぶときは目的を決めます。",
    }
    defaults.update(values)
    return ScrapedArticle(**defaults)


def llm_returning(content, success=True):
    llm = MagicMock()
    llm.complete_with_retry = AsyncMock(
        return_value=LLMResponse(content, TokenUsage(), "test", "end_turn", success, None if success else "rate limited")
    )
    return llm


ADDITIONS = [
    {
        "section": "料金比較",
        "reason": "競合は全ツールの料金を表で比較している",
        "content": "主要ツールの月額料金",
        "competitor_urls": ["https://competitor.example/pricing"],
    },
]

PROPOSAL = {
    "changes": [
        {
            "type": "insert",
            "position": "after",
            "target": "## 無料ツール",
            "content": "## 料金比較\n主要ツールの月額料金です。",
            "simple_format": {"section": "料金比較", "position": "## 無料ツールの後", "content": "主要ツールの月額料金です。"},
        },
    ],
}


# =============================================================================
# AI SEARCH READINESS
# =============================================================================

class TestAIOCheck:

    def test_bare_article_misses_everything(self):
        check = check_aio(scraped(full_text="ツールの選び方を紹介します。", paragraphs=["ツールの選び方を紹介します。"]))

        assert check == AIOCheck()

    def test_detects_features(self):
        article = scraped(
            headings=[(2, "SEOとは？"), (2, "なぜ必要？"), (2, "どう選ぶ？")],
            lists=[["無料", "有料"]],
            full_text="最終更新 2025年3月1日 著者: 山田 調査では80%が導入済み。比較表を参照。まとめ",
            has_structured_data=True,
        )

        check = check_aio(article)

        assert check.faq is True
        assert check.summary is True
        assert check.update_date is True
        assert check.author_info is True
        assert check.data_or_stats is True
        assert check.structured_data is True
        assert check.question_headings is True
        assert check.bullet_points is True
        assert check.tables is True

    def test_date_pattern_without_keyword(self):
        assert check_aio(scraped(full_text="2024/12/01 のツール紹介")).update_date is True

    def test_short_intro_counts_as_summary(self):
        intro = "この記事ではツールの選び方を紹介します。"
        assert check_aio(scraped(paragraphs=[intro], full_text=intro)).summary is True

    def test_missing_elements_are_localized(self):
        check = AIOCheck(faq=True, summary=True, update_date=True, author_info=True, data_or_stats=True,
                         structured_data=True, question_headings=True, bullet_points=True)

        assert missing_aio_elements(check, "en") == ["Tables"]
        assert missing_aio_elements(check, "ja") == ["表の活用"]
        assert len(missing_aio_elements(AIOCheck(), "fr")) == 9


# =============================================================================
# PARSING
# =============================================================================

class TestParseImprovement:

    def test_plain_json(self):
        improvement = parse_improvement(json.dumps(PROPOSAL, ensure_ascii=False))

        change = improvement.changes[0]
        assert change.position == "after"
        assert change.target == "## 無料ツール"
        assert change.simple_format.section == "料金比較"

    def test_fenced_json_with_camel_case(self):
        item = dict(PROPOSAL["changes"][0])
        item["simpleFormat"] = item.pop("simple_format")
        text = "以下が提案です。\n```json\n" + json.dumps({"changes": [item]}, ensure_ascii=False) + "\n```"

        improvement = parse_improvement(text)

        assert improvement.changes[0].simple_format.content == "主要ツールの月額料金です。"

    def test_changes_without_content_are_skipped(self):
        text = json.dumps({"changes": [{"position": "before", "target": "## A"}, {"position": "sideways", "content": "## B"}]})

        changes = parse_improvement(text).changes

        assert len(changes) == 1
        assert changes[0].position == "after"
        assert changes[0].simple_format is None

    @pytest.mark.parametrize("text", ["not json at all", '{"changes": "none"}', "[1, 2]"])
    def test_unusable_answer_is_empty(self, text):
        assert parse_improvement(text).changes == []


# =============================================================================
# GENERATOR
# =============================================================================

class TestArticleImprovementGenerator:

    def test_prompt_includes_analysis_and_missing_elements(self):
        generator = ArticleImprovementGenerator(llm_client=MagicMock())

        prompt = generator.build_prompt(
            "https://example.com/seo-tools", scraped(), "競合は料金を比較している",
            ADDITIONS, ["FAQ section"], locale="en",
        )

        assert "[Existing Article]" in prompt
        assert "## 無料ツール" in prompt
        assert "1. Section Name: 料金比較" in prompt
        assert "Reference URLs: https://competitor.example/pricing" in prompt
        assert "1. FAQ section" in prompt
        assert "競合は料金を比較している" in prompt

    def test_prompt_without_missing_elements(self):
        prompt = ArticleImprovementGenerator(llm_client=MagicMock()).build_prompt(
            "https://example.com/seo-tools", scraped(), "", ADDITIONS,
        )

        assert "【既存記事】" in prompt
        assert "AIO" not in prompt

    async def test_generate(self):
        llm = llm_returning(json.dumps(PROPOSAL, ensure_ascii=False))

        improvement = await ArticleImprovementGenerator(llm).generate(
            "https://example.com/seo-tools", scraped(), "理由", ADDITIONS, locale="en",
        )

        assert len(improvement.changes) == 1
        assert improvement.to_dict()["changes"][0]["simple_format"]["section"] == "料金比較"
        kwargs = llm.complete_with_retry.call_args.kwargs
        assert kwargs["system"].startswith("You are an SEO article improvement expert")
        assert kwargs["max_tokens"] == 8000

    async def test_llm_failure_raises(self):
        with pytest.raises(ImprovementError, match="rate limited"):
            await ArticleImprovementGenerator(llm_returning("", success=False)).generate(
                "https://example.com/seo-tools", scraped(), "理由", ADDITIONS,
            )
