"""
Semantic Diff Analysis

Asks Claude why competitor articles outrank ours for a keyword, what they
cover that we don't, and what to add. The answer is requested as JSON and
parsed into SemanticAnalysis.
"""

import json
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

from rerank.integrations.scraper import ScrapedArticle
from .llm import ClaudeClient

logger = logging.getLogger(__name__)

OWN_PARAGRAPHS = 5
COMPETITOR_PARAGRAPHS = 3
PARAGRAPH_CHARS = 200


class SemanticAnalysisError(Exception):
    """LLM call failed or returned something unparseable."""
    pass


# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPTS = {
    "ja": "あなたはSEOコンテンツ分析の専門家です。記事の違いを分析し、日本語で推奨事項を提供してください。必ず有効なJSON形式で回答してください。",
    "en": "You are an SEO content analysis expert. Analyze the differences between articles and provide recommendations in English. Always respond in valid JSON format.",
}

ARTICLE_TEMPLATES = {
    "ja": """- URL: {url}
- タイトル: {title}
- 文字数: {word_count}文字
- 見出し構造:
{headings}
- 主要な段落（最初の{paragraph_count}つ）:
{paragraphs}""",
    "en": """- URL: {url}
- Title: {title}
- Word Count: {word_count} characters
- Heading Structure:
{headings}
- Main Paragraphs (first {paragraph_count}):
{paragraphs}""",
}

COMPETITOR_HEADERS = {
    "ja": "競合記事{index}:",
    "en": "Competitor Article {index}:",
}

USER_PROMPTS = {
    "ja": """検索キーワード「{keyword}」で、自社記事と競合記事を比較分析してください。

## 自社記事
{own_article}

## 競合記事（上位{competitor_count}サイト）
{competitor_articles}

## 分析タスク
1. **なぜ競合が上位なのか**: 検索キーワード「{keyword}」で競合記事が上位にランクインしている理由を分析してください。
2. **不足している内容**: 自社記事に不足している内容を具体的に箇条書きで提示してください。
3. **追加すべき項目**: 検索意図に応えるために自社記事に追加すべきセクションや内容を提示してください。各項目には、その内容が記載されている競合記事のURLを含めてください（該当がなければ空配列）。

競合記事に実際に記載されている内容だけを反映し、記載のない形式を推測しないでください。

## 出力形式（JSON）
{{
  "semantic_analysis": {{
    "why_competitors_rank_higher": "競合が上位な理由（2-3文）",
    "missing_content": ["不足している内容1", "不足している内容2"],
    "recommended_additions": [
      {{
        "section": "追加すべきセクション名",
        "reason": "なぜ追加すべきか",
        "content": "追加すべき内容の概要（2-3文）",
        "competitor_urls": ["該当する競合記事のURL"]
      }}
    ]
  }},
  "keyword_specific_analysis": [
    {{
      "keyword": "{keyword}",
      "why_ranking_dropped": "なぜこのキーワードで順位が下がったか（2-3文）",
      "what_to_add": [
        {{"item": "追加すべき項目", "competitor_urls": ["該当する競合記事のURL"]}}
      ]
    }}
  ]
}}""",
    "en": """Compare our article with competitor articles for the search keyword "{keyword}".

## Our Article
{own_article}

## Competitor Articles (Top {competitor_count} sites)
{competitor_articles}

## Analysis Tasks
1. **Why competitors rank higher**: Explain why competitor articles rank higher for "{keyword}".
2. **Missing content**: List specific content missing from our article.
3. **Recommended additions**: Suggest sections or content to add to meet the search intent. For each item include the URLs of competitor articles where it appears (empty array if none).

Only reflect content that actually appears in competitor articles. Do not speculate about formats they don't use.

## Output Format (JSON)
{{
  "semantic_analysis": {{
    "why_competitors_rank_higher": "Reason (2-3 sentences)",
    "missing_content": ["Missing content 1", "Missing content 2"],
    "recommended_additions": [
      {{
        "section": "Section name to add",
        "reason": "Why it should be added",
        "content": "Overview of the content (2-3 sentences)",
        "competitor_urls": ["URL of a competitor article with this content"]
      }}
    ]
  }},
  "keyword_specific_analysis": [
    {{
      "keyword": "{keyword}",
      "why_ranking_dropped": "Why ranking dropped for this keyword (2-3 sentences)",
      "what_to_add": [
        {{"item": "Item to add", "competitor_urls": ["URL of a competitor article with this item"]}}
      ]
    }}
  ]
}}""",
}


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class RecommendedAddition:
    section: str
    reason: str
    content: str
    competitor_urls: List[str] = field(default_factory=list)


@dataclass
class KeywordAnalysis:
    keyword: str
    why_ranking_dropped: str
    what_to_add: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SemanticAnalysis:
    why_competitors_rank_higher: str
    missing_content: List[str] = field(default_factory=list)
    recommended_additions: List[RecommendedAddition] = field(default_factory=list)
    keyword_specific_analysis: List[KeywordAnalysis] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def _urls(data: Dict[str, Any]) -> List[str]:
    return list(_pick(data, "competitor_urls", "competitorUrls", []) or [])


def parse_response(text: str) -> SemanticAnalysis:
    """Parse the LLM's JSON answer. Accepts ```json fences and camelCase keys."""
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
    raw = fenced.group(1) if fenced else text.strip()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SemanticAnalysisError(f"Failed to parse LLM response: {e}")

    semantic = _pick(data, "semantic_analysis", "semanticAnalysis", {}) or {}
    additions = [
        RecommendedAddition(
            section=item.get("section", ""),
            reason=item.get("reason", ""),
            content=item.get("content", ""),
            competitor_urls=_urls(item),
        )
        for item in _pick(semantic, "recommended_additions", "recommendedAdditions", []) or []
        if isinstance(item, dict)
    ]

    keyword_analysis = []
    for item in _pick(data, "keyword_specific_analysis", "keywordSpecificAnalysis", []) or []:
        if not isinstance(item, dict):
            continue
        what_to_add = []
        for entry in _pick(item, "what_to_add", "whatToAdd", []) or []:
            if isinstance(entry, str):
                what_to_add.append({"item": entry, "competitor_urls": []})
            elif isinstance(entry, dict):
                what_to_add.append({"item": entry.get("item", ""), "competitor_urls": _urls(entry)})
        keyword_analysis.append(KeywordAnalysis(
            keyword=item.get("keyword", ""),
            why_ranking_dropped=_pick(item, "why_ranking_dropped", "whyRankingDropped", ""),
            what_to_add=what_to_add,
        ))

    return SemanticAnalysis(
        why_competitors_rank_higher=_pick(semantic, "why_competitors_rank_higher", "whyCompetitorsRankHigher", ""),
        missing_content=list(_pick(semantic, "missing_content", "missingContent", []) or []),
        recommended_additions=additions,
        keyword_specific_analysis=keyword_analysis,
    )


class SemanticDiffAnalyzer:
    """
    Usage:
        analyzer = SemanticDiffAnalyzer()
        analysis = await analyzer.analyze(keyword, own, competitors, locale="ja")
    """

    def __init__(self, llm_client: Optional[ClaudeClient] = None):
        self.llm = llm_client or ClaudeClient()

    @staticmethod
    def is_available() -> bool:
        return ClaudeClient.is_available()

    def build_prompt(
        self,
        keyword: str,
        own: ScrapedArticle,
        competitors: Sequence[ScrapedArticle],
        locale: str = "ja",
    ) -> str:
        lang = "en" if locale == "en" else "ja"

        competitor_blocks = [
            COMPETITOR_HEADERS[lang].format(index=i + 1) + "\n"
            + self._format_article(comp, lang, COMPETITOR_PARAGRAPHS)
            for i, comp in enumerate(competitors)
        ]

        return USER_PROMPTS[lang].format(
            keyword=keyword,
            own_article=self._format_article(own, lang, OWN_PARAGRAPHS),
            competitor_count=len(competitors),
            competitor_articles="\n\n".join(competitor_blocks),
        )

    def _format_article(self, article: ScrapedArticle, lang: str, paragraph_count: int) -> str:
        headings = "\n".join(f"  H{level}: {text}" for level, text in article.headings)
        paragraphs = "\n\n".join(
            f"  {p[:PARAGRAPH_CHARS]}..." for p in article.paragraphs[:paragraph_count]
        )
        return ARTICLE_TEMPLATES[lang].format(
            url=article.url,
            title=article.title,
            word_count=article.word_count,
            headings=headings,
            paragraph_count=paragraph_count,
            paragraphs=paragraphs,
        )

    async def analyze(
        self,
        keyword: str,
        own: ScrapedArticle,
        competitors: Sequence[ScrapedArticle],
        locale: str = "ja",
    ) -> SemanticAnalysis:
        lang = "en" if locale == "en" else "ja"
        prompt = self.build_prompt(keyword, own, competitors, lang)

        response = await self.llm.complete_with_retry(prompt=prompt, system=SYSTEM_PROMPTS[lang])
        if not response.success:
            raise SemanticAnalysisError(response.error or "LLM call failed")

        analysis = parse_response(response.content)
        logger.info(
            f"Semantic analysis for '{keyword}': "
            f"{len(analysis.recommended_additions)} recommended additions"
        )
        return analysis
