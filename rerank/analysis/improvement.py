"""
Article Improvement

Turns the recommended additions of a finished analysis into copy-paste
ready Markdown sections, each anchored before or after an existing heading
of the own article.

The own article is also checked for the page features AI search answers
tend to cite (FAQ, summary, dates, authorship, data, JSON-LD, question
headings, lists, tables); missing ones are passed to Claude as extra
requirements.
"""

import json
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence

from rerank.integrations.scraper import ScrapedArticle
from .llm import ClaudeClient

logger = logging.getLogger(__name__)

ARTICLE_TEXT_CHARS = 3000
MAX_TOKENS = 8000


class ImprovementError(Exception):
    """LLM call for the improvement failed."""
    pass


# =============================================================================
# AI SEARCH READINESS
# =============================================================================

FAQ_KEYWORDS = ("よくある質問", "faq", "frequently asked", "q&a", "q and a", "質問", "疑問")
SUMMARY_KEYWORDS = ("主なポイント", "まとめ", "要約", "summary", "key points", "要点", "結論", "conclusion", "サマリー")
DATE_KEYWORDS = ("更新日", "更新", "updated", "最終更新", "last updated", "公開日", "published", "投稿日", "作成日", "created")
AUTHOR_KEYWORDS = ("著者", "author", "執筆者", "writer", "作成者", "creator", "監修", "supervisor", "編集", "editor")
DATA_KEYWORDS = (
    "調査", "survey", "データ", "data", "統計", "statistics", "アンケート", "分析",
    "analysis", "結果", "results", "人に", "件", "%", "パーセント", "割合",
)
TABLE_KEYWORDS = ("表", "table", "比較表", "一覧", "リスト")
QUESTION_MARKERS = ("?", "？", "とは", "どう", "なぜ", "何", "どの", "いつ", "どこ", "誰")

DATE_PATTERNS = (
    re.compile(r"\d{4}[-/年]\d{1,2}[-/月]\d{1,2}日?"),
    re.compile(r"\d{4}\.\d{1,2}\.\d{1,2}"),
)
DATA_PATTERNS = (
    re.compile(r"\d+人"),
    re.compile(r"\d+[件個]"),
    re.compile(r"\d+[%％]"),
    re.compile(r"\d+\.\d+[KkMm]"),
    re.compile(r"\d+割"),
)

# Label per missing element, in the order they are reported
AIO_ELEMENTS = {
    "faq": {"ja": "FAQセクション（よくある質問）", "en": "FAQ section"},
    "summary": {"ja": "要約セクション（主なポイント、まとめ）", "en": "Summary section (key points)"},
    "update_date": {"ja": "更新日の表示", "en": "Last updated date"},
    "author_info": {"ja": "著者情報の明記", "en": "Author information"},
    "data_or_stats": {"ja": "データ・統計の提示", "en": "Data and statistics"},
    "structured_data": {"ja": "構造化データ（JSON-LD）", "en": "Structured data (JSON-LD)"},
    "question_headings": {"ja": "質問形式の見出し（例：〇〇とは？）", "en": "Question-style headings"},
    "bullet_points": {"ja": "箇条書きの活用", "en": "Bullet points"},
    "tables": {"ja": "表の活用", "en": "Tables"},
}


@dataclass
class AIOCheck:
    faq: bool = False
    summary: bool = False
    update_date: bool = False
    author_info: bool = False
    data_or_stats: bool = False
    structured_data: bool = False
    question_headings: bool = False
    bullet_points: bool = False
    tables: bool = False


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def check_aio(article: ScrapedArticle) -> AIOCheck:
    text = article.full_text.lower()
    headings = [heading for _, heading in article.headings]
    question_headings = [h for h in headings if _contains_any(h, QUESTION_MARKERS[:6])]

    first_paragraph = article.paragraphs[0] if article.paragraphs else ""
    summary_intro = len(first_paragraph) < 300 and _contains_any(
        first_paragraph, ("本記事", "この記事", "まとめ", "要約")
    )

    return AIOCheck(
        faq=_contains_any(text, FAQ_KEYWORDS) or len(question_headings) >= 3,
        summary=_contains_any(text, SUMMARY_KEYWORDS) or summary_intro,
        update_date=_contains_any(text, DATE_KEYWORDS) or any(p.search(text) for p in DATE_PATTERNS),
        author_info=_contains_any(text, AUTHOR_KEYWORDS),
        data_or_stats=(
            _contains_any(text, DATA_KEYWORDS)
            or any(p.search(text) for p in DATA_PATTERNS)
            or bool(article.lists)
        ),
        structured_data=article.has_structured_data,
        question_headings=any(_contains_any(h, QUESTION_MARKERS) for h in headings),
        bullet_points=bool(article.lists),
        tables=_contains_any(text, TABLE_KEYWORDS),
    )


def missing_aio_elements(check: AIOCheck, locale: str = "ja") -> List[str]:
    lang = "en" if locale == "en" else "ja"
    present = asdict(check)
    return [labels[lang] for key, labels in AIO_ELEMENTS.items() if not present[key]]


# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPTS = {
    "ja": "あなたはSEO記事の改善専門家です。必ず有効なJSON形式のみで回答してください。",
    "en": "You are an SEO article improvement expert. Always respond with valid JSON only.",
}

ADDITION_TEMPLATES = {
    "ja": "{index}. セクション名: {section}\n   理由: {reason}\n   内容概要: {content}",
    "en": "{index}. Section Name: {section}\n   Reason: {reason}\n   Content Summary: {content}",
}

REFERENCE_LABELS = {"ja": "   参考URL: ", "en": "   Reference URLs: "}

AIO_SECTIONS = {
    "ja": "【AI検索最適化（AIO対応）で不足している要素】\n"
          "以下はLLM（AI Overview）に引用されやすいページの特徴ですが、この記事には不足しています。"
          "特にFAQ、要約、データ・統計を優先して改善案に含めてください：\n{elements}\n\n",
    "en": "[Missing AI Search Optimization (AIO) Elements]\n"
          "Pages cited by AI Overviews usually have these, but this article does not. "
          "Prioritize FAQ, summary and data/statistics sections in the proposal:\n{elements}\n\n",
}

USER_PROMPTS = {
    "ja": """既存記事の内容と分析結果に基づいて、そのままコピペできる改善記事の文章（変更部分のみ）を生成してください。

【既存記事】
- URL: {url}
- タイトル: {title}
- 見出し構造:
{headings}
- 記事の内容（最初の{text_chars}文字）:
{text}

【なぜ競合が上位なのか（分析結果）】
{why}

【追加すべき項目（分析結果）】
{additions}

{aio}【要件】
1. 既存の見出しの前後、適切な位置に新しいセクションを追加する形で提案してください
2. 各項目の「理由」と「内容概要」を元に、既存記事の文体と語調に合わせた具体的な文章を書いてください
3. 見出し（## または ###）を含む完全なMarkdownで、そのまま挿入できる独立したセクションにしてください
4. 改行は\\nで表現してください

【出力形式】
{{
  "changes": [
    {{
      "type": "insert",
      "position": "after" | "before",
      "target": "既存の見出し（例: '## emoとは？'）",
      "content": "追加する完全なMarkdown（見出しを含む）",
      "simple_format": {{
        "section": "追加するセクションの見出し",
        "position": "既存の見出しの後/前",
        "content": "Markdown形式の本文"
      }}
    }}
  ]
}}

JSONのみを出力し、説明文は含めないでください。""",
    "en": """Based on the existing article and the analysis results, write copy-paste ready improvement text (changed parts only).

[Existing Article]
- URL: {url}
- Title: {title}
- Heading Structure:
{headings}
- Article Content (first {text_chars} characters):
{text}

[Why Competitors Rank Higher (Analysis Results)]
{why}

[Recommended Additions (Analysis Results)]
{additions}

{aio}[Requirements]
1. Add new sections before or after existing headings, at the position where they fit best
2. Base each section on the "Reason" and "Content Summary" and match the existing article's style and tone
3. Output complete Markdown including the heading (## or ###) so each section can be inserted as is
4. Express line breaks as \\n

[Output Format]
{{
  "changes": [
    {{
      "type": "insert",
      "position": "after" | "before",
      "target": "Existing heading (e.g. '## What is emo?')",
      "content": "Complete Markdown to add (including heading)",
      "simple_format": {{
        "section": "Heading of the section to add",
        "position": "After/Before existing heading",
        "content": "Markdown body text"
      }}
    }}
  ]
}}

Output only JSON, no explanatory text.""",
}


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class SimpleFormat:
    section: str
    position: str
    content: str


@dataclass
class ImprovementChange:
    position: str
    target: str
    content: str
    simple_format: Optional[SimpleFormat] = None
    type: str = "insert"


@dataclass
class ArticleImprovement:
    changes: List[ImprovementChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _extract_json(text: str) -> str:
    raw = text.strip()
    fenced = re.search(r"```(?:json)?\s*([\s\S]*)```", raw)
    if fenced:
        raw = fenced.group(1).strip()
    elif raw.startswith("```"):
        raw = re.sub(r"^```(?:json)?", "", raw).strip()

    if not raw.startswith("{"):
        start, end = raw.find("{"), raw.rfind("}")
        if start != -1 and end > start:
            raw = raw[start:end + 1]
    return raw


def parse_improvement(text: str) -> ArticleImprovement:
    """
    Parse the LLM's JSON answer. Accepts ```json fences, surrounding prose
    and camelCase keys; anything unusable yields an empty improvement.
    """
    try:
        data = json.loads(_extract_json(text))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse improvement response: {e}; starts with {text[:200]!r}")
        return ArticleImprovement()

    items = data.get("changes") if isinstance(data, dict) else None
    if not isinstance(items, list):
        logger.error("Improvement response has no changes array")
        return ArticleImprovement()

    changes = []
    for item in items:
        if not isinstance(item, dict) or not item.get("content"):
            continue
        simple = item.get("simple_format", item.get("simpleFormat"))
        changes.append(ImprovementChange(
            type=item.get("type", "insert"),
            position="before" if item.get("position") == "before" else "after",
            target=item.get("target", ""),
            content=item["content"],
            simple_format=SimpleFormat(
                section=simple.get("section", ""),
                position=simple.get("position", ""),
                content=simple.get("content", ""),
            ) if isinstance(simple, dict) else None,
        ))
    return ArticleImprovement(changes=changes)


class ArticleImprovementGenerator:
    """
    Usage:
        generator = ArticleImprovementGenerator()
        improvement = await generator.generate(url, own, why, additions, missing, locale="ja")
    """

    def __init__(self, llm_client: Optional[ClaudeClient] = None):
        self.llm = llm_client or ClaudeClient()

    @staticmethod
    def is_available() -> bool:
        return ClaudeClient.is_available()

    def build_prompt(
        self,
        article_url: str,
        own: ScrapedArticle,
        why_competitors_rank_higher: str,
        recommended_additions: Sequence[Dict[str, Any]],
        missing_elements: Sequence[str] = (),
        locale: str = "ja",
    ) -> str:
        lang = "en" if locale == "en" else "ja"

        additions = []
        for i, addition in enumerate(recommended_additions):
            block = ADDITION_TEMPLATES[lang].format(
                index=i + 1,
                section=addition.get("section", ""),
                reason=addition.get("reason", ""),
                content=addition.get("content", ""),
            )
            urls = addition.get("competitor_urls") or addition.get("competitorUrls") or []
            if urls:
                block += "\n" + REFERENCE_LABELS[lang] + ", ".join(urls)
            additions.append(block)

        aio = ""
        if missing_elements:
            aio = AIO_SECTIONS[lang].format(
                elements="\n".join(f"{i + 1}. {e}" for i, e in enumerate(missing_elements))
            )

        return USER_PROMPTS[lang].format(
            url=article_url,
            title=own.title,
            headings="\n".join(f"{'#' * level} {text}" for level, text in own.headings),
            text_chars=ARTICLE_TEXT_CHARS,
            text=own.full_text[:ARTICLE_TEXT_CHARS],
            why=why_competitors_rank_higher,
            additions="\n\n".join(additions),
            aio=aio,
        )

    async def generate(
        self,
        article_url: str,
        own: ScrapedArticle,
        why_competitors_rank_higher: str,
        recommended_additions: Sequence[Dict[str, Any]],
        missing_elements: Sequence[str] = (),
        locale: str = "ja",
    ) -> ArticleImprovement:
        lang = "en" if locale == "en" else "ja"
        prompt = self.build_prompt(
            article_url, own, why_competitors_rank_higher,
            recommended_additions, missing_elements, lang,
        )

        response = await self.llm.complete_with_retry(
            prompt=prompt, system=SYSTEM_PROMPTS[lang], max_tokens=MAX_TOKENS,
        )
        if not response.success:
            raise ImprovementError(response.error or "LLM call failed")

        improvement = parse_improvement(response.content)
        logger.info(f"Improvement for {article_url}: {len(improvement.changes)} changes")
        return improvement
