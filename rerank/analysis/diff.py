"""
Structural Content Diff

Compares the own article against competitor articles: headings the
competitors cover that we don't, terms they use that we don't, and the
length gap. Produces plain-language recommendations (Japanese).
"""

import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Sequence, Set

from rerank.integrations.scraper import ScrapedArticle

MAX_MISSING_HEADINGS = 10
MAX_MISSING_KEYWORDS = 20
RECOMMENDATION_ITEMS = 5
WORD_COUNT_GAP_THRESHOLD = 500

JAPANESE_TERM = re.compile(r"[぀-ゟ゠-ヿ一-龯]{2,}")
ENGLISH_TERM = re.compile(r"\b[a-zA-Z]{3,}\b")


@dataclass
class MissingHeading:
    heading: str
    level: int
    found_in: List[str] = field(default_factory=list)


@dataclass
class MissingKeyword:
    keyword: str
    frequency: int
    found_in: List[str] = field(default_factory=list)


@dataclass
class WordCountDiff:
    own: int
    competitor_average: int
    difference: int


@dataclass
class DiffResult:
    missing_headings: List[MissingHeading]
    missing_keywords: List[MissingKeyword]
    word_count_diff: WordCountDiff
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text.lower())
    return re.sub(r"[^\w\s]", "", text).strip()


def extract_terms(text: str) -> Set[str]:
    """Japanese runs of 2-10 characters and English words of 3+ letters."""
    terms = {word for word in JAPANESE_TERM.findall(text) if len(word) <= 10}
    terms.update(word.lower() for word in ENGLISH_TERM.findall(text))
    return terms


class DiffAnalyzer:

    def analyze(self, own: ScrapedArticle, competitors: Sequence[ScrapedArticle]) -> DiffResult:
        missing_headings = self.find_missing_headings(own, competitors)
        missing_keywords = self.find_missing_keywords(own, competitors)
        word_count_diff = self.word_count_diff(own, competitors)

        return DiffResult(
            missing_headings=missing_headings,
            missing_keywords=missing_keywords,
            word_count_diff=word_count_diff,
            recommendations=self.recommendations(missing_headings, missing_keywords, word_count_diff),
        )

    def find_missing_headings(
        self, own: ScrapedArticle, competitors: Sequence[ScrapedArticle]
    ) -> List[MissingHeading]:
        own_headings = {normalize_text(text) for _, text in own.headings}

        missing: Dict[str, MissingHeading] = {}
        for competitor in competitors:
            for level, text in competitor.headings:
                normalized = normalize_text(text)
                if not normalized or normalized in own_headings:
                    continue
                entry = missing.get(normalized)
                if entry is None:
                    missing[normalized] = MissingHeading(heading=text, level=level, found_in=[competitor.url])
                elif competitor.url not in entry.found_in:
                    entry.found_in.append(competitor.url)

        ranked = sorted(missing.values(), key=lambda m: len(m.found_in), reverse=True)
        return ranked[:MAX_MISSING_HEADINGS]

    def find_missing_keywords(
        self, own: ScrapedArticle, competitors: Sequence[ScrapedArticle]
    ) -> List[MissingKeyword]:
        own_terms = extract_terms(normalize_text(own.full_text))

        missing: Dict[str, MissingKeyword] = {}
        for competitor in competitors:
            for term in extract_terms(normalize_text(competitor.full_text)):
                if term in own_terms:
                    continue
                entry = missing.get(term)
                if entry is None:
                    missing[term] = MissingKeyword(keyword=term, frequency=1, found_in=[competitor.url])
                else:
                    entry.frequency += 1
                    if competitor.url not in entry.found_in:
                        entry.found_in.append(competitor.url)

        ranked = sorted(missing.values(), key=lambda m: m.frequency, reverse=True)
        return ranked[:MAX_MISSING_KEYWORDS]

    def word_count_diff(self, own: ScrapedArticle, competitors: Sequence[ScrapedArticle]) -> WordCountDiff:
        if not competitors:
            return WordCountDiff(own=own.word_count, competitor_average=0, difference=0)

        average = sum(c.word_count for c in competitors) / len(competitors)
        return WordCountDiff(
            own=own.word_count,
            competitor_average=round(average),
            difference=round(average - own.word_count),
        )

    def recommendations(
        self,
        missing_headings: List[MissingHeading],
        missing_keywords: List[MissingKeyword],
        word_count_diff: WordCountDiff,
    ) -> List[str]:
        items = []

        if missing_headings:
            headings = "、".join(f"「{h.heading}」" for h in missing_headings[:RECOMMENDATION_ITEMS])
            items.append(f"複数の競合記事に含まれている見出しを追加: {headings}")

        if missing_keywords:
            keywords = "、".join(k.keyword for k in missing_keywords[:RECOMMENDATION_ITEMS])
            items.append(f"競合記事で頻繁に使用されているキーワードを追加: {keywords}")

        if word_count_diff.difference > WORD_COUNT_GAP_THRESHOLD:
            items.append(
                f"記事の文字数を増やす（現在: {word_count_diff.own}文字、"
                f"競合平均: {word_count_diff.competitor_average}文字、"
                f"差: {word_count_diff.difference}文字）"
            )

        return items
