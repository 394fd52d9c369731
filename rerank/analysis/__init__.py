"""
Analysis

- prioritizer: keyword scoring and selection
- rank_drop: rank drop / rise detection from Search Console
- competitor_filter: which SERP results count as competitors
- diff: structural content diff against competitors
- semantic: Claude explanation of the content gap
- pipeline: the three-step competitor analysis
- suggestions: new article ideas from uncovered keywords
"""

from .llm import ClaudeClient, LLMResponse, TokenUsage
from .prioritizer import (
    KeywordData,
    PrioritizedKeyword,
    calculate_priority,
    normalize_keyword,
    prioritize_keywords,
    prioritize_dropped_keywords,
    group_and_select_keywords,
)
from .rank_drop import RankDropDetector, RankDropResult, RankRiseResult, weighted_average_position
from .competitor_filter import filter_competitor_urls, exclusion_reason_message
from .diff import DiffAnalyzer, DiffResult
from .semantic import SemanticDiffAnalyzer, SemanticAnalysis, SemanticAnalysisError, parse_response
from .pipeline import (
    AnalysisError,
    CompetitorAnalysisPipeline,
    CompetitorAnalysisSummary,
    save_analysis_result,
    run_and_save,
)
from .suggestions import ArticleSuggestionGenerator, Suggestion

__all__ = [
    "ClaudeClient",
    "LLMResponse",
    "TokenUsage",
    "KeywordData",
    "PrioritizedKeyword",
    "calculate_priority",
    "normalize_keyword",
    "prioritize_keywords",
    "prioritize_dropped_keywords",
    "group_and_select_keywords",
    "RankDropDetector",
    "RankDropResult",
    "RankRiseResult",
    "weighted_average_position",
    "filter_competitor_urls",
    "exclusion_reason_message",
    "DiffAnalyzer",
    "DiffResult",
    "SemanticDiffAnalyzer",
    "SemanticAnalysis",
    "SemanticAnalysisError",
    "parse_response",
    "AnalysisError",
    "CompetitorAnalysisPipeline",
    "CompetitorAnalysisSummary",
    "save_analysis_result",
    "run_and_save",
    "ArticleSuggestionGenerator",
    "Suggestion",
]
