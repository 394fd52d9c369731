"""
Notification payload shared by the email and Slack formatters.

The cron job that detects drops serialises items into
notifications.notification_data; the sending job rebuilds them from there.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from rerank.analysis.rank_drop import RankDropResult, RankRiseResult
from rerank.database.models import Article, NotificationType

MAX_ITEM_KEYWORDS = 10


@dataclass
class NotificationItem:
    article_id: Optional[str]
    article_url: str
    article_title: Optional[str]
    notification_type: str
    base_average_position: float
    current_average_position: float
    change: float
    keywords: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_rise(self) -> bool:
        return self.notification_type == NotificationType.RANK_RISE.value

    @property
    def display_title(self) -> str:
        return self.article_title or self.article_url

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationItem":
        return cls(
            article_id=data.get("article_id"),
            article_url=data.get("article_url", ""),
            article_title=data.get("article_title"),
            notification_type=data.get("notification_type", NotificationType.RANK_DROP.value),
            base_average_position=float(data.get("base_average_position") or 0),
            current_average_position=float(data.get("current_average_position") or 0),
            change=float(data.get("change") or 0),
            keywords=list(data.get("keywords") or []),
        )


def _keyword_dicts(keywords) -> List[Dict[str, Any]]:
    return [
        {"keyword": kw.keyword, "position": kw.position, "impressions": kw.impressions}
        for kw in keywords[:MAX_ITEM_KEYWORDS]
    ]


def item_from_drop(article: Article, result: RankDropResult) -> NotificationItem:
    return NotificationItem(
        article_id=str(article.id),
        article_url=article.url,
        article_title=article.title,
        notification_type=NotificationType.RANK_DROP.value,
        base_average_position=result.base_average_position,
        current_average_position=result.current_average_position,
        change=result.drop_amount,
        keywords=_keyword_dicts(result.dropped_keywords),
    )


def item_from_rise(article: Article, result: RankRiseResult) -> NotificationItem:
    return NotificationItem(
        article_id=str(article.id),
        article_url=article.url,
        article_title=article.title,
        notification_type=NotificationType.RANK_RISE.value,
        base_average_position=result.base_average_position,
        current_average_position=result.current_average_position,
        change=result.rise_amount,
        keywords=_keyword_dicts(result.risen_keywords),
    )
