"""
Slack Block Kit messages for rank change notifications (ja/en).
"""

from typing import Any, Dict, List, Optional, Sequence

from rerank.config import get_settings
from .items import NotificationItem

MAX_ARTICLES = 10
MAX_KEYWORD_FIELDS = 10

MESSAGES = {
    "ja": {
        "drop_title": "🔔 順位下落を検知しました",
        "rise_title": "🎉 順位上昇を検知しました",
        "drop_bulk_title": "🔔 順位下落を検知しました（{count}件の記事）",
        "rise_bulk_title": "🎉 順位上昇を検知しました（{count}件の記事）",
        "article": "📄 記事",
        "keywords": "🔍 キーワード",
        "average_position": "平均順位",
        "more": "他 {count}件の記事で順位変動を検知しました",
        "view_details": "詳細はダッシュボードで確認",
        "suffix": "位",
    },
    "en": {
        "drop_title": "🔔 Rank drop detected",
        "rise_title": "🎉 Rank rise detected",
        "drop_bulk_title": "🔔 Rank drop detected ({count} articles)",
        "rise_bulk_title": "🎉 Rank rise detected ({count} articles)",
        "article": "📄 Article",
        "keywords": "🔍 Keywords",
        "average_position": "Average Position",
        "more": "+{count} more articles with rank changes",
        "view_details": "View details in dashboard",
        "suffix": "",
    },
}


def _messages(locale: Optional[str]) -> Dict[str, str]:
    return MESSAGES["en" if locale == "en" else "ja"]


def _mrkdwn(text: str) -> Dict[str, str]:
    return {"type": "mrkdwn", "text": text}


def position_change_text(item: NotificationItem, suffix: str) -> str:
    """'12.3位 → 15.8位 (+3.5位)'; rises carry a minus sign."""
    sign = "-" if item.is_rise else "+"
    return (
        f"{item.base_average_position:.1f}{suffix} → {item.current_average_position:.1f}{suffix} "
        f"({sign}{abs(item.change):.1f}{suffix})"
    )


def _article_section(item: NotificationItem, t: Dict[str, str]) -> Dict[str, Any]:
    return {
        "type": "section",
        "fields": [
            _mrkdwn(f"*{t['article']}*\n<{item.article_url}|{item.display_title}>"),
            _mrkdwn(f"*{t['average_position']}*\n{position_change_text(item, t['suffix'])}"),
        ],
    }


def _dashboard_button(t: Dict[str, str]) -> Dict[str, Any]:
    return {
        "type": "actions",
        "elements": [{
            "type": "button",
            "text": {"type": "plain_text", "text": t["view_details"]},
            "url": get_settings().dashboard_url,
        }],
    }


def format_rank_drop_message(item: NotificationItem, locale: str = "ja") -> Dict[str, Any]:
    """Single-article message with a keyword breakdown."""
    t = _messages(locale)
    title = t["rise_title"] if item.is_rise else t["drop_title"]

    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        _article_section(item, t),
    ]

    keyword_fields = [
        _mrkdwn(f"*{kw['keyword']}*\n{float(kw.get('position', 0)):.1f}{t['suffix']}")
        for kw in item.keywords[:MAX_KEYWORD_FIELDS]
    ]
    if keyword_fields:
        blocks.append({"type": "section", "text": _mrkdwn(f"*{t['keywords']}*")})
        # Slack renders fields two per row
        for i in range(0, len(keyword_fields), 2):
            blocks.append({"type": "section", "fields": keyword_fields[i:i + 2]})

    blocks.append(_dashboard_button(t))
    return {"text": title, "blocks": blocks}


def format_bulk_message(items: Sequence[NotificationItem], locale: str = "ja") -> Dict[str, Any]:
    """Digest of several articles, at most 10 listed."""
    t = _messages(locale)
    all_rises = bool(items) and all(item.is_rise for item in items)
    title = (t["rise_bulk_title"] if all_rises else t["drop_bulk_title"]).format(count=len(items))

    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
    ]
    blocks.extend(_article_section(item, t) for item in items[:MAX_ARTICLES])

    if len(items) > MAX_ARTICLES:
        blocks.append({
            "type": "context",
            "elements": [_mrkdwn(t["more"].format(count=len(items) - MAX_ARTICLES))],
        })

    blocks.append(_dashboard_button(t))
    return {"text": title, "blocks": blocks}
