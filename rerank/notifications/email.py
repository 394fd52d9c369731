"""
Email Notifications

Sends rank change reports and re-auth requests via Resend.
"""

import html
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import resend

from rerank.config import get_settings
from .items import NotificationItem

logger = logging.getLogger(__name__)

CARD_KEYWORDS = 5


@dataclass
class EmailResult:
    """Result of email delivery."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


MESSAGES: Dict[str, Dict[str, str]] = {
    "ja": {
        "drop_subject": "【ReRank AI】順位下落を検知しました（{count}件の記事）",
        "rise_subject": "【ReRank AI】順位上昇を検知しました（{count}件の記事）",
        "mixed_subject": "【ReRank AI】順位変動を検知しました（{count}件の記事）",
        "heading": "ReRank AI - 順位変動レポート",
        "intro": "監視中の記事で順位の変動を検知しました。",
        "drop_label": "順位下落",
        "rise_label": "順位上昇",
        "average_position": "平均順位",
        "keywords": "主なキーワード",
        "position_suffix": "位",
        "impressions": "インプレッション",
        "dashboard": "ダッシュボードで詳細を確認",
        "auth_subject": "【ReRank AI】Search Consoleの再連携が必要です",
        "auth_body": "サイト {site_url} のGoogle Search Consoleとの連携が切れました。順位の監視を続けるには、ダッシュボードから再連携してください。",
        "auth_button": "再連携する",
    },
    "en": {
        "drop_subject": "[ReRank AI] Rank drop detected ({count} articles)",
        "rise_subject": "[ReRank AI] Rank rise detected ({count} articles)",
        "mixed_subject": "[ReRank AI] Rank changes detected ({count} articles)",
        "heading": "ReRank AI - Rank Change Report",
        "intro": "We detected ranking changes in your monitored articles.",
        "drop_label": "Rank drop",
        "rise_label": "Rank rise",
        "average_position": "Average position",
        "keywords": "Top keywords",
        "position_suffix": "",
        "impressions": "impressions",
        "dashboard": "View details in dashboard",
        "auth_subject": "[ReRank AI] Please reconnect Google Search Console",
        "auth_body": "The Google Search Console connection for {site_url} has expired. Reconnect from the dashboard to keep monitoring rankings.",
        "auth_button": "Reconnect",
    },
}

LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: #4F46E5; color: white; padding: 20px; border-radius: 8px 8px 0 0; }}
    .content {{ background: #f9fafb; padding: 20px; border: 1px solid #e5e7eb; }}
    .card {{ background: white; padding: 16px; margin-bottom: 16px; border-radius: 8px; border: 1px solid #e5e7eb; }}
    .drop {{ border-left: 4px solid #DC2626; }}
    .rise {{ border-left: 4px solid #16A34A; }}
    .button {{ display: inline-block; background: #4F46E5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; }}
    .footer {{ text-align: center; padding: 20px; color: #6B7280; font-size: 12px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1 style="margin: 0;">{heading}</h1></div>
    <div class="content">
{body}
    </div>
    <div class="footer">ReRank AI</div>
  </div>
</body>
</html>"""


def _lang(locale: Optional[str]) -> str:
    return "en" if locale == "en" else "ja"


def bulk_subject(items: Sequence[NotificationItem], locale: str = "ja") -> str:
    t = MESSAGES[_lang(locale)]
    rises = sum(1 for item in items if item.is_rise)
    if rises == len(items):
        key = "rise_subject"
    elif rises == 0:
        key = "drop_subject"
    else:
        key = "mixed_subject"
    return t[key].format(count=len(items))


def format_position_change(item: NotificationItem, suffix: str) -> str:
    sign = "-" if item.is_rise else "+"
    return (
        f"{item.base_average_position:.1f}{suffix} → "
        f"{item.current_average_position:.1f}{suffix} ({sign}{abs(item.change):.1f}{suffix})"
    )


class EmailNotifier:
    """
    Notification email delivery using Resend.

    Without RESEND_API_KEY delivery is disabled: sends return
    EmailResult(success=False) and nothing raises.
    """

    DEFAULT_FROM_NAME = "ReRank AI"

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key or settings.RESEND_API_KEY
        if not self.api_key:
            logger.warning("RESEND_API_KEY not set - email delivery disabled")

        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.dashboard_url = settings.dashboard_url

        if self.api_key:
            resend.api_key = self.api_key

    @property
    def is_enabled(self) -> bool:
        return bool(self.api_key)

    async def send_bulk_notification(
        self,
        to_email: str,
        items: Sequence[NotificationItem],
        locale: str = "ja",
    ) -> EmailResult:
        """One email with a card per article."""
        if not items:
            return EmailResult(success=False, error="No notification items")

        return self._send(
            to_email,
            bulk_subject(items, locale),
            self.render_bulk_html(items, locale),
        )

    async def send_auth_error_notification(
        self,
        to_email: str,
        site_url: str,
        locale: str = "ja",
    ) -> EmailResult:
        t = MESSAGES[_lang(locale)]
        body = (
            f'      <p>{html.escape(t["auth_body"].format(site_url=site_url))}</p>\n'
            f'      <p><a class="button" href="{self.dashboard_url}">{t["auth_button"]}</a></p>'
        )
        return self._send(
            to_email,
            t["auth_subject"],
            LAYOUT.format(heading=html.escape(t["auth_subject"]), body=body),
        )

    def render_bulk_html(self, items: Sequence[NotificationItem], locale: str = "ja") -> str:
        t = MESSAGES[_lang(locale)]
        cards = "\n".join(self._card(item, t) for item in items)
        body = (
            f"      <p>{t['intro']}</p>\n"
            f"{cards}\n"
            f'      <p><a class="button" href="{self.dashboard_url}">{t["dashboard"]}</a></p>'
        )
        return LAYOUT.format(heading=t["heading"], body=body)

    def _card(self, item: NotificationItem, t: Dict[str, str]) -> str:
        kind = "rise" if item.is_rise else "drop"
        keywords = "".join(
            f"<li>{html.escape(kw['keyword'])}: {float(kw.get('position', 0)):.1f}{t['position_suffix']}"
            f" ({kw.get('impressions', 0)} {t['impressions']})</li>"
            for kw in item.keywords[:CARD_KEYWORDS]
        )
        keyword_block = f"<p><strong>{t['keywords']}</strong></p><ul>{keywords}</ul>" if keywords else ""

        return (
            f'      <div class="card {kind}">\n'
            f"        <p><strong>{t[kind + '_label']}</strong></p>\n"
            f'        <p><a href="{html.escape(item.article_url)}">{html.escape(item.display_title)}</a></p>\n'
            f"        <p>{t['average_position']}: {format_position_change(item, t['position_suffix'])}</p>\n"
            f"        {keyword_block}\n"
            f"      </div>"
        )

    def _send(self, to_email: str, subject: str, html_content: str) -> EmailResult:
        if not self.api_key:
            return EmailResult(success=False, error="Email delivery not configured (missing API key)")

        try:
            params = {
                "from": f"{self.DEFAULT_FROM_NAME} <{self.from_email}>",
                "to": [to_email],
                "subject": subject,
                "html": html_content,
            }
            response = resend.Emails.send(params)

            logger.info(f"Email sent to {to_email}: {response.get('id', 'unknown')}")
            return EmailResult(success=True, message_id=response.get("id"))

        except Exception as e:
            logger.error(f"Email delivery failed: {e}")
            return EmailResult(success=False, error=str(e))
