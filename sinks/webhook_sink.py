"""
Webhook sink for daily reports (Discord-compatible embed payload).
"""

import logging
from typing import Any, Dict

from core.infra.http import HttpClient
from core.interfaces import Sink
from core.reports import DailyReport


logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "excellent": 0x00FF00,
    "good": 0xFFFF00,
    "degraded": 0xFF8800,
    "critical": 0xFF0000,
}


def format_report(report: DailyReport) -> Dict[str, Any]:
    learning = report.learning
    healing = report.self_healing
    sources = report.data_sources
    return {
        "embeds": [{
            "title": f"Learning Platform Daily Report ({report.system_status})",
            "color": STATUS_COLORS.get(report.system_status, 0x808080),
            "fields": [
                {
                    "name": "Learning",
                    "value": (
                        f"New: {learning.new_knowledge_items}\n"
                        f"Processed: {learning.queue_items_processed}\n"
                        f"Pending: {learning.queue_items_pending}"
                    ),
                    "inline": True,
                },
                {
                    "name": "Self-Healing",
                    "value": (
                        f"Detected: {healing.issues_detected}\n"
                        f"Auto-healed: {healing.auto_healed}\n"
                        f"Rate: {healing.heal_rate}"
                    ),
                    "inline": True,
                },
                {
                    "name": "Data Sources",
                    "value": (
                        f"Healthy: {sources.healthy}/{sources.total}\n"
                        f"Degraded: {sources.degraded}\n"
                        f"Unhealthy: {sources.unhealthy}"
                    ),
                    "inline": True,
                },
            ],
            "timestamp": report.generated_at.isoformat(),
        }],
    }


class WebhookSink(Sink):
    """Posts reports to a webhook; delivery failures are logged and dropped."""

    name = "WebhookSink"

    def __init__(self, http: HttpClient, webhook_url: str):
        self.http = http
        self.webhook_url = webhook_url

    async def handle(self, item: DailyReport) -> None:
        try:
            status = await self.http.post_json(self.webhook_url, format_report(item))
            logger.info(f"Daily report delivered to webhook (HTTP {status})")
        except Exception as e:
            logger.error(f"Failed to send webhook notification: {e}")
