"""
Cliente de Webhooks de Slack
============================

Envía alertas de stock bajo con Block Kit a un incoming webhook.
"""
import re
import httpx
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

SLACK_WEBHOOK_RE = re.compile(r"^https://hooks\.slack\.com/services/[A-Z0-9]+/[A-Z0-9]+/[a-zA-Z0-9]+$")
DIGEST_LIMIT = 10


class SlackWebhookError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class LowStockAlert:
    component_id: int
    component_name: str
    sku_code: str
    status: str  # warning | critical
    quantity_on_hand: Any
    reorder_point: int
    lead_time_days: int


def is_valid_slack_webhook_url(url: Optional[str]) -> bool:
    return bool(url) and SLACK_WEBHOOK_RE.match(url) is not None


def _severity(status: str):
    return (":red_circle:", "Critical") if status == "critical" else (":warning:", "Warning")


def format_low_stock_alert(alert: LowStockAlert, base_url: str) -> Dict[str, Any]:
    emoji, label = _severity(alert.status)
    url = f"{base_url}/components/{alert.component_id}"
    return {
        "text": f"Low Stock Alert - {label}: {alert.component_name} ({alert.sku_code})",
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": f"{emoji} Low Stock Alert - {label}", "emoji": True}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Component:*\n<{url}|{alert.component_name} ({alert.sku_code})>"},
                    {"type": "mrkdwn", "text": f"*On Hand:*\n{alert.quantity_on_hand} units"},
                    {"type": "mrkdwn", "text": f"*Reorder Point:*\n{alert.reorder_point} units"},
                    {"type": "mrkdwn", "text": f"*Lead Time:*\n{alert.lead_time_days} days"},
                ],
            },
            {"type": "divider"},
        ],
    }


def _digest_lines(alerts: List[LowStockAlert], base_url: str) -> str:
    lines = [
        f"• <{base_url}/components/{a.component_id}|{a.component_name}> ({a.sku_code}): {a.quantity_on_hand} / {a.reorder_point}"
        for a in alerts[:DIGEST_LIMIT]
    ]
    if len(alerts) > DIGEST_LIMIT:
        lines.append(f"...and {len(alerts) - DIGEST_LIMIT} more")
    return "\n".join(lines)


def format_daily_digest(alerts: List[LowStockAlert], base_url: str, company_name: str) -> Dict[str, Any]:
    critical = [a for a in alerts if a.status == "critical"]
    warning = [a for a in alerts if a.status == "warning"]
    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f":clipboard: Low Stock Digest - {company_name}", "emoji": True}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*{len(critical)}* critical, *{len(warning)}* warning"}},
    ]
    if critical:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "*:red_circle: Critical*\n" + _digest_lines(critical, base_url)}})
    if warning:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": "*:warning: Warning*\n" + _digest_lines(warning, base_url)}})
    return {"text": f"Low Stock Digest: {len(critical)} critical, {len(warning)} warning", "blocks": blocks}


def format_test_message() -> Dict[str, Any]:
    return {
        "text": "Stock Ledger - Test Connection",
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": ":white_check_mark: Slack Connection Test", "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": "Your Slack webhook is configured correctly."}},
        ],
    }


class SlackClient:
    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def send(self, webhook_url: str, message: Dict[str, Any]) -> None:
        if not is_valid_slack_webhook_url(webhook_url):
            raise SlackWebhookError("Formato de webhook de Slack inválido")
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(webhook_url, json=message)
        except httpx.HTTPError as e:
            raise SlackWebhookError(f"Error de red enviando a Slack: {e}") from e
        if response.status_code >= 300:
            raise SlackWebhookError(f"Slack respondió {response.status_code}: {response.text}", status_code=response.status_code)
