"""
Slack notifications for finished Agent Runs.

Posts a Block Kit summary through an incoming webhook (slack-sdk WebhookClient)
when a run failed, or when a full scan surfaced new opportunities. Other runs
are skipped.

Result Contract:
    {'success': bool, 'skipped': bool, 'reason': str, 'error': str}
No exceptions are raised; failures are returned in the result dict.

Environment Requirements:
- SLACK_WEBHOOK_URL: https://hooks.slack.com/services/xxx/yyy/zzz
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from revenue_agent.models import AgentRun, JobType, RunStatus


logger = logging.getLogger(__name__)


def should_notify(run: AgentRun) -> bool:
    if run.status == RunStatus.FAILED:
        return True
    return run.run_type == JobType.FULL and run.opportunities_found > 0


def format_run_message(run: AgentRun) -> List[Dict[str, Any]]:
    """Block Kit blocks summarizing one run."""
    failed = run.status == RunStatus.FAILED
    icon = "🚨" if failed else "💰"
    label = run.run_type.value.replace('_', ' ').title()

    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{icon} Revenue Agent: {label} {run.status.value}",
                "emoji": True,
            },
        },
        {"type": "divider"},
    ]

    duration = f"{run.duration_ms / 1000:.1f}s" if run.duration_ms is not None else "n/a"
    blocks.append({
        "type": "section",
        "fields": [
            {"type": "mrkdwn", "text": f"*Items processed*\n{run.items_processed:,}"},
            {"type": "mrkdwn", "text": f"*Opportunities found*\n{run.opportunities_found:,}"},
            {"type": "mrkdwn", "text": f"*Errors*\n{run.errors_encountered}"},
            {"type": "mrkdwn", "text": f"*Duration*\n{duration}"},
        ],
    })

    errors = (run.error_details or {}).get('errors') or []
    if errors:
        lines = "\n".join(f"• {e}" for e in errors[:5])
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Errors*\n{lines}"},
        })

    finished = run.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC') if run.completed_at else "running"
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": f"Run {run.id} | finished {finished}"}],
    })
    return blocks


class SlackRunNotifier:
    """Notification collaborator backed by a Slack incoming webhook."""

    def __init__(self, webhook_url: Optional[str]):
        self._webhook_url = webhook_url

    async def notify_run_complete(self, run: AgentRun) -> Dict[str, Any]:
        if not self._webhook_url:
            return {'success': True, 'skipped': True, 'reason': 'SLACK_WEBHOOK_URL not configured'}

        if not should_notify(run):
            return {
                'success': True,
                'skipped': True,
                'reason': f'Nothing to report for {run.run_type.value} run',
            }

        blocks = format_run_message(run)
        try:
            client = WebhookClient(self._webhook_url)
            response = await asyncio.to_thread(client.send, blocks=blocks)
        except Exception as e:
            logger.error(f"Failed to send Slack message for run {run.id}: {e}")
            return {'success': False, 'error': f'Failed to send Slack message: {e}'}

        if response.status_code != 200:
            return {
                'success': False,
                'error': f'Slack API returned status {response.status_code}: {response.body}',
            }

        logger.info(f"Posted Slack summary for run {run.id}")
        return {'success': True, 'skipped': False}
