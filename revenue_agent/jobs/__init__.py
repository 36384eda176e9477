"""
Batch jobs for the Revenue Agent.

- orchestrator: AgentOrchestrator (job sequencing, failure isolation, reports)
- notifications: SlackRunNotifier (run summaries over a Slack webhook)
"""

from revenue_agent.jobs.notifications import SlackRunNotifier
from revenue_agent.jobs.orchestrator import (
    FULL_SCAN_ORDER,
    AgentOrchestrator,
    build_orchestrator,
)

__all__ = [
    "AgentOrchestrator",
    "FULL_SCAN_ORDER",
    "SlackRunNotifier",
    "build_orchestrator",
]
