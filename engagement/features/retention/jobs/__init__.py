"""
Job runners for the retention feature.
"""

from .proactive_agent import run_proactive_cycle, start_proactive_agent_scheduler
from .suggestion_worker import start_suggestion_worker

__all__ = ["run_proactive_cycle", "start_proactive_agent_scheduler", "start_suggestion_worker"]
