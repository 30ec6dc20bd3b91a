"""
Orchestration module for the run, analyze, fix and retry loop.
"""

from fixloop.orchestration.orchestrator import Orchestrator
from fixloop.orchestration.state import OrchestrationStateManager, ScenarioTransition

__all__ = [
    "Orchestrator",
    "OrchestrationStateManager",
    "ScenarioTransition",
]
