"""
Agents module exports.
"""

from fixloop.agents.analyzer import FailureAnalyzer
from fixloop.agents.fix_applier import LLMFixApplier, RecordingFixApplier, create_fix_applier
from fixloop.agents.test_runner import ScenarioRunner

__all__ = [
    "FailureAnalyzer",
    "LLMFixApplier",
    "RecordingFixApplier",
    "ScenarioRunner",
    "create_fix_applier",
]
