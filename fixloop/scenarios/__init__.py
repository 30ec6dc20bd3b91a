"""
Scenario parsing, selector resolution and format conversion.
"""

from fixloop.scenarios.parser import (
    ScenarioCatalog,
    filter_by_tags,
    flatten_steps,
    load_all,
    parse,
    parse_duration,
    parse_file,
    resolve_dependencies,
    scenario_summary,
    validate,
)
from fixloop.scenarios.robo_converter import RoboScriptConverter
from fixloop.scenarios.selectors import resolve, to_playwright_selectors

__all__ = [
    "ScenarioCatalog",
    "parse",
    "parse_file",
    "validate",
    "load_all",
    "flatten_steps",
    "parse_duration",
    "filter_by_tags",
    "resolve_dependencies",
    "scenario_summary",
    "resolve",
    "to_playwright_selectors",
    "RoboScriptConverter",
]
