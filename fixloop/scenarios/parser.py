"""
Scenario document parsing, validation and loading.

Scenario files are YAML documents with a ``name``, optional ``description``,
``tags``, ``requires``, ``preconditions``/``postconditions`` and a ``steps``
sequence. Steps are written either as single-key mappings whose key names
the action (``{tap: "Save"}``) or in explicit form
(``{id: save, action: click, target: "Save", expect: [...]}``).
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from fixloop.core.types import (
    TARGETLESS_ACTIONS,
    ActionType,
    Expectation,
    ExpectationType,
    Platform,
    Scenario,
    Step,
)
from fixloop.error_handling.exceptions import DependencyError, ParseError
from fixloop.monitoring.logger import get_logger

logger = get_logger(__name__)

SCENARIO_SUFFIXES = (".yaml", ".yml")
IGNORED_FILES = frozenset({"schema.yaml", "schema.yml"})

DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m)$")
DURATION_MULTIPLIERS = {"ms": 1.0, "s": 1000.0, "m": 60000.0}

# Keys that may accompany the action key in a single-key step
STEP_META_KEYS = ("id", "expect", "expectations")


def _spellings(name: str) -> List[str]:
    return [name, name.replace("_", "-")]


ACTION_ALIASES: Dict[str, ActionType] = {
    spelling: action
    for action in ActionType
    for spelling in _spellings(action.value)
}
ACTION_ALIASES.update(
    {
        "click": ActionType.TAP,
        "fill": ActionType.TYPE,
        "see": ActionType.ASSERT_VISIBLE,
        "notSee": ActionType.ASSERT_NOT_VISIBLE,
        "seeElement": ActionType.ASSERT_ELEMENT_EXISTS,
        "notSeeElement": ActionType.ASSERT_ELEMENT_NOT_EXISTS,
        "seeCount": ActionType.ASSERT_ELEMENT_COUNT,
        "waitFor": ActionType.WAIT_FOR,
        "waitForGone": ActionType.WAIT_FOR_GONE,
    }
)

EXPECTATION_ALIASES: Dict[str, ExpectationType] = {
    spelling: kind
    for kind in ExpectationType
    for spelling in _spellings(kind.value)
}
EXPECTATION_ALIASES.update(
    {
        "url": ExpectationType.URL_EQUALS,
        "visible": ExpectationType.ELEMENT_VISIBLE,
        "not_visible": ExpectationType.ELEMENT_NOT_VISIBLE,
        "not-visible": ExpectationType.ELEMENT_NOT_VISIBLE,
        "input_value": ExpectationType.INPUT_VALUE_EQUALS,
        "input-value": ExpectationType.INPUT_VALUE_EQUALS,
        "text_content": ExpectationType.TEXT_CONTENT_CONTAINS,
        "text-content": ExpectationType.TEXT_CONTENT_CONTAINS,
        "element_count": ExpectationType.ELEMENT_COUNT_EQUALS,
        "element-count": ExpectationType.ELEMENT_COUNT_EQUALS,
    }
)

# Payload keys that name the element or value in mapping-style payloads
TARGET_KEYS = ("target", "field", "element", "to", "selector", "url")
VALUE_KEYS = ("value", "text", "count", "option", "duration", "direction", "message")

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z_-]*$")


@dataclass
class ScenarioCatalog:
    """Scenarios loaded from a directory plus the files that failed to parse."""

    scenarios: Dict[str, Scenario] = field(default_factory=dict)
    failures: Dict[str, ParseError] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.scenarios)


def parse(raw_text: str, source_file: Optional[str] = None) -> Scenario:
    """
    Parse a scenario document.

    Args:
        raw_text: YAML text of the scenario
        source_file: Originating file, used in error messages

    Returns:
        Parsed scenario

    Raises:
        ParseError: The document is malformed, lacks ``name`` or ``steps``,
            or uses an unknown action or expectation kind
    """
    try:
        document = yaml.safe_load(raw_text)
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML: {e}", source_file=source_file, cause=e)

    if not isinstance(document, dict):
        raise ParseError("Scenario document must be a mapping", source_file=source_file)

    name = document.get("name")
    if not name or not str(name).strip():
        raise ParseError("Scenario missing 'name' field", source_file=source_file)

    raw_steps = document.get("steps")
    if not isinstance(raw_steps, list):
        raise ParseError("Scenario missing 'steps' array", source_file=source_file)

    steps = [
        _parse_step(raw_step, f"step-{index}", source_file)
        for index, raw_step in enumerate(raw_steps, start=1)
    ]

    return Scenario(
        name=str(name).strip(),
        description=str(document.get("description") or ""),
        steps=steps,
        tags=_string_list(document.get("tags"), "tags", source_file, unique=True),
        preconditions=_string_list(
            document.get("preconditions"), "preconditions", source_file
        ),
        postconditions=_string_list(
            document.get("postconditions"), "postconditions", source_file
        ),
        requires=_string_list(document.get("requires"), "requires", source_file),
        source_file=source_file,
    )


def parse_file(path: Union[str, Path]) -> Scenario:
    """Read and parse a scenario file."""
    path = Path(path)
    try:
        raw_text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ParseError(f"Cannot read scenario file: {e}", source_file=str(path), cause=e)
    return parse(raw_text, source_file=str(path))


def validate(scenario: Scenario) -> List[str]:
    """
    Check a parsed scenario for semantic completeness.

    Returns:
        Validation error messages, empty when the scenario is runnable
    """
    errors: List[str] = []

    if not scenario.name.strip():
        errors.append("Scenario must have a name")
    if not scenario.steps:
        errors.append("Scenario must have at least one step")

    seen_duplicates = set()
    for platform in Platform:
        seen = set()
        for step in flatten_steps(scenario.steps, platform):
            if step.id in seen and step.id not in seen_duplicates:
                seen_duplicates.add(step.id)
                errors.append(f"Duplicate step id: {step.id}")
            seen.add(step.id)

    for step in _walk_steps(scenario.steps):
        if step.action not in TARGETLESS_ACTIONS and not (step.target or "").strip():
            errors.append(f'Step "{step.id}" is missing a target')
        if step.action == ActionType.TYPE and not step.value:
            errors.append(f'Step "{step.id}" has action "type" but no value')
        if step.action == ActionType.WAIT:
            try:
                parse_duration(step.value or "")
            except ValueError as e:
                errors.append(f'Step "{step.id}": {e}')
        if step.action == ActionType.ASSERT_ELEMENT_COUNT:
            if step.value is None or not str(step.value).isdigit():
                errors.append(f'Step "{step.id}" has action "assert_element_count" but no count')
        for expectation in step.expectations:
            if expectation.kind == ExpectationType.ELEMENT_COUNT_EQUALS:
                try:
                    parse_element_count(expectation.expected_value)
                except ValueError as e:
                    errors.append(f'Step "{step.id}": {e}')

    return errors


def load_all(directory: Union[str, Path]) -> ScenarioCatalog:
    """
    Load every scenario file under a directory.

    Each file parses independently; failures are collected per file instead
    of aborting the load.

    Returns:
        Catalog keyed by scenario id (relative path without extension)
    """
    directory = Path(directory)
    catalog = ScenarioCatalog()

    if not directory.is_dir():
        logger.warning("Scenarios directory not found", extra={"scenario_file": str(directory)})
        return catalog

    files = sorted(
        path
        for path in directory.rglob("*")
        if path.is_file()
        and path.suffix in SCENARIO_SUFFIXES
        and path.name not in IGNORED_FILES
    )

    for path in files:
        scenario_id = path.relative_to(directory).with_suffix("").as_posix()
        try:
            catalog.scenarios[scenario_id] = parse_file(path)
        except ParseError as e:
            logger.warning(
                f"Failed to parse scenario: {e}",
                extra={"scenario_file": str(path)},
            )
            catalog.failures[str(path)] = e

    logger.info(
        f"Loaded {len(catalog.scenarios)} scenarios",
        extra={"failed_files": len(catalog.failures)},
    )
    return catalog


def flatten_steps(steps: Iterable[Step], platform: Platform) -> List[Step]:
    """
    Expand platform branch steps for one platform.

    Nested branches resolve depth-first and relative order is preserved.
    A branch without an entry for ``platform`` contributes no steps.
    """
    flattened: List[Step] = []
    for step in steps:
        if step.action == ActionType.PLATFORM:
            flattened.extend(flatten_steps(step.branches.get(platform, []), platform))
        else:
            flattened.append(step)
    return flattened


def parse_duration(duration: Union[str, int, float]) -> float:
    """
    Convert a duration such as ``500ms``, ``2s`` or ``1.5m`` to milliseconds.

    Raises:
        ValueError: The duration is not in a recognized format
    """
    if isinstance(duration, (int, float)) and not isinstance(duration, bool):
        return float(duration)
    match = DURATION_PATTERN.match(str(duration).strip())
    if not match:
        raise ValueError(f"Invalid duration format: {duration!r}")
    return float(match.group(1)) * DURATION_MULTIPLIERS[match.group(2)]


def parse_element_count(value: str) -> Tuple[str, int]:
    """
    Split an element count expectation written as ``selector:count``.

    Raises:
        ValueError: The value has no selector or no integer count
    """
    selector, _, count_text = value.rpartition(":")
    count_text = count_text.strip()
    if not selector.strip() or not count_text.isdigit():
        raise ValueError(f"Invalid element count {value!r}, expected 'selector:count'")
    return selector.strip(), int(count_text)


def filter_by_tags(
    scenarios: Dict[str, Scenario],
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> Dict[str, Scenario]:
    """
    Keep scenarios carrying any included tag and none of the excluded tags.

    An empty include list keeps every scenario not excluded.
    """
    include_set = {tag for tag in (include or []) if tag}
    exclude_set = {tag for tag in (exclude or []) if tag}

    filtered: Dict[str, Scenario] = {}
    for scenario_id, scenario in scenarios.items():
        tags = set(scenario.tags)
        if include_set and not tags & include_set:
            continue
        if tags & exclude_set:
            continue
        filtered[scenario_id] = scenario
    return filtered


def resolve_dependencies(scenarios: Dict[str, Scenario], scenario_id: str) -> List[str]:
    """
    Order a scenario after everything it requires.

    Returns:
        Scenario ids in execution order, ending with ``scenario_id``

    Raises:
        DependencyError: A dependency is unknown or the graph has a cycle
    """
    order: List[str] = []
    done = set()
    in_progress: List[str] = []

    def visit(current: str) -> None:
        if current in done:
            return
        if current in in_progress:
            cycle = " -> ".join(in_progress[in_progress.index(current):] + [current])
            raise DependencyError(f"Circular scenario dependency: {cycle}", scenario_id=current)
        scenario = scenarios.get(current)
        if scenario is None:
            raise DependencyError(f"Unknown scenario dependency: {current}", scenario_id=current)

        in_progress.append(current)
        for dependency in scenario.requires:
            visit(dependency)
        in_progress.pop()

        done.add(current)
        order.append(current)

    visit(scenario_id)
    return order


def scenario_summary(scenario: Scenario) -> str:
    """One-line description, e.g. ``Create template (4 steps) [smoke, templates]``."""
    summary = f"{scenario.name} ({len(scenario.steps)} steps)"
    if scenario.tags:
        summary += f" [{', '.join(scenario.tags)}]"
    return summary


def _walk_steps(steps: Iterable[Step]) -> Iterable[Step]:
    for step in steps:
        yield step
        for branch in step.branches.values():
            yield from _walk_steps(branch)


def _parse_step(raw: Any, default_id: str, source_file: Optional[str]) -> Step:
    if isinstance(raw, str):
        action = _lookup_action(raw.strip(), default_id, source_file)
        return Step(id=default_id, action=action)

    if not isinstance(raw, dict) or not raw:
        raise ParseError(
            f"Step {default_id} must be a mapping or an action name", source_file=source_file
        )

    if "action" in raw:
        return _parse_explicit_step(raw, default_id, source_file)

    body = dict(raw)
    step_id = str(body.pop("id", None) or default_id)
    raw_expectations = body.pop("expect", None) or body.pop("expectations", None)

    if len(body) != 1:
        raise ParseError(
            f"Step {step_id} must have exactly one action key, got {sorted(body)}",
            source_file=source_file,
        )

    keyword, payload = next(iter(body.items()))
    action = _lookup_action(str(keyword), step_id, source_file)

    if action == ActionType.PLATFORM:
        return Step(
            id=step_id,
            action=action,
            branches=_parse_branches(payload, step_id, source_file),
        )

    target, value = _split_payload(action, payload)
    return Step(
        id=step_id,
        action=action,
        target=target,
        value=value,
        expectations=_parse_expectations(raw_expectations, step_id, source_file),
    )


def _parse_explicit_step(raw: Dict[str, Any], default_id: str, source_file: Optional[str]) -> Step:
    step_id = str(raw.get("id") or default_id)
    action = _lookup_action(str(raw["action"]), step_id, source_file)
    branches: Dict[Platform, List[Step]] = {}
    if action == ActionType.PLATFORM:
        branches = _parse_branches(raw.get("branches") or raw.get("value"), step_id, source_file)

    target = raw.get("target")
    value = raw.get("value") if action != ActionType.PLATFORM else None
    return Step(
        id=step_id,
        action=action,
        target=None if target is None else str(target),
        value=None if value is None else str(value),
        expectations=_parse_expectations(
            raw.get("expect") or raw.get("expectations"), step_id, source_file
        ),
        branches=branches,
    )


def _lookup_action(keyword: str, step_id: str, source_file: Optional[str]) -> ActionType:
    action = ACTION_ALIASES.get(keyword)
    if action is None:
        raise ParseError(f"Unknown action '{keyword}' in step {step_id}", source_file=source_file)
    return action


def _split_payload(action: ActionType, payload: Any) -> Tuple[Optional[str], Optional[str]]:
    """Map an action payload onto (target, value)."""
    if payload is None or isinstance(payload, bool):
        return None, None

    if isinstance(payload, dict):
        target = next((payload[key] for key in TARGET_KEYS if key in payload), None)
        value = next((payload[key] for key in VALUE_KEYS if key in payload), None)
        return (
            None if target is None else str(target),
            None if value is None else str(value),
        )

    if action == ActionType.WAIT and isinstance(payload, (int, float)):
        return None, f"{payload}ms"

    text = str(payload)
    # Targetless actions carry their payload as the value (duration, name, message)
    if action in TARGETLESS_ACTIONS:
        return None, text
    return text, None


def _parse_branches(payload: Any, step_id: str, source_file: Optional[str]) -> Dict[Platform, List[Step]]:
    if not isinstance(payload, dict):
        raise ParseError(
            f"Platform step {step_id} must map platforms to step lists", source_file=source_file
        )

    branches: Dict[Platform, List[Step]] = {}
    for platform_name, raw_steps in payload.items():
        try:
            platform = Platform(str(platform_name).lower())
        except ValueError:
            raise ParseError(
                f"Unknown platform '{platform_name}' in step {step_id}", source_file=source_file
            )
        if not isinstance(raw_steps, list):
            raise ParseError(
                f"Platform branch '{platform_name}' in step {step_id} must be a list",
                source_file=source_file,
            )
        branches[platform] = [
            _parse_step(raw_step, f"{step_id}.{platform.value}.{index}", source_file)
            for index, raw_step in enumerate(raw_steps, start=1)
        ]
    return branches


def _parse_expectations(raw: Any, step_id: str, source_file: Optional[str]) -> List[Expectation]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raw = [raw]
    return [_parse_expectation(item, step_id, source_file) for item in raw]


def _parse_expectation(raw: Any, step_id: str, source_file: Optional[str]) -> Expectation:
    if isinstance(raw, dict):
        if len(raw) != 1:
            raise ParseError(
                f"Expectation in step {step_id} must have exactly one key",
                source_file=source_file,
            )
        keyword, value = next(iter(raw.items()))
        kind = _lookup_expectation(str(keyword), step_id, source_file)
        if isinstance(value, dict):
            target = next((value[key] for key in TARGET_KEYS if key in value), "")
            count = next((value[key] for key in VALUE_KEYS if key in value), "")
            value = f"{target}:{count}"
        return Expectation(kind=kind, expected_value="" if value is None else str(value))

    if isinstance(raw, str):
        prefix, sep, remainder = raw.partition(":")
        prefix = prefix.strip()
        if sep and _IDENTIFIER.match(prefix) and prefix != "xpath":
            kind = _lookup_expectation(prefix, step_id, source_file)
            return Expectation(kind=kind, expected_value=remainder.strip())
        return Expectation(kind=ExpectationType.ELEMENT_VISIBLE, expected_value=raw.strip())

    raise ParseError(f"Invalid expectation in step {step_id}: {raw!r}", source_file=source_file)


def _lookup_expectation(keyword: str, step_id: str, source_file: Optional[str]) -> ExpectationType:
    kind = EXPECTATION_ALIASES.get(keyword)
    if kind is None:
        raise ParseError(
            f"Unknown expectation '{keyword}' in step {step_id}", source_file=source_file
        )
    return kind


def _string_list(
    raw: Any, field_name: str, source_file: Optional[str], unique: bool = False
) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise ParseError(f"'{field_name}' must be a list of strings", source_file=source_file)
    values: List[str] = []
    for item in raw:
        text = str(item).strip()
        if text and not (unique and text in values):
            values.append(text)
    return values
