"""
Convert scenarios into Firebase Test Lab Robo Script JSON.

Robo scripts are android-only, so platform branches are flattened for
android before conversion. Actions without a Robo equivalent are dropped.
"""

import json
import re
from typing import Any, Callable, Dict, List

from fixloop.core.types import ActionType, Platform, Scenario, Step
from fixloop.monitoring.logger import get_logger
from fixloop.scenarios.parser import flatten_steps, parse_duration

logger = get_logger(__name__)

DEFAULT_APP_PACKAGE = "com.gymtracker.app"
ROBO_SCRIPT_ID = 1000
WAIT_FOR_ELEMENT_MS = 30000

RoboAction = Dict[str, Any]


def selector_to_descriptor(selector: str, app_package: str = DEFAULT_APP_PACKAGE) -> Dict[str, str]:
    """Translate a scenario selector into a Robo element descriptor."""
    if selector.startswith("@"):
        return {"contentDescription": selector[1:]}
    if selector.startswith("#"):
        return {"resourceId": f"{app_package}:id/{selector[1:]}"}
    return {"textRegex": f".*{re.escape(selector)}.*"}


class RoboScriptConverter:
    """Builds Robo scripts from scenarios, one handler per action."""

    def __init__(self, app_package: str = DEFAULT_APP_PACKAGE) -> None:
        self.app_package = app_package
        self._handlers: Dict[ActionType, Callable[[Step], List[RoboAction]]] = {
            ActionType.TAP: self._tap,
            ActionType.TYPE: self._type,
            ActionType.SELECT: self._unsupported,
            ActionType.HOVER: self._unsupported,
            ActionType.WAIT: self._wait,
            ActionType.SCREENSHOT: self._screenshot,
            ActionType.NAVIGATE: self._unsupported,
            ActionType.CLEAR: self._clear,
            ActionType.SWIPE: self._swipe,
            ActionType.SCROLL: self._unsupported,
            ActionType.ASSERT_VISIBLE: self._assert_visible,
            ActionType.ASSERT_NOT_VISIBLE: self._assert_not_visible,
            ActionType.ASSERT_ELEMENT_EXISTS: self._assert_element_exists,
            ActionType.ASSERT_ELEMENT_NOT_EXISTS: self._assert_element_not_exists,
            ActionType.ASSERT_ELEMENT_COUNT: self._unsupported,
            ActionType.WAIT_FOR: self._wait_for,
            ActionType.WAIT_FOR_GONE: self._unsupported,
            ActionType.BACK: self._back,
            ActionType.LOG: self._unsupported,
            ActionType.PLATFORM: self._platform,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise NotImplementedError(f"No Robo handler for actions: {sorted(missing)}")

    def convert(self, scenario: Scenario) -> List[Dict[str, Any]]:
        """Convert a scenario into a Robo script list."""
        actions: List[RoboAction] = []
        for step in flatten_steps(scenario.steps, Platform.ANDROID):
            actions.extend(self._handlers[step.action](step))

        return [
            {
                "id": ROBO_SCRIPT_ID,
                "description": scenario.name,
                "crawlStage": "crawl",
                "priority": 1,
                "maxNumberOfRuns": 1,
                "contextDescriptor": {"condition": "app_under_test_shown"},
                "actions": actions,
            }
        ]

    def to_json(self, scenario: Scenario) -> str:
        """Convert a scenario into Robo script JSON text."""
        return json.dumps(self.convert(scenario), indent=2)

    def _descriptor(self, selector: str) -> Dict[str, str]:
        return selector_to_descriptor(selector, self.app_package)

    def _tap(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "VIEW_CLICKED",
                "description": f"Tap: {step.target}",
                "elementDescriptors": [self._descriptor(step.target or "")],
            }
        ]

    def _type(self, step: Step) -> List[RoboAction]:
        descriptor = self._descriptor(step.target or "")
        return [
            {
                "eventType": "VIEW_CLICKED",
                "description": f"Focus: {step.target}",
                "elementDescriptors": [descriptor],
            },
            {
                "eventType": "VIEW_TEXT_CHANGED",
                "description": f'Type: "{step.value}" into {step.target}',
                "replacementText": step.value or "",
                "elementDescriptors": [dict(descriptor)],
            },
        ]

    def _clear(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "VIEW_TEXT_CHANGED",
                "description": f"Clear: {step.target}",
                "replacementText": "",
                "elementDescriptors": [self._descriptor(step.target or "")],
            }
        ]

    def _swipe(self, step: Step) -> List[RoboAction]:
        direction = (step.target or step.value or "up").lower()
        return [
            {
                "eventType": "VIEW_SWIPED",
                "description": f"Swipe {direction}",
                "swipeDirection": direction.capitalize(),
            }
        ]

    def _assert_visible(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "ASSERTION",
                "description": f'Assert visible: "{step.target}"',
                "contextDescriptor": {
                    "condition": "element_present",
                    "visionText": step.target,
                },
            }
        ]

    def _assert_not_visible(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "ASSERTION",
                "description": f'Assert NOT visible: "{step.target}"',
                "contextDescriptor": {
                    "condition": "element_present",
                    "visionText": step.target,
                    "negateCondition": True,
                },
            }
        ]

    def _assert_element_exists(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "ASSERTION",
                "description": f"Assert element exists: {step.target}",
                "contextDescriptor": {
                    "condition": "element_present",
                    "elementDescriptors": [self._descriptor(step.target or "")],
                },
            }
        ]

    def _assert_element_not_exists(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "ASSERTION",
                "description": f"Assert element NOT exists: {step.target}",
                "contextDescriptor": {
                    "condition": "element_present",
                    "elementDescriptors": [self._descriptor(step.target or "")],
                    "negateCondition": True,
                },
            }
        ]

    def _wait(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "WAIT",
                "description": f"Wait {step.value}",
                "delayTime": int(parse_duration(step.value or "0ms")),
            }
        ]

    def _wait_for(self, step: Step) -> List[RoboAction]:
        return [
            {
                "eventType": "WAIT_FOR_ELEMENT",
                "description": f"Wait for: {step.target}",
                "delayTime": WAIT_FOR_ELEMENT_MS,
                "elementDescriptors": [self._descriptor(step.target or "")],
            }
        ]

    def _back(self, step: Step) -> List[RoboAction]:
        return [{"eventType": "PRESSED_BACK", "description": "Press back button"}]

    def _screenshot(self, step: Step) -> List[RoboAction]:
        name = step.value or step.id
        return [
            {
                "eventType": "TAKE_SCREENSHOT",
                "description": f"Screenshot: {name}",
                "screenshotName": name,
            }
        ]

    def _unsupported(self, step: Step) -> List[RoboAction]:
        logger.debug(
            "Action has no Robo equivalent, skipping",
            extra={"step_id": step.id, "action": step.action.value},
        )
        return []

    def _platform(self, step: Step) -> List[RoboAction]:
        raise ValueError(f"Platform step {step.id} must be flattened before conversion")
