"""
Browser automation driver and driver selection.
"""

from fixloop.browser.driver import PlaywrightDriver, expand_selector
from fixloop.browser.factory import DRIVER_BUILDERS, create_driver_factory

__all__ = [
    "PlaywrightDriver",
    "expand_selector",
    "DRIVER_BUILDERS",
    "create_driver_factory",
]
