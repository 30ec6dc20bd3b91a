"""
Driver selection by configuration.
"""

from typing import Callable, Dict, Optional

from fixloop.config.settings import get_config
from fixloop.core.interfaces import ActionDriver, ConfigProvider
from fixloop.core.types import Platform
from fixloop.error_handling.exceptions import DriverError

DriverFactory = Callable[[], ActionDriver]


def _playwright_driver(config: ConfigProvider, platform: Platform) -> ActionDriver:
    from fixloop.browser.driver import PlaywrightDriver

    return PlaywrightDriver(
        base_url=config.get_required("base_url"),
        headless=config.get("browser_headless"),
        viewport_width=config.get("browser_viewport_width"),
        viewport_height=config.get("browser_viewport_height"),
        element_timeout_ms=config.get("element_timeout_ms"),
        wait_timeout_ms=config.get("wait_timeout_ms"),
        navigation_timeout_ms=config.get("navigation_timeout_ms"),
        loading_indicator_text=config.get("loading_indicator_text"),
        platform=platform,
    )


DRIVER_BUILDERS: Dict[str, Callable[[ConfigProvider, Platform], ActionDriver]] = {
    "playwright": _playwright_driver,
}


def create_driver_factory(
    config: Optional[ConfigProvider] = None,
    driver: Optional[str] = None,
    platform: Optional[Platform] = None,
) -> DriverFactory:
    """
    Build a factory producing a fresh driver session per scenario.

    Args:
        config: Configuration source (defaults to the cached settings)
        driver: Driver name overriding the configured one
        platform: Platform overriding the configured one

    Raises:
        DriverError: The configured driver is not available
    """
    config = config or get_config()
    driver_name = (driver or config.get("driver", "playwright")).lower()
    target_platform = platform or Platform(config.get("platform", Platform.WEB.value))

    builder = DRIVER_BUILDERS.get(driver_name)
    if builder is None:
        raise DriverError(
            f"Unknown driver '{driver_name}'. Available: {', '.join(sorted(DRIVER_BUILDERS))}",
            driver=driver_name,
            operation="create",
        )

    def factory() -> ActionDriver:
        return builder(config, target_platform)

    return factory
