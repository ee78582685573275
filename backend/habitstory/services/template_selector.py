"""Pick the task template for an archetype and window."""
from __future__ import annotations

import logging
from typing import Optional

from habitstory.core.errors import ConfigurationError
from habitstory.services.catalog import HouseConfig, get_class_config, get_house_config

logger = logging.getLogger(__name__)


def require_house_config(house: str) -> HouseConfig:
    config = get_house_config(house)
    if config is None:
        raise ConfigurationError(f"House configuration not found: {house}")
    return config


def select_template(house: str, house_class: Optional[str], window: str) -> Optional[str]:
    """Return the template key for ``window``, or None when the house has nothing for it.

    A class-specific default wins over the head of the house's list. Classes
    registered to a different house are ignored.
    """
    house_config = require_house_config(house)

    class_config = get_class_config(house_class)
    if class_config is not None and class_config.house != house:
        logger.warning("Class %s does not belong to house %s; ignoring class defaults", house_class, house)
        class_config = None
    if class_config is not None:
        key = class_config.defaults.get(window)
        if key:
            return key

    candidates = house_config.schedule.get(window) or ()
    return candidates[0] if candidates else None
