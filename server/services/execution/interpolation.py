"""Template interpolation - {{ path }} resolution against the data context.

Placeholders that cannot be resolved are left untouched. Substitution is a
single pass, so resolved values are never re-scanned for placeholders.
"""

import json
import re
from typing import Any, Dict, List, Union

from core.logging import get_logger

logger = get_logger(__name__)

# Compiled regex for template matching
TEMPLATE_PATTERN = re.compile(r'\{\{\s*([^}]+?)\s*\}\}')

# Root alias used in paths such as "data.items"
ROOT_ALIAS = "data"


class _Missing:
    """Sentinel for a path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def _navigate_path(data: Any, parts: List[str]) -> Any:
    """Navigate nested dicts/lists using path parts."""
    current = data
    for part in parts:
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.lstrip('-').isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def resolve_path(data: Dict[str, Any], path: str) -> Any:
    """Resolve a dot-path against the data context.

    A leading "data." addresses the context root unless the context itself
    has a "data" key, so "data.items" and "items" find the same value.

    Returns:
        The value, or MISSING if any segment is absent.
    """
    if not path:
        return MISSING
    parts = [part for part in path.strip().split('.') if part != '']
    if not parts:
        return MISSING

    value = _navigate_path(data, parts)
    if value is MISSING and parts[0] == ROOT_ALIAS and isinstance(data, dict) and ROOT_ALIAS not in data:
        value = _navigate_path(data, parts[1:]) if len(parts) > 1 else data
    return value


def stringify(value: Any) -> str:
    """Render a resolved value for substitution into a string."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, separators=(",", ":"))
    return str(value)


def interpolate(template: str, data: Dict[str, Any]) -> str:
    """Replace {{ path }} placeholders in a string with values from data."""
    if not isinstance(template, str) or '{{' not in template:
        return template

    def replace(match: re.Match) -> str:
        value = resolve_path(data, match.group(1))
        if value is MISSING:
            logger.debug("Unresolved template placeholder", placeholder=match.group(0))
            return match.group(0)
        return stringify(value)

    return TEMPLATE_PATTERN.sub(replace, template)


def resolve_config(config: Union[Dict[str, Any], List[Any], Any], data: Dict[str, Any]) -> Any:
    """Interpolate every string inside a config structure, recursively."""
    if isinstance(config, str):
        return interpolate(config, data)
    if isinstance(config, dict):
        return {key: resolve_config(value, data) for key, value in config.items()}
    if isinstance(config, list):
        return [resolve_config(item, data) for item in config]
    return config
