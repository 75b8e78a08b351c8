"""
Active-path resolution.
The one place that decides which path an ambiguous load or save targets.
"""

from typing import Any, Dict, Optional, Union

from .config import DEFAULT_PATH_NAME
from .schema import ProjectConfig


def _active_path_of(project_config: Union[ProjectConfig, Dict[str, Any], None]) -> Optional[str]:
    if project_config is None:
        return None
    if isinstance(project_config, ProjectConfig):
        return project_config.active_path
    if isinstance(project_config, dict):
        value = project_config.get("activePath")
        if isinstance(value, str) and value.strip():
            return value
    return None


def resolve_path_name(requested_path: Optional[str],
                      project_config: Union[ProjectConfig, Dict[str, Any], None] = None,
                      default_path: str = DEFAULT_PATH_NAME) -> str:
    """
    Resolve the path name for a persistence call.

    Order: the requested path when non-empty, then the project's
    ``activePath``, then ``default_path``.
    """
    if isinstance(requested_path, str) and requested_path.strip():
        return requested_path
    return _active_path_of(project_config) or default_path
