"""
Persisted document shapes.
Field names on disk follow the camelCase used by existing project data; Python access uses snake_case.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Document kinds understood by the store
HTA_KIND = "hta"
CONFIG_KIND = "config"
GOAL_METADATA_KIND = "goal_metadata"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProjectConfig(BaseModel):
    """Per-project record. ``activePath`` is the default path for ambiguous loads."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    project_id: Optional[str] = Field(default=None, alias="projectId")
    goal: str = ""
    context: str = ""
    constraints: Dict[str, Any] = Field(default_factory=dict)
    active_path: Optional[str] = Field(default=None, alias="activePath")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator("active_path")
    @classmethod
    def blank_active_path_is_unset(cls, v):
        if v is not None and not str(v).strip():
            return None
        return v

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class HierarchyMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    total_tasks: int = 0
    total_branches: int = 0
    total_depth: int = 0
    completed_tasks: int = 0
    leaf_tasks: int = 0


class TreeSnapshot(BaseModel):
    """
    The persisted unit for one (project, path): the full node list plus metadata.

    Nodes stay plain dicts; their fields beyond the structural ones belong to
    callers and are preserved untouched.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    project_id: Optional[str] = Field(default=None, alias="projectId")
    path_name: Optional[str] = Field(default=None, alias="pathName")
    goal: str = ""
    context: str = ""
    created: Optional[str] = None
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    complexity: Dict[str, Any] = Field(default_factory=dict)
    strategic_branches: List[Dict[str, Any]] = Field(default_factory=list, alias="strategicBranches")
    frontier_nodes: List[Dict[str, Any]] = Field(default_factory=list, alias="frontierNodes")
    hierarchy_metadata: HierarchyMetadata = Field(default_factory=HierarchyMetadata, alias="hierarchyMetadata")

    @field_validator("frontier_nodes", "strategic_branches", mode="before")
    @classmethod
    def drop_non_mapping_items(cls, v):
        # Externally edited files sometimes carry nulls or strings in these lists
        if v is None:
            return []
        if isinstance(v, list):
            return [item for item in v if isinstance(item, dict)]
        return v

    @field_validator("complexity", mode="before")
    @classmethod
    def complexity_as_mapping(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            return {"level": v}
        return v

    @property
    def nodes(self) -> List[Dict[str, Any]]:
        return self.frontier_nodes

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GoalMetadata(BaseModel):
    """Minimal JSON record kept next to a vectorized goal."""
    model_config = ConfigDict(extra="allow")

    id: str
    goal: str = ""
    complexity: Any = None
    created_at: Optional[str] = None
    vectorized: bool = False
    last_vectorized: Optional[str] = None
    corruption_recovery: Optional[str] = None
