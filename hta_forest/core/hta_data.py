"""
High-level HTA data API.
Loads, validates, summarizes and persists tree snapshots per (project, path).
"""

import uuid
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .config import are_vector_features_enabled
from .hierarchy import select_next_task, summarize_hierarchy, validate_hierarchy
from .schema import CONFIG_KIND, HTA_KIND, ProjectConfig, TreeSnapshot, utc_now_iso
from .store import PathScopedStore, SaveAck
from ..util.logging import logger


class HTADataManager:
    """
    Project and snapshot lifecycle on top of ``PathScopedStore``.

    Path names resolve exactly as they do for direct record reads, because
    both go through ``PathScopedStore.resolve_path``.
    """

    def __init__(self, store: PathScopedStore, vectorization=None):
        self.store = store
        self.vectorization = vectorization

    # Projects

    def create_project(self, goal: str, context: str = "", constraints: Dict[str, Any] = None,
                       project_id: str = None, active_path: str = None) -> ProjectConfig:
        """Create the project config and an empty snapshot on its active path."""
        project_id = project_id or f"project_{uuid.uuid4().hex[:12]}"
        now = utc_now_iso()
        config = ProjectConfig(
            project_id=project_id,
            goal=goal,
            context=context,
            constraints=constraints or {},
            active_path=active_path or self.store.default_path,
            created_at=now,
            updated_at=now,
        )
        self.store.save_project_data(project_id, CONFIG_KIND, config.to_document())

        snapshot = TreeSnapshot(
            project_id=project_id,
            path_name=config.active_path,
            goal=goal,
            context=context,
            created=now,
            last_updated=now,
        )
        self.store.save_path_data(project_id, config.active_path, HTA_KIND, snapshot.to_document())
        logger.log_store_operation("create_project", project_id, config.active_path, CONFIG_KIND)
        return config

    def get_project_config(self, project_id: str) -> Optional[ProjectConfig]:
        raw = self.store.load_project_config(project_id)
        if raw is None:
            return None
        try:
            return ProjectConfig.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Project config for {project_id} is malformed: {e}")
            return None

    def switch_path(self, project_id: str, path_name: str) -> ProjectConfig:
        """Make ``path_name`` the project's active path, creating the config if needed."""
        if not isinstance(path_name, str) or not path_name.strip():
            raise ValueError("path_name must be a non-empty string")

        config = self.get_project_config(project_id) or ProjectConfig(project_id=project_id,
                                                                     created_at=utc_now_iso())
        config.active_path = path_name
        config.updated_at = utc_now_iso()
        self.store.save_project_data(project_id, CONFIG_KIND, config.to_document())
        logger.log_store_operation("switch_path", project_id, path_name, CONFIG_KIND)
        return config

    # Snapshots

    def load_hta(self, project_id: str, path_name: Optional[str] = None) -> Optional[TreeSnapshot]:
        """Load the snapshot for the resolved path, or None when absent."""
        resolved = self.store.resolve_path(project_id, path_name)
        raw = self.store.load_path_data(project_id, resolved, HTA_KIND)
        if raw is None:
            return None
        if not isinstance(raw, dict):
            logger.warning(f"HTA document for {project_id}/{resolved} is not an object; ignoring")
            return None
        try:
            return TreeSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"HTA document for {project_id}/{resolved} failed validation: {e}")
            return None

    def load_path_hta(self, project_id: str, path_name: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Raw snapshot document for the resolved path, without model validation."""
        return self.store.load_path_data(project_id, path_name, HTA_KIND)

    def save_hta(self, project_id: str, snapshot: Union[TreeSnapshot, Dict[str, Any]],
                 path_name: Optional[str] = None, expected_revision: int = None,
                 timeout: float = None) -> SaveAck:
        """
        Persist a snapshot, replacing whatever the path held before.

        Timestamps and ``hierarchyMetadata`` are refreshed. The hierarchy is
        validated and findings are logged and returned on the ack, but a
        flagged tree is still saved.
        """
        if isinstance(snapshot, dict):
            snapshot = TreeSnapshot.model_validate(snapshot)
        else:
            snapshot = snapshot.model_copy(deep=True)

        resolved = self.store.resolve_path(project_id, path_name)
        now = utc_now_iso()
        snapshot.project_id = snapshot.project_id or project_id
        snapshot.path_name = resolved
        snapshot.created = snapshot.created or now
        snapshot.last_updated = now

        summary = summarize_hierarchy(snapshot.frontier_nodes, snapshot.strategic_branches)
        for name, value in summary.items():
            setattr(snapshot.hierarchy_metadata, name, value)

        validation = validate_hierarchy(snapshot.frontier_nodes)
        logger.log_hierarchy_validation(project_id, resolved, validation.errors)

        ack = self.store.save_path_data(project_id, resolved, HTA_KIND, snapshot.to_document(),
                                        expected_revision=expected_revision, timeout=timeout)
        ack.findings = list(validation.findings)

        self._vectorize(project_id, resolved, snapshot)
        return ack

    def get_next_task(self, project_id: str, path_name: Optional[str] = None) -> Optional[Dict[str, Any]]:
        snapshot = self.load_hta(project_id, path_name)
        if snapshot is None:
            return None
        return select_next_task(snapshot.frontier_nodes)

    def _vectorize(self, project_id: str, path_name: str, snapshot: TreeSnapshot):
        # The snapshot is already committed; vector failures only degrade search
        if self.vectorization is None or not are_vector_features_enabled():
            return
        try:
            self.vectorization.vectorize_snapshot(project_id, path_name, snapshot)
        except Exception as e:
            logger.log_vector_operation("vectorize_snapshot", f"{project_id}:{path_name}",
                                        {"error": str(e)}, status="failed")
