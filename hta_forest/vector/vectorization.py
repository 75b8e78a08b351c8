"""
Forest data vectorization.

Embeds project goals, strategic branches and tasks into the vector overlay
and serves similar-task search. The overlay is advisory: the document store
stays the source of truth, and a corrupted overlay is reset and rebuilt from
it rather than repaired.
"""

from typing import Any, Dict, List, Optional

from ..core.config import VECTOR_MIN_SCORE
from ..core.errors import ForestError
from ..core.schema import GOAL_METADATA_KIND, HTA_KIND, GoalMetadata, TreeSnapshot, utc_now_iso
from ..util.logging import logger
from .adapter import VectorAdapter, is_corruption_error
from .embeddings import IEmbeddingProvider

GOAL_TYPE = "goal"
BRANCH_TYPE = "branch"
TASK_TYPE = "task"


def _task_text(task: Dict[str, Any]) -> str:
    title = task.get("title") or task.get("name") or ""
    description = task.get("description") or ""
    return f"{title}: {description}".strip(": ")


class ForestVectorization:
    """Vectorizes HTA content for one vector adapter and embedding provider."""

    def __init__(self, adapter: VectorAdapter, embedding_provider: IEmbeddingProvider, store=None):
        self.adapter = adapter
        self.embedding_provider = embedding_provider
        self.store = store

    def _embed(self, text: str):
        return self.adapter.normalize(self.embedding_provider.embed_text(text))

    # Vectorization

    def vectorize_project_goal(self, project_id: str, goal_data: Dict[str, Any]) -> Dict[str, Any]:
        goal = goal_data.get("goal") or ""
        created_at = goal_data.get("created") or goal_data.get("created_at") or utc_now_iso()
        self.adapter.upsert(
            f"{project_id}:goal",
            self._embed(goal),
            {
                "type": GOAL_TYPE,
                "project_id": project_id,
                "content": goal,
                "created_at": created_at,
            },
        )

        if self.store is not None:
            metadata = GoalMetadata(
                id=project_id,
                goal=goal,
                complexity=goal_data.get("complexity"),
                created_at=created_at,
                vectorized=True,
                last_vectorized=utc_now_iso(),
            )
            self.store.save_project_data(project_id, GOAL_METADATA_KIND, metadata.model_dump(exclude_none=True))

        return {"vectorized": True, "type": GOAL_TYPE}

    def vectorize_branches(self, project_id: str, branches: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = []
        for index, branch in enumerate(branches or []):
            name = branch.get("name")
            if not name:
                continue
            self.adapter.upsert(
                f"{project_id}:branch:{name}",
                self._embed(f"{name}: {branch.get('description') or ''}"),
                {
                    "type": BRANCH_TYPE,
                    "project_id": project_id,
                    "name": name,
                    "priority": branch.get("priority"),
                    "sibling_index": index,
                },
            )
            results.append({"name": name, "vectorized": True})
        return results

    def vectorize_tasks(self, project_id: str, tasks: List[Dict[str, Any]],
                        path_name: Optional[str] = None) -> List[Dict[str, Any]]:
        results = []
        for task in tasks or []:
            task_id = task.get("id")
            if not isinstance(task_id, (str, int)) or isinstance(task_id, bool):
                continue
            metadata = {
                "type": TASK_TYPE,
                "project_id": project_id,
                "task_id": task_id,
                "title": task.get("title"),
                "branch": task.get("branch"),
                "completed": bool(task.get("completed", False)),
            }
            if path_name is not None:
                metadata["path"] = path_name
            self.adapter.upsert(f"{project_id}:task:{task_id}", self._embed(_task_text(task)), metadata)
            results.append({"id": task_id, "vectorized": True})
        return results

    def vectorize_snapshot(self, project_id: str, path_name: str, snapshot: TreeSnapshot) -> Dict[str, Any]:
        """Embed everything a saved snapshot holds. Returns counts per type."""
        results = {"vectorized": 0, "types": {}}

        if snapshot.goal:
            self.vectorize_project_goal(project_id, snapshot.to_document())
            results["vectorized"] += 1
            results["types"]["goals"] = 1

        branches = self.vectorize_branches(project_id, snapshot.strategic_branches)
        results["vectorized"] += len(branches)
        results["types"]["branches"] = len(branches)

        tasks = self.vectorize_tasks(project_id, snapshot.frontier_nodes, path_name=path_name)
        results["vectorized"] += len(tasks)
        results["types"]["tasks"] = len(tasks)

        logger.log_vector_operation("vectorize_snapshot", f"{project_id}:{path_name}", results)
        return results

    def bulk_vectorize_project(self, project_id: str, path_name: Optional[str] = None) -> Dict[str, Any]:
        """Re-embed the stored snapshot for ``project_id``. Failures are counted, not raised."""
        results = {"vectorized": 0, "errors": 0, "types": {}}
        if self.store is None:
            results["errors"] += 1
            return results

        try:
            resolved = self.store.resolve_path(project_id, path_name)
            raw = self.store.load_path_data(project_id, resolved, HTA_KIND)
            if not isinstance(raw, dict):
                raise ValueError(f"No HTA data found for project {project_id}")
            snapshot = TreeSnapshot.model_validate(raw)
            counts = self.vectorize_snapshot(project_id, resolved, snapshot)
            results["vectorized"] = counts["vectorized"]
            results["types"] = counts["types"]
        except (ForestError, ValueError) as e:
            logger.log_vector_operation("bulk_vectorize", project_id, {"error": str(e)}, status="failed")
            results["errors"] += 1
        return results

    # Search

    def find_similar_tasks(self, project_id: str, query_text: str, limit: int = 10,
                           threshold: float = VECTOR_MIN_SCORE) -> List[Dict[str, Any]]:
        """Tasks of ``project_id`` most similar to ``query_text``; empty after a corruption reset."""
        try:
            results = self.adapter.query(
                self._embed(query_text),
                k=limit,
                min_score=threshold,
                where={"project_id": project_id, "type": TASK_TYPE},
            )
        except ForestError as e:
            if is_corruption_error(e):
                logger.log_recovery("detect", "corrupted", {"operation": "find_similar_tasks", "error": str(e)[:100]})
                self.recover_from_corruption()
                return []
            raise
        return [result.to_dict() for result in results]

    # Recovery

    def recover_from_corruption(self) -> bool:
        recovered = self.adapter.recover_from_corruption()
        if recovered:
            self._mark_goal_metadata_recovered()
        return recovered

    def _mark_goal_metadata_recovered(self):
        if self.store is None:
            return
        stamp = utc_now_iso()
        for project_id in self.store.list_projects():
            raw = self.store.load_project_data(project_id, GOAL_METADATA_KIND)
            if not isinstance(raw, dict) or not raw.get("vectorized"):
                continue
            raw["vectorized"] = False
            raw["corruption_recovery"] = stamp
            self.store.save_project_data(project_id, GOAL_METADATA_KIND, raw)
            logger.log_recovery("reset_metadata", "success", {"project_id": project_id})

    def get_corruption_recovery_status(self) -> Dict[str, Any]:
        status = self.adapter.get_recovery_status().to_dict()
        status["recovered_projects"] = []
        if self.store is None:
            return status

        try:
            for project_id in self.store.list_projects():
                raw = self.store.load_project_data(project_id, GOAL_METADATA_KIND)
                if isinstance(raw, dict) and raw.get("corruption_recovery"):
                    status["recovered_projects"].append({
                        "project_id": project_id,
                        "recovery_time": raw["corruption_recovery"],
                    })
        except ForestError as e:
            logger.warning(f"Could not read recovery markers: {e}")
        return status
