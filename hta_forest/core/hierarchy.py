"""
Hierarchy integrity engine.
Pure structural queries over flat HTA node lists - no I/O, no mutation of caller data.

Nodes are plain mappings. The fields read here are ``id``, ``parent_id``,
``level``, ``prerequisites``, ``completed`` and ``priority``; everything else
is opaque. Malformed input never raises: non-list input degrades to empty
results and non-mapping items are skipped. Problems are reported explicitly by
``validate_hierarchy``.
"""

import copy
import hashlib
import json
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from .config import MAX_HIERARCHY_DEPTH

ROOT_KEY = "__root__"


class HTALevel(IntEnum):
    GOAL = 0
    STRATEGY = 1
    BRANCH = 2
    TASK = 3
    ACTION = 4


class FindingKind(str, Enum):
    ORPHAN = "orphan"
    CYCLE = "cycle"


@dataclass(frozen=True)
class HierarchyFinding:
    """A structural warning. Reported to the caller, never raised or repaired."""
    kind: FindingKind
    node_id: Any
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        if self.kind == FindingKind.ORPHAN:
            return f"Orphaned node {self.node_id} references missing parent {self.detail.get('parent_id')}"
        return f"Cyclic dependency detected starting at {self.node_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "node_id": self.node_id, "detail": dict(self.detail)}


@dataclass
class ValidationResult:
    valid: bool
    findings: List[HierarchyFinding] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        """Findings rendered as human-readable strings."""
        return [finding.message for finding in self.findings]

    def of_kind(self, kind: FindingKind) -> List[HierarchyFinding]:
        return [finding for finding in self.findings if finding.kind == kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "findings": [finding.to_dict() for finding in self.findings],
        }


def _as_ref(value) -> Optional[Any]:
    """Usable id/reference value, or None for absent or unusable ones."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int)) and value != "":
        return value
    return None


def _iter_nodes(nodes):
    if not isinstance(nodes, list):
        return []
    return [node for node in nodes if isinstance(node, dict)]


def _node_id(node: Dict[str, Any]):
    return _as_ref(node.get("id"))


def _parent_ref(node: Dict[str, Any]):
    return _as_ref(node.get("parent_id"))


def _has_parent(node: Dict[str, Any]) -> bool:
    parent = node.get("parent_id")
    return parent is not None and parent != ""


def _level_of(node: Dict[str, Any]) -> Optional[float]:
    level = node.get("level")
    if isinstance(level, bool) or not isinstance(level, (int, float)):
        return None
    return level


def _id_map(nodes) -> Dict[Any, Dict[str, Any]]:
    # Last occurrence wins for duplicate ids
    id_map = {}
    for node in _iter_nodes(nodes):
        node_id = _node_id(node)
        if node_id is not None:
            id_map[node_id] = node
    return id_map


def build_parent_map(nodes=None) -> Dict[Any, List[Dict[str, Any]]]:
    """
    Build a parent -> children lookup map.

    Roots (no ``parent_id``) are grouped under ``ROOT_KEY``. Children keep
    their input order. Non-list input yields an empty map.
    """
    parent_map: Dict[Any, List[Dict[str, Any]]] = {}
    for node in _iter_nodes(nodes):
        if _has_parent(node):
            parent = _parent_ref(node)
            if parent is None:
                # Unusable reference; nothing can ever look it up
                continue
        else:
            parent = ROOT_KEY
        parent_map.setdefault(parent, []).append(node)
    return parent_map


def get_children(nodes=None, parent_id=None) -> List[Dict[str, Any]]:
    """Direct children of ``parent_id``, or the roots when ``parent_id`` is None."""
    parent_map = build_parent_map(nodes)
    key = ROOT_KEY if parent_id is None else parent_id
    return list(parent_map.get(key, []))


def validate_hierarchy(nodes=None, max_depth: int = None) -> ValidationResult:
    """
    Detect orphaned nodes and parent-link cycles.

    Emits one orphan finding per node whose ``parent_id`` names an unknown id,
    and one cycle finding per node whose parent walk revisits a node. Walks are
    abandoned after ``max_depth`` hops. Advisory only: the input is never
    modified.
    """
    max_depth = MAX_HIERARCHY_DEPTH if max_depth is None else max_depth
    items = _iter_nodes(nodes)
    if not items:
        return ValidationResult(valid=True, findings=[])

    findings: List[HierarchyFinding] = []
    ids = set()
    for node in items:
        node_id = _node_id(node)
        if node_id is not None:
            ids.add(node_id)

    # 1. Orphans
    for node in items:
        if not _has_parent(node):
            continue
        parent = _parent_ref(node)
        if parent is None or parent not in ids:
            findings.append(HierarchyFinding(
                kind=FindingKind.ORPHAN,
                node_id=node.get("id"),
                detail={"parent_id": node.get("parent_id")},
            ))

    # 2. Cycles, walking parent links with a hop ceiling
    parent_of = {}
    for node in items:
        node_id = _node_id(node)
        if node_id is not None:
            parent_of[node_id] = _parent_ref(node)

    for node in items:
        start = _node_id(node)
        if start is None:
            continue
        visited = set()
        current = start
        hops = 0
        while current is not None and hops < max_depth:
            if current in visited:
                findings.append(HierarchyFinding(
                    kind=FindingKind.CYCLE,
                    node_id=start,
                    detail={"revisited": current, "hops": hops},
                ))
                break
            visited.add(current)
            current = parent_of.get(current)
            hops += 1

    return ValidationResult(valid=not findings, findings=findings)


def get_leaf_tasks(nodes=None) -> List[Dict[str, Any]]:
    """
    Extract actionable leaf tasks.

    An explicit ``level`` is authoritative (``level >= ACTION``); otherwise a
    node is a leaf when it has no recorded children.
    """
    items = _iter_nodes(nodes)
    parent_map = build_parent_map(items)
    leaves = []
    for node in items:
        level = _level_of(node)
        if level is not None:
            if level >= HTALevel.ACTION:
                leaves.append(node)
            continue
        node_id = _node_id(node)
        if node_id is None or not parent_map.get(node_id):
            leaves.append(node)
    return leaves


def flatten_to_action_tasks(nodes=None) -> List[Dict[str, Any]]:
    """Alias of ``get_leaf_tasks`` for schedule generators."""
    return get_leaf_tasks(nodes)


def build_dependency_graph(nodes=None) -> Dict[Any, List[Any]]:
    """
    Prerequisite adjacency list keyed by node id.

    Prerequisite ids are not resolved here; dangling references are kept.
    """
    graph: Dict[Any, List[Any]] = {}
    for node in _iter_nodes(nodes):
        node_id = _node_id(node)
        if node_id is None:
            continue
        prerequisites = node.get("prerequisites")
        graph[node_id] = list(prerequisites) if isinstance(prerequisites, (list, tuple)) else []
    return graph


def get_ancestors(nodes=None, node_id=None, max_depth: int = None) -> List[Dict[str, Any]]:
    """Ancestors ordered root-first, truncated at the first missing parent."""
    max_depth = MAX_HIERARCHY_DEPTH if max_depth is None else max_depth
    if _as_ref(node_id) is None:
        return []
    id_map = _id_map(nodes)
    ancestors = []
    seen = {node_id}
    current = id_map.get(node_id)
    while current is not None and len(ancestors) < max_depth:
        parent = _parent_ref(current)
        if parent is None or parent in seen or parent not in id_map:
            break
        seen.add(parent)
        current = id_map[parent]
        ancestors.append(current)
    ancestors.reverse()
    return ancestors


def get_descendants(nodes=None, node_id=None) -> List[Dict[str, Any]]:
    """All descendants of ``node_id`` via iterative traversal of the parent map."""
    if _as_ref(node_id) is None:
        return []
    parent_map = build_parent_map(nodes)
    descendants = []
    visited = {node_id}
    stack = [node_id]
    while stack:
        current = stack.pop()
        for child in parent_map.get(current, []):
            child_id = _node_id(child)
            if child_id is not None and child_id in visited:
                continue
            descendants.append(child)
            if child_id is not None:
                visited.add(child_id)
                stack.append(child_id)
    return descendants


def get_node_depth(nodes=None, node_id=None, max_depth: int = None) -> int:
    """Hops from ``node_id`` to its root. 0 for roots and unknown ids, capped at ``max_depth``."""
    max_depth = MAX_HIERARCHY_DEPTH if max_depth is None else max_depth
    if _as_ref(node_id) is None:
        return 0
    id_map = _id_map(nodes)
    depth = 0
    current = id_map.get(node_id)
    while current is not None and _has_parent(current) and depth < max_depth:
        depth += 1
        parent = _parent_ref(current)
        current = id_map.get(parent) if parent is not None else None
    return depth


def _depth_table(id_map: Dict[Any, Dict[str, Any]], max_depth: int) -> Dict[Any, int]:
    """Capped depth of every id in ``id_map``, each parent link resolved once."""
    depths: Dict[Any, int] = {}
    for start in id_map:
        if start in depths:
            continue
        chain = []
        on_chain = set()
        current = start
        while True:
            node = id_map[current]
            chain.append(current)
            on_chain.add(current)
            if not _has_parent(node):
                depth = 0
                break
            parent = _parent_ref(node)
            if parent is None or parent not in id_map:
                depth = 1
                break
            if parent in depths:
                depth = min(depths[parent] + 1, max_depth)
                break
            if parent in on_chain:
                # Every walk that enters a cycle runs to the ceiling
                depth = None
                break
            current = parent

        for node_id in reversed(chain):
            if depth is None:
                depths[node_id] = max_depth
                continue
            depths[node_id] = min(depth, max_depth)
            depth = depths[node_id] + 1
    return depths


def _is_completed(node: Dict[str, Any]) -> bool:
    return bool(node.get("completed"))


def get_ready_tasks(nodes=None) -> List[Dict[str, Any]]:
    """
    Incomplete leaf tasks whose known prerequisites are all completed.

    Prerequisites that are not in the node list are treated as satisfied.
    """
    id_map = _id_map(nodes)
    ready = []
    for node in get_leaf_tasks(nodes):
        if _is_completed(node):
            continue
        prerequisites = node.get("prerequisites")
        if not isinstance(prerequisites, (list, tuple)):
            prerequisites = []
        blocked = any(
            _as_ref(prerequisite) in id_map and not _is_completed(id_map[_as_ref(prerequisite)])
            for prerequisite in prerequisites
        )
        if not blocked:
            ready.append(node)
    return ready


def select_next_task(nodes=None) -> Optional[Dict[str, Any]]:
    """Next frontier task: lowest ``priority`` among ready tasks, input order breaks ties."""
    ready = get_ready_tasks(nodes)
    if not ready:
        return None

    def sort_key(indexed):
        index, node = indexed
        priority = node.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            return (1, 0, index)
        return (0, priority, index)

    return sorted(enumerate(ready), key=sort_key)[0][1]


def summarize_hierarchy(nodes=None, strategic_branches=None) -> Dict[str, int]:
    """Counts stored as ``hierarchyMetadata`` alongside each snapshot."""
    items = _iter_nodes(nodes)
    if isinstance(strategic_branches, list):
        total_branches = len(strategic_branches)
    else:
        total_branches = len({node.get("branch") for node in items if node.get("branch")})

    depths = _depth_table(_id_map(items), MAX_HIERARCHY_DEPTH)
    total_depth = 0
    for node in items:
        total_depth = max(total_depth, depths.get(_node_id(node), 0) + 1)

    return {
        "total_tasks": len(items),
        "total_branches": total_branches,
        "total_depth": total_depth,
        "completed_tasks": sum(1 for node in items if _is_completed(node)),
        "leaf_tasks": len(get_leaf_tasks(items)),
    }


class HierarchyIndex:
    """
    Pre-built lookup structures for repeated queries over one snapshot.

    Holds its own deep copy of the node list, so later edits to the caller's
    list are not reflected.
    """

    def __init__(self, nodes=None):
        self.nodes = copy.deepcopy(_iter_nodes(nodes))
        self.parent_map = build_parent_map(self.nodes)
        self.by_id = _id_map(self.nodes)
        self.dependency_graph = build_dependency_graph(self.nodes)
        self.depths = _depth_table(self.by_id, MAX_HIERARCHY_DEPTH)

    def __len__(self):
        return len(self.nodes)

    def get(self, node_id) -> Optional[Dict[str, Any]]:
        return self.by_id.get(node_id)

    def children(self, parent_id=None) -> List[Dict[str, Any]]:
        return list(self.parent_map.get(ROOT_KEY if parent_id is None else parent_id, []))

    def leaf_tasks(self) -> List[Dict[str, Any]]:
        return get_leaf_tasks(self.nodes)

    def ancestors(self, node_id) -> List[Dict[str, Any]]:
        return get_ancestors(self.nodes, node_id)

    def descendants(self, node_id) -> List[Dict[str, Any]]:
        return get_descendants(self.nodes, node_id)

    def depth(self, node_id) -> int:
        return self.depths.get(node_id, 0) if _as_ref(node_id) is not None else 0

    def validate(self) -> ValidationResult:
        return validate_hierarchy(self.nodes)


def content_hash(nodes) -> str:
    """Stable SHA-256 of a node list's content."""
    payload = json.dumps(_iter_nodes(nodes), sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class HierarchyIndexCache:
    """LRU of ``HierarchyIndex`` objects keyed by the content hash of the node list."""

    def __init__(self, max_entries: int = 32):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, HierarchyIndex]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, nodes) -> HierarchyIndex:
        key = content_hash(nodes)
        index = self._entries.get(key)
        if index is not None:
            self._entries.move_to_end(key)
            self.hits += 1
            return index

        self.misses += 1
        index = HierarchyIndex(nodes)
        self._entries[key] = index
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return index

    def clear(self):
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self):
        return len(self._entries)
