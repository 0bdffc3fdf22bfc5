# Overview: Unlock-status rules for a course's prerequisite graph. Pure functions, no storage access.

from __future__ import annotations

from enum import Enum
from typing import Any, Hashable, Iterable


class NodeStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


def _endpoints(edge: Any) -> tuple[Hashable, Hashable]:
    """Accept (from, to) pairs as well as Edge rows."""
    if isinstance(edge, (tuple, list)):
        return edge[0], edge[1]
    return edge.from_node_id, edge.to_node_id


def prerequisites(node_id: Hashable, edges: Iterable[Any]) -> set:
    """Source nodes of every edge pointing at `node_id`. Self loops never count."""
    result = set()
    for edge in edges:
        source, target = _endpoints(edge)
        if target == node_id and source != node_id:
            result.add(source)
    return result


def node_status(node_id: Hashable, completed: Iterable[Hashable], edges: Iterable[Any]) -> NodeStatus:
    """
    Status of one node given the learner's completed set and the edge set.

    completed overrides everything; a node with no prerequisites, or whose
    prerequisites are all completed, is unlocked; anything else is locked.
    """
    done = completed if isinstance(completed, (set, frozenset)) else set(completed)
    if node_id in done:
        return NodeStatus.COMPLETED
    required = prerequisites(node_id, edges)
    if required <= done:
        return NodeStatus.UNLOCKED
    return NodeStatus.LOCKED


def compute_statuses(
    node_ids: Iterable[Hashable],
    completed: Iterable[Hashable],
    edges: Iterable[Any],
) -> dict:
    """Status for every node of a course, recomputed from scratch."""
    done = set(completed)
    pairs = [_endpoints(edge) for edge in edges]
    return {node_id: node_status(node_id, done, pairs) for node_id in node_ids}


def creates_cycle(edges: Iterable[Any], from_node_id: Hashable, to_node_id: Hashable) -> bool:
    """
    True if adding from_node_id -> to_node_id would close a cycle, i.e.
    from_node_id is already reachable from to_node_id.
    """
    if from_node_id == to_node_id:
        return True

    children: dict = {}
    for edge in edges:
        source, target = _endpoints(edge)
        children.setdefault(source, []).append(target)

    seen = set()
    stack = [to_node_id]
    while stack:
        current = stack.pop()
        if current == from_node_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(children.get(current, []))
    return False
