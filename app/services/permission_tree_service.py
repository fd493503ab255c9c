# app/services/permission_tree_service.py
"""
Tri-state view over the resource tree and parent-to-descendant cascades.

Everything here is pure: it reads a resource tree and a {code: actions} map
and returns states or the list of writes to perform. Persisting the writes
is the caller's job.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Mapping, Optional
from uuid import UUID

from app.models.rbac import ALL_ACTIONS
from app.schemas.rbac import PermissionTreeNodeResponse, ResourceTreeNode

PermissionMap = Mapping[str, frozenset[str]]


class CheckState(str, Enum):
    CHECKED = "checked"
    UNCHECKED = "unchecked"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class CascadeWrite:
    resource_id: UUID
    resource_code: str
    allowed_actions: frozenset[str]

    def sorted_actions(self) -> list[str]:
        return [a for a in ALL_ACTIONS if a in self.allowed_actions]


def build_permission_map(grants: Iterable[tuple[str, Iterable[str]]]) -> dict[str, frozenset[str]]:
    """{resource_code: allowed actions} from (code, actions) pairs."""
    return {code: frozenset(actions) for code, actions in grants}


def iter_nodes(nodes: Iterable[ResourceTreeNode]) -> Iterator[ResourceTreeNode]:
    """Pre-order walk."""
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


def find_node(nodes: Iterable[ResourceTreeNode], code: str) -> Optional[ResourceTreeNode]:
    for node in iter_nodes(nodes):
        if node.code == code:
            return node
    return None


def compute_check_state(node: ResourceTreeNode, action: str, permission_map: PermissionMap) -> CheckState:
    """
    A leaf is checked when its own grant holds the action. A parent is
    checked when every child is checked, unchecked when every child is
    unchecked, and indeterminate otherwise. The parent's own grant is not
    consulted.
    """
    if not node.children:
        granted = permission_map.get(node.code, frozenset())
        return CheckState.CHECKED if action in granted else CheckState.UNCHECKED

    child_states = {compute_check_state(child, action, permission_map) for child in node.children}
    if child_states == {CheckState.CHECKED}:
        return CheckState.CHECKED
    if child_states == {CheckState.UNCHECKED}:
        return CheckState.UNCHECKED
    return CheckState.INDETERMINATE


def compute_check_states(
    node: ResourceTreeNode, permission_map: PermissionMap, actions: Iterable[str] = ALL_ACTIONS
) -> dict[tuple[str, str], CheckState]:
    """
    States for every (code, action) in the subtree, computed bottom-up in a
    single pass.
    """
    actions = tuple(actions)
    states: dict[tuple[str, str], CheckState] = {}

    def visit(n: ResourceTreeNode) -> None:
        for child in n.children:
            visit(child)
        for action in actions:
            if not n.children:
                granted = permission_map.get(n.code, frozenset())
                states[(n.code, action)] = CheckState.CHECKED if action in granted else CheckState.UNCHECKED
                continue
            child_states = {states[(c.code, action)] for c in n.children}
            if child_states == {CheckState.CHECKED}:
                states[(n.code, action)] = CheckState.CHECKED
            elif child_states == {CheckState.UNCHECKED}:
                states[(n.code, action)] = CheckState.UNCHECKED
            else:
                states[(n.code, action)] = CheckState.INDETERMINATE

    visit(node)
    return states


def cascade_toggle(
    node: ResourceTreeNode,
    action: str,
    permission_map: PermissionMap,
    turn_on: Optional[bool] = None,
) -> list[CascadeWrite]:
    """
    Writes that set (or clear) `action` on `node` and on every descendant.

    When `turn_on` is None the node's own grant decides: if the node holds
    the action it is cleared everywhere, otherwise it is granted everywhere.
    Other actions of each resource are preserved. Descendants that do not
    declare the action are never granted it. Nodes whose action set would not
    change produce no write.
    """
    if turn_on is None:
        turn_on = action not in permission_map.get(node.code, frozenset())

    writes: list[CascadeWrite] = []
    for n in iter_nodes([node]):
        current = permission_map.get(n.code, frozenset())
        if turn_on:
            if action not in n.actions:
                continue
            updated = current | {action}
        else:
            updated = current - {action}
        if updated == current:
            continue
        writes.append(CascadeWrite(resource_id=n.id, resource_code=n.code, allowed_actions=frozenset(updated)))
    return writes


def annotate_tree(
    nodes: Iterable[ResourceTreeNode], permission_map: PermissionMap
) -> list[PermissionTreeNodeResponse]:
    """Resource tree with the granted actions and tri-state per declared action."""
    result = []
    for node in nodes:
        states = compute_check_states(node, permission_map)
        result.append(_annotate(node, permission_map, states))
    return result


def _annotate(
    node: ResourceTreeNode,
    permission_map: PermissionMap,
    states: Mapping[tuple[str, str], CheckState],
) -> PermissionTreeNodeResponse:
    granted = permission_map.get(node.code, frozenset())
    return PermissionTreeNodeResponse(
        code=node.code,
        name=node.name,
        element_type=node.element_type,
        actions=node.actions,
        granted=[a for a in ALL_ACTIONS if a in granted],
        states={a: states[(node.code, a)].value for a in node.actions},
        children=[_annotate(child, permission_map, states) for child in node.children],
    )
