"""
Tri-state computation and cascading toggles over the resource tree.
"""

import uuid

from app.schemas.rbac import ResourceTreeNode
from app.services.permission_tree_service import (
    CheckState,
    annotate_tree,
    build_permission_map,
    cascade_toggle,
    compute_check_state,
    compute_check_states,
    find_node,
)


def node(code, actions=("view", "add", "edit", "delete"), children=()):
    return ResourceTreeNode(
        id=uuid.uuid4(),
        code=code,
        name=code,
        category="hospital",
        actions=list(actions),
        children=list(children),
    )


def doctors_tree():
    """
    doctors
      doctors.list    (view, edit)
      doctors.invite  (view, add)
    """
    return node(
        "doctors",
        children=[
            node("doctors.list", actions=("view", "edit")),
            node("doctors.invite", actions=("view", "add")),
        ],
    )


class TestCheckState:
    def test_leaf_state_comes_from_its_own_grant(self):
        leaf = node("leaf")
        assert compute_check_state(leaf, "view", {"leaf": frozenset({"view"})}) is CheckState.CHECKED
        assert compute_check_state(leaf, "edit", {"leaf": frozenset({"view"})}) is CheckState.UNCHECKED
        assert compute_check_state(leaf, "view", {}) is CheckState.UNCHECKED

    def test_parent_checked_only_when_all_children_checked(self):
        tree = doctors_tree()
        permission_map = build_permission_map(
            [("doctors.list", ["view"]), ("doctors.invite", ["view", "add"])]
        )
        assert compute_check_state(tree, "view", permission_map) is CheckState.CHECKED

    def test_parent_unchecked_when_no_child_checked_even_if_parent_granted(self):
        """The parent's own grant does not count."""
        tree = doctors_tree()
        permission_map = build_permission_map([("doctors", ["view", "add", "edit", "delete"])])
        assert compute_check_state(tree, "view", permission_map) is CheckState.UNCHECKED

    def test_parent_indeterminate_on_mixed_children(self):
        tree = doctors_tree()
        permission_map = build_permission_map([("doctors.list", ["view"])])
        assert compute_check_state(tree, "view", permission_map) is CheckState.INDETERMINATE

    def test_indeterminate_propagates_upward(self):
        tree = node("root", children=[doctors_tree(), node("patients")])
        permission_map = build_permission_map([("doctors.list", ["view"]), ("patients", ["view"])])
        assert compute_check_state(tree, "view", permission_map) is CheckState.INDETERMINATE

    def test_single_pass_matches_recursive_definition(self):
        tree = node("root", children=[doctors_tree(), node("patients")])
        permission_map = build_permission_map(
            [("doctors.list", ["view", "edit"]), ("doctors.invite", ["view"]), ("patients", ["edit"])]
        )
        states = compute_check_states(tree, permission_map)
        for action in ("view", "add", "edit", "delete"):
            assert states[("root", action)] is compute_check_state(tree, action, permission_map)
            assert states[("doctors", action)] is compute_check_state(tree.children[0], action, permission_map)


class TestCascadeToggle:
    def test_turning_on_grants_subtree_and_keeps_other_actions(self):
        tree = doctors_tree()
        permission_map = build_permission_map([("doctors.list", ["edit"])])

        writes = {w.resource_code: w.sorted_actions() for w in cascade_toggle(tree, "view", permission_map)}

        assert writes == {
            "doctors": ["view"],
            "doctors.list": ["view", "edit"],
            "doctors.invite": ["view"],
        }

    def test_turning_off_clears_subtree(self):
        tree = doctors_tree()
        permission_map = build_permission_map(
            [("doctors", ["view", "add"]), ("doctors.list", ["view", "edit"]), ("doctors.invite", ["add"])]
        )

        writes = {w.resource_code: w.sorted_actions() for w in cascade_toggle(tree, "view", permission_map)}

        # doctors.invite never had view: no write
        assert writes == {"doctors": ["add"], "doctors.list": ["edit"]}

    def test_direction_follows_the_node_own_grant(self):
        """A parent shown as checked via its children still turns on when it lacks the action itself."""
        tree = doctors_tree()
        permission_map = build_permission_map([("doctors.list", ["view"]), ("doctors.invite", ["view"])])

        writes = cascade_toggle(tree, "view", permission_map)
        assert [w.resource_code for w in writes] == ["doctors"]
        assert writes[0].sorted_actions() == ["view"]

    def test_undeclared_actions_are_not_granted(self):
        tree = doctors_tree()
        writes = {w.resource_code for w in cascade_toggle(tree, "add", {})}
        assert writes == {"doctors", "doctors.invite"}

    def test_explicit_direction(self):
        tree = doctors_tree()
        permission_map = build_permission_map([("doctors", ["view"])])
        assert cascade_toggle(tree, "view", permission_map, turn_on=True)[0].resource_code == "doctors.list"


class TestAnnotateTree:
    def test_annotated_nodes_carry_granted_and_states(self):
        tree = doctors_tree()
        permission_map = build_permission_map([("doctors", ["view"]), ("doctors.list", ["view"])])

        [annotated] = annotate_tree([tree], permission_map)

        assert annotated.granted == ["view"]
        assert annotated.states["view"] == "indeterminate"
        assert annotated.states["add"] == "unchecked"
        assert annotated.children[0].code == "doctors.list"
        assert annotated.children[0].states == {"view": "checked", "edit": "unchecked"}

    def test_find_node(self):
        tree = doctors_tree()
        assert find_node([tree], "doctors.invite").code == "doctors.invite"
        assert find_node([tree], "nope") is None
