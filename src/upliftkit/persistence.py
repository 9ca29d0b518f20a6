"""Saving and restoring fitted uplift trees.

A fitted tree is stored as the JSON form of an `UpliftTreeState`. Restoring
validates the node array before a model is rebuilt:

1. The array has exactly `2 ** (max_depth - 1)` slots.
2. Treatment, outcome, and feature columns are distinct.
3. Every split node names a known feature.
4. Every recorded branch pointer equals the implicit child slot (`2i + 1`
   for the true branch, `2i + 2` for the false branch), lies inside the
   array, and points at a split node.
5. Every split node other than the root is pointed to by its parent.
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from upliftkit.exceptions import StateValidationError
from upliftkit.uplift_tree.fitting import UpliftTreeModel
from upliftkit.uplift_tree.models import TreeNode, UpliftTreeState

__all__ = ["load_model", "restore_model_from_state", "save_model", "validate_state"]


def save_model(model: UpliftTreeModel, path: str | Path, *, indent: int | None = 2) -> Path:
    """Write a fitted model to a JSON file.

    Args:
        model (UpliftTreeModel): The fitted model.
        path (str | Path): Destination file.
        indent (int | None): JSON indentation; `None` for compact output.

    Returns:
        Path: The written file.

    Raises:
        ModelNotFittedError: If the model has not been fitted.
    """
    path = Path(path)
    state = model.export_state()
    path.write_text(state.model_dump_json(indent=indent), encoding="utf-8")
    logger.info("Uplift tree saved", path=str(path), splits=model.split_count)
    return path


def load_model(path: str | Path, *, random_state: int | None = None) -> UpliftTreeModel:
    """Read a model written by `save_model`.

    Args:
        path (str | Path): Source file.
        random_state (int | None): Seed for any later refit of the restored model.

    Returns:
        UpliftTreeModel: The restored, fitted model.

    Raises:
        pydantic.ValidationError: If the file is not a valid state document.
        StateValidationError: If the node array violates the tree layout.
    """
    path = Path(path)
    state = UpliftTreeState.model_validate_json(path.read_text(encoding="utf-8"))
    model = restore_model_from_state(state, random_state=random_state)
    logger.info("Uplift tree loaded", path=str(path), splits=model.split_count)
    return model


def restore_model_from_state(state: UpliftTreeState, *, random_state: int | None = None) -> UpliftTreeModel:
    """Build a fitted model from a validated state snapshot.

    Args:
        state (UpliftTreeState): Snapshot from `UpliftTreeModel.export_state()`.
        random_state (int | None): Seed for any later refit.

    Returns:
        UpliftTreeModel: A fitted model with the snapshot's node array.

    Raises:
        StateValidationError: If the snapshot violates the tree layout.

    Examples:
        >>> state = model.export_state()  # doctest: +SKIP
        >>> restored = restore_model_from_state(state)  # doctest: +SKIP
        >>> restored.nodes == model.nodes  # doctest: +SKIP
        True
    """
    validate_state(state)
    model = UpliftTreeModel.from_config(state.config, random_state=random_state)
    model._load_state(state)  # noqa: SLF001 - restoring is the model's own persistence path
    return model


def validate_state(state: UpliftTreeState) -> None:
    """Check a snapshot against the implicit binary-tree layout.

    Args:
        state (UpliftTreeState): The snapshot to check.

    Raises:
        StateValidationError: On the first violated rule (see module docstring).
    """
    expected_slots = state.config.node_capacity
    if len(state.nodes) != expected_slots:
        msg = f"Expected {expected_slots} nodes for max_depth={state.config.max_depth}, got {len(state.nodes)}"
        raise StateValidationError(msg)

    _validate_column_names(state)
    known_features = set(state.feature_columns)
    for index, node in enumerate(state.nodes):
        if node.is_leaf:
            continue
        if node.feature_name not in known_features:
            raise StateValidationError(f"Node {index} splits on unknown feature '{node.feature_name}'")
        _validate_branch(state.nodes, index, node.true_branch_index, 2 * index + 1, "true")
        _validate_branch(state.nodes, index, node.false_branch_index, 2 * index + 2, "false")
        if index > 0:
            _validate_reachable(state.nodes, index)


# Private helpers


def _validate_column_names(state: UpliftTreeState) -> None:
    """Reject overlapping treatment, outcome, and feature names."""
    names = [state.treatment_column, state.outcome_column, *state.feature_columns]
    if len(names) != len(set(names)):
        raise StateValidationError(f"Treatment, outcome, and feature columns must be distinct, got {names}")


def _validate_branch(nodes: list[TreeNode], index: int, pointer: int, expected: int, side: str) -> None:
    """Check one branch pointer of split node `index`.

    Args:
        nodes (list[TreeNode]): The node array.
        index (int): Slot of the split node.
        pointer (int): The recorded branch pointer.
        expected (int): The implicit child slot for this side.
        side (str): "true" or "false", for error messages.

    Raises:
        StateValidationError: If the pointer is neither `-1` nor a split node at `expected`.
    """
    if pointer == -1:
        return
    if pointer != expected:
        raise StateValidationError(f"Node {index} {side} branch points to {pointer}, expected -1 or {expected}")
    if pointer >= len(nodes):
        raise StateValidationError(f"Node {index} {side} branch {pointer} is outside the node array")
    if nodes[pointer].is_leaf:
        raise StateValidationError(f"Node {index} {side} branch points to leaf slot {pointer}")


def _validate_reachable(nodes: list[TreeNode], index: int) -> None:
    """Check that the parent of split node `index` records a pointer to it."""
    parent = nodes[(index - 1) // 2]
    if index not in {parent.true_branch_index, parent.false_branch_index} or parent.is_leaf:
        raise StateValidationError(f"Split node {index} is not reachable from its parent")
