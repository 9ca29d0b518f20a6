"""Pydantic models and type aliases for the uplift tree."""

from __future__ import annotations

import operator
from collections.abc import Callable
from typing import Annotated, Any, Literal, NamedTuple, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

DivergenceMetric: TypeAlias = Literal["euclidean"]

ColumnType: TypeAlias = Literal["numeric", "categorical"]

PredicateOp: TypeAlias = Literal["<=", ">", "==", "!="]

# ---------------------------------------------------------------------------
# Split values
# ---------------------------------------------------------------------------


class NumericSplit(BaseModel):
    """Threshold split on a numeric feature: rows with `feature <= value` go to the true branch.

    Examples:
        >>> NumericSplit(value=4.0) == NumericSplit(value=4.0)
        True
        >>> NumericSplit(value=4.0) == CategoricalSplit(value="4.0")
        False
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    value: float = Field(description="Split threshold; the true branch holds rows with feature <= value.")


class CategoricalSplit(BaseModel):
    """Equality split on a categorical feature: rows with `feature == value` go to the true branch."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["categorical"] = "categorical"
    value: str = Field(description="Category label; the true branch holds rows equal to it.")


# Pydantic selects the variant from the `kind` tag when validating serialized data.
SplitValue = Annotated[NumericSplit | CategoricalSplit, Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Tree structure
# ---------------------------------------------------------------------------


class TreeNode(BaseModel):
    """One slot in the array-backed uplift tree.

    A slot with an empty `feature_name` is a leaf slot: its split value and
    branch indices carry no meaning and must not be followed.

    Attributes:
        feature_name (str): Feature the node splits on, or `""` for a leaf slot.
        split_value (SplitValue): The committed split criterion.
        true_branch_index (int): Slot index of the true-branch child, or `-1`
            if that side was not split further.
        false_branch_index (int): Slot index of the false-branch child, or `-1`.
    """

    feature_name: str = Field(default="", description="Split feature, empty for a leaf slot.")
    split_value: SplitValue = Field(default_factory=lambda: NumericSplit(value=0.0))
    true_branch_index: int = Field(default=-1, ge=-1)
    false_branch_index: int = Field(default=-1, ge=-1)

    @property
    def is_leaf(self) -> bool:
        """Whether this slot holds no split."""
        return self.feature_name == ""


class UpliftSummary(NamedTuple):
    """Treatment/control counts and positive-outcome sums for one dataset slice.

    Attributes:
        n_c (int): Number of control rows.
        n_pc (int): Sum of the outcome over control rows.
        n_t (int): Number of treatment rows.
        n_pt (int): Sum of the outcome over treatment rows.
    """

    n_c: int
    n_pc: int
    n_t: int
    n_pt: int

    @property
    def total(self) -> int:
        """Total row count across both arms."""
        return self.n_c + self.n_t


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class UpliftTreeConfig(BaseModel):
    """Hyperparameters of an uplift tree. Immutable after construction.

    Attributes:
        max_depth (int): Number of tree levels, leaves included. The node
            array holds `2 ** (max_depth - 1)` slots.
        min_sample_leaf (int): A candidate split is discarded when either side
            has `n_c + n_t <= min_sample_leaf`.
        feature_sample_size (int): Features sampled without replacement at
            every node. Must not exceed the number of feature columns.
        max_splits (int): Upper bound on candidate split values per feature.
        metric (DivergenceMetric): Divergence between treatment and control
            outcome rates.

    Examples:
        >>> config = UpliftTreeConfig(max_depth=3, min_sample_leaf=10, feature_sample_size=2, max_splits=16)
        >>> config.node_capacity
        4
    """

    model_config = ConfigDict(frozen=True)

    max_depth: int = Field(ge=1, description="Number of tree levels, leaves included.")
    min_sample_leaf: int = Field(default=0, ge=0, description="Minimum rows a split side must exceed.")
    feature_sample_size: int = Field(default=1, ge=1, description="Features sampled per node.")
    max_splits: int = Field(default=10, ge=1, description="Maximum candidate split values per feature.")
    metric: DivergenceMetric = Field(default="euclidean", description="Divergence metric.")

    @property
    def node_capacity(self) -> int:
        """Number of slots in the node array."""
        return 1 << (self.max_depth - 1)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single boolean condition on one feature, e.g. `tenure <= 12.0`.

    Examples:
        >>> p = Predicate(variable="tenure", operator="<=", value=12.0)
        >>> str(p)
        'tenure <= 12.0'
        >>> p.eval(3.0)
        True
    """

    model_config = ConfigDict(frozen=True)

    variable: str = Field(description="Feature the condition applies to.")
    operator: PredicateOp = Field(description="Comparison operator.")
    value: float | str = Field(description="Threshold or category label.")

    @model_validator(mode="after")
    def _validate_operator_value_compatibility(self) -> Predicate:
        """Reject ordering operators applied to category labels.

        Returns:
            Predicate: The validated model instance.

        Raises:
            ValueError: If `<=` or `>` is paired with a string value.
        """
        if self.operator in {"<=", ">"} and isinstance(self.value, str):
            raise ValueError(f"Operator '{self.operator}' requires a numeric value, got {self.value!r}")
        return self

    def __str__(self) -> str:
        """Return the predicate as `"<variable> <operator> <value>"`."""
        return f"{self.variable} {self.operator} {self.value}"

    def eval(self, x: float | str) -> bool:
        """Evaluate this predicate against a feature value.

        Args:
            x (float | str): The feature value to test.

        Returns:
            bool: `True` if the predicate holds for `x`.
        """
        return _OPS[self.operator](x, self.value)


class UpliftRule(BaseModel):
    """The path from the root to one terminal branch of a fitted uplift tree.

    Attributes:
        predicates (list[Predicate]): Conditions along the path, root first.
            Empty for a tree without splits.
        leaf_index (int): Implicit slot index the path ends at. It may lie
            beyond the node array when the path ends at the deepest level.
    """

    predicates: list[Predicate] = Field(description="Conditions from root to leaf.")
    leaf_index: int = Field(ge=0, description="Implicit slot index of the leaf.")

    def __str__(self) -> str:
        """Return the rule as predicates joined by `AND`."""
        return " AND ".join(str(p) for p in self.predicates) or "<all rows>"


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class UpliftTreeState(BaseModel):
    """Serializable snapshot of a fitted uplift tree.

    The node list is stored positionally, so slot index and leaf/split
    distinction survive a round trip unchanged.
    """

    config: UpliftTreeConfig
    treatment_column: str = Field(min_length=1)
    outcome_column: str = Field(min_length=1)
    feature_columns: list[str] = Field(min_length=1)
    nodes: list[TreeNode]


_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<=": operator.le,
    ">": operator.gt,
    "==": operator.eq,
    "!=": operator.ne,
}
