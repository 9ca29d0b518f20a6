"""Uplift tree growing, the fitted model, and rule extraction."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Self

import numpy as np
import polars as pl
from loguru import logger

from upliftkit.exceptions import ModelNotFittedError
from upliftkit.logging import SPLIT_LEVEL
from upliftkit.uplift_tree.models import (
    DivergenceMetric,
    NumericSplit,
    Predicate,
    SplitValue,
    TreeNode,
    UpliftRule,
    UpliftSummary,
    UpliftTreeConfig,
    UpliftTreeState,
)
from upliftkit.uplift_tree.preprocessing import DatasetSource, load_dataset, prepare_dataset
from upliftkit.uplift_tree.scoring import compute_gain, summarize
from upliftkit.uplift_tree.splitting import generate_split_values, partition, split_expressions

# ---------------------------------------------------------------------------
# Tree builder
# ---------------------------------------------------------------------------


class _SplitChoice(NamedTuple):
    """The best split found so far at a node."""

    feature: str
    value: SplitValue
    gain: float


@dataclass
class _TreeBuilder:
    """Grows the tree depth-first, writing committed splits into `nodes` in place.

    Attributes:
        config (UpliftTreeConfig): Hyperparameters.
        treatment_column (str): Int32 treatment indicator column.
        outcome_column (str): Int32 outcome column.
        feature_columns (list[str]): Candidate features, sampled per node.
        nodes (list[TreeNode]): Preallocated node array, mutated by `build`.
        rng (np.random.Generator): Source for feature and category sampling.
    """

    config: UpliftTreeConfig
    treatment_column: str
    outcome_column: str
    feature_columns: list[str]
    nodes: list[TreeNode]
    rng: np.random.Generator

    def build(self, df: pl.DataFrame, node_index: int, depth: int) -> int:
        """Find and commit the best split for `df` at slot `node_index`, then recurse.

        Args:
            df (pl.DataFrame): The rows reaching this node.
            node_index (int): Slot of this node in the implicit binary layout.
            depth (int): Distance from the root; the root is 0.

        Returns:
            int: `node_index` if a split was committed, otherwise `-1`.
        """
        # Children of a node at the last level would need slots past the node array.
        if depth >= self.config.max_depth - 1:
            return -1

        current = summarize(df, treatment_column=self.treatment_column, outcome_column=self.outcome_column)
        if current is None:
            logger.debug("Node has a single treatment arm", node_index=node_index, rows=df.height)
            return -1

        best = self._find_best_split(df, current)
        if best is None or best.gain <= 0:
            logger.debug("No positive-gain split", node_index=node_index, depth=depth, rows=df.height)
            return -1

        node = self.nodes[node_index]
        node.feature_name = best.feature
        node.split_value = best.value
        logger.log(
            SPLIT_LEVEL,
            "Split committed",
            node_index=node_index,
            depth=depth,
            feature=best.feature,
            value=best.value.value,
            gain=best.gain,
            rows=df.height,
        )

        left_df, right_df = partition(df, best.feature, best.value)
        node.true_branch_index = self.build(left_df, 2 * node_index + 1, depth + 1)
        node.false_branch_index = self.build(right_df, 2 * node_index + 2, depth + 1)
        return node_index

    def _find_best_split(self, df: pl.DataFrame, current: UpliftSummary) -> _SplitChoice | None:
        """Evaluate every candidate of the sampled features and keep the first maximum.

        Candidate sides are summarized from lazy filtered views; no rows are
        materialized here.

        Args:
            df (pl.DataFrame): The rows reaching the node.
            current (UpliftSummary): Summary of `df`.

        Returns:
            _SplitChoice | None: The highest-gain admissible split, or `None`
                if every candidate was discarded.
        """
        frame = df.lazy()
        best: _SplitChoice | None = None
        best_gain = -math.inf

        for feature in self._sample_features():
            candidates = generate_split_values(df[feature], max_splits=self.config.max_splits, rng=self.rng)
            for value in candidates:
                left_expr, right_expr = split_expressions(feature, value)
                left = summarize(frame.filter(left_expr), **self._summary_columns)
                right = summarize(frame.filter(right_expr), **self._summary_columns)
                if (
                    left is None
                    or right is None
                    or left.total <= self.config.min_sample_leaf
                    or right.total <= self.config.min_sample_leaf
                ):
                    continue

                gain = compute_gain(
                    current,
                    left,
                    right,
                    left_fraction=left.total / df.height,
                    metric=self.config.metric,
                )
                if gain > best_gain:
                    best_gain = gain
                    best = _SplitChoice(feature=feature, value=value, gain=gain)

        return best

    def _sample_features(self) -> list[str]:
        """Draw `feature_sample_size` features without replacement, in draw order."""
        indices = self.rng.choice(len(self.feature_columns), size=self.config.feature_sample_size, replace=False)
        return [self.feature_columns[i] for i in indices]

    @property
    def _summary_columns(self) -> dict[str, str]:
        return {"treatment_column": self.treatment_column, "outcome_column": self.outcome_column}


# ---------------------------------------------------------------------------
# Public interface -- Model
# ---------------------------------------------------------------------------


class UpliftTreeModel:
    """A binary uplift tree stored as a fixed-capacity node array.

    The node at slot `i` has its true-branch child at `2i + 1` and its
    false-branch child at `2i + 2`; the root is slot 0. The array holds
    `2 ** (max_depth - 1)` slots, enough for every node that may split.

    Examples:
        >>> model = UpliftTreeModel(max_depth=3, min_sample_leaf=50, feature_sample_size=2, random_state=7)
        >>> model.fit("campaign.parquet", "treatment", "converted")  # doctest: +SKIP
        >>> for rule in model.extract_rules():  # doctest: +SKIP
        ...     print(rule)
    """

    def __init__(
        self,
        max_depth: int,
        min_sample_leaf: int = 0,
        feature_sample_size: int = 1,
        max_splits: int = 10,
        metric: DivergenceMetric = "euclidean",
        *,
        random_state: int | None = None,
    ) -> None:
        """Initialize an unfitted model.

        Args:
            max_depth (int): Number of tree levels, leaves included; at least 1.
            min_sample_leaf (int): Splits leaving `min_sample_leaf` rows or
                fewer on either side are discarded.
            feature_sample_size (int): Features sampled per node.
            max_splits (int): Maximum candidate split values per feature.
            metric (DivergenceMetric): Divergence metric.
            random_state (int | None): Seed for a fresh random generator on
                every `fit`. `None` means non-deterministic.

        Raises:
            pydantic.ValidationError: If a hyperparameter is out of range.
        """
        self._config = UpliftTreeConfig(
            max_depth=max_depth,
            min_sample_leaf=min_sample_leaf,
            feature_sample_size=feature_sample_size,
            max_splits=max_splits,
            metric=metric,
        )
        self.random_state = random_state
        self._treatment_column = ""
        self._outcome_column = ""
        self._feature_columns: list[str] = []
        self._nodes = _empty_nodes(self._config)

    @classmethod
    def from_config(cls, config: UpliftTreeConfig, *, random_state: int | None = None) -> Self:
        """Create an unfitted model from a config object.

        Args:
            config (UpliftTreeConfig): Hyperparameters.
            random_state (int | None): Seed used on every `fit`.

        Returns:
            Self: The unfitted model.
        """
        return cls(**config.model_dump(), random_state=random_state)

    # -- Fitted state --------------------------------------------------------

    @property
    def config(self) -> UpliftTreeConfig:
        return self._config

    @property
    def treatment_column(self) -> str:
        return self._treatment_column

    @property
    def outcome_column(self) -> str:
        return self._outcome_column

    @property
    def feature_columns(self) -> tuple[str, ...]:
        return tuple(self._feature_columns)

    @property
    def nodes(self) -> tuple[TreeNode, ...]:
        """The node array, indexed by implicit binary-tree position."""
        return tuple(self._nodes)

    @property
    def is_fitted(self) -> bool:
        return bool(self._treatment_column)

    @property
    def split_count(self) -> int:
        """Number of committed splits."""
        return sum(not node.is_leaf for node in self._nodes)

    @property
    def depth(self) -> int:
        """Number of levels reached by following branch pointers; a root-only tree has depth 1."""
        return self._levels_below(0)

    # -- Fitting -------------------------------------------------------------

    def fit(
        self,
        source: DatasetSource,
        treatment_column: str,
        outcome_column: str,
        *,
        rng: np.random.Generator | None = None,
    ) -> Self:
        """Grow the tree on a full dataset.

        All columns other than the treatment and outcome are features.
        String-typed features are treated as categorical, numeric features as
        Float64. Refitting replaces any previous tree; if fitting raises, the
        previous state is kept unchanged.

        Args:
            source (DatasetSource): A DataFrame, LazyFrame, or path to a
                parquet/CSV/IPC file.
            treatment_column (str): 0/1 treatment indicator column.
            outcome_column (str): Outcome column, summed per treatment arm.
            rng (np.random.Generator | None): Random source for feature and
                category sampling. Defaults to a generator seeded with
                `random_state`.

        Returns:
            Self: The fitted model.

        Raises:
            ConfigurationError: If `feature_sample_size` exceeds the number of
                features or a feature has an unsupported dtype.
            ColumnsNotFoundError: If the treatment or outcome column is missing.
            NullValuesError: If a used column contains nulls.
            InvalidTreatmentError: If the treatment column is not a two-arm 0/1 indicator.
        """
        raw = load_dataset(source)
        prepared = prepare_dataset(
            raw,
            treatment_column=treatment_column,
            outcome_column=outcome_column,
            feature_sample_size=self._config.feature_sample_size,
        )
        logger.info(
            "Fitting uplift tree",
            rows=prepared.df.height,
            features=len(prepared.feature_columns),
            max_depth=self._config.max_depth,
        )

        builder = _TreeBuilder(
            config=self._config,
            treatment_column=treatment_column,
            outcome_column=outcome_column,
            feature_columns=prepared.feature_columns,
            nodes=_empty_nodes(self._config),
            rng=rng if rng is not None else np.random.default_rng(self.random_state),
        )
        builder.build(prepared.df, 0, 0)

        # Fitted state changes only once the whole tree has been grown.
        self._treatment_column = treatment_column
        self._outcome_column = outcome_column
        self._feature_columns = prepared.feature_columns
        self._nodes = builder.nodes

        logger.info("Uplift tree fitted", splits=self.split_count, depth=self.depth)
        return self

    # -- Inspection ----------------------------------------------------------

    def extract_rules(self) -> list[UpliftRule]:
        """Return one rule per terminal branch, ordered true branch first.

        Returns:
            list[UpliftRule]: Root-to-leaf predicate paths.

        Raises:
            ModelNotFittedError: If the model has not been fitted.
        """
        self._require_fitted()
        rules: list[UpliftRule] = []
        _walk_rules(self._nodes, node_index=0, path_predicates=[], rules=rules)
        return rules

    def export_state(self) -> UpliftTreeState:
        """Snapshot the fitted tree for persistence.

        Returns:
            UpliftTreeState: Config, column names, and a copy of the node array.

        Raises:
            ModelNotFittedError: If the model has not been fitted.
        """
        self._require_fitted()
        return UpliftTreeState(
            config=self._config,
            treatment_column=self._treatment_column,
            outcome_column=self._outcome_column,
            feature_columns=list(self._feature_columns),
            nodes=[node.model_copy() for node in self._nodes],
        )

    def _load_state(self, state: UpliftTreeState) -> None:
        """Replace the fitted state with a validated snapshot."""
        self._treatment_column = state.treatment_column
        self._outcome_column = state.outcome_column
        self._feature_columns = list(state.feature_columns)
        self._nodes = [node.model_copy() for node in state.nodes]

    def _require_fitted(self) -> None:
        if not self.is_fitted:
            raise ModelNotFittedError("UpliftTreeModel has not been fitted; call fit() first")

    def _levels_below(self, node_index: int) -> int:
        node = self._nodes[node_index]
        if node.is_leaf:
            return 1
        child_levels = [
            self._levels_below(child) if child != -1 else 1
            for child in (node.true_branch_index, node.false_branch_index)
        ]
        return 1 + max(child_levels)

    def __repr__(self) -> str:
        params = ", ".join(f"{key}={value!r}" for key, value in self._config.model_dump().items())
        return f"{self.__class__.__name__}({params}, random_state={self.random_state!r})"


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _empty_nodes(config: UpliftTreeConfig) -> list[TreeNode]:
    return [TreeNode() for _ in range(config.node_capacity)]


def _walk_rules(
    nodes: list[TreeNode],
    *,
    node_index: int,
    path_predicates: list[Predicate],
    rules: list[UpliftRule],
) -> None:
    """Recursively collect root-to-leaf rules.

    Args:
        nodes (list[TreeNode]): The node array.
        node_index (int): Current slot.
        path_predicates (list[Predicate]): Predicates from the root to `node_index`.
        rules (list[UpliftRule]): Accumulator; rules are appended in place.
    """
    node = nodes[node_index]
    if node.is_leaf:
        rules.append(UpliftRule(predicates=path_predicates, leaf_index=node_index))
        return

    left_predicate, right_predicate = _build_split_predicates(node)
    branches = (
        (node.true_branch_index, 2 * node_index + 1, left_predicate),
        (node.false_branch_index, 2 * node_index + 2, right_predicate),
    )
    for child_index, implicit_index, predicate in branches:
        child_path = [*path_predicates, predicate]
        if child_index == -1:
            rules.append(UpliftRule(predicates=child_path, leaf_index=implicit_index))
        else:
            _walk_rules(nodes, node_index=child_index, path_predicates=child_path, rules=rules)


def _build_split_predicates(node: TreeNode) -> tuple[Predicate, Predicate]:
    """Build the true-branch and false-branch predicates of a split node.

    Args:
        node (TreeNode): A non-leaf node.

    Returns:
        tuple[Predicate, Predicate]: `(<=, >)` for numeric splits, `(==, !=)`
            for categorical splits.
    """
    value = node.split_value
    if isinstance(value, NumericSplit):
        return (
            Predicate(variable=node.feature_name, operator="<=", value=value.value),
            Predicate(variable=node.feature_name, operator=">", value=value.value),
        )
    return (
        Predicate(variable=node.feature_name, operator="==", value=value.value),
        Predicate(variable=node.feature_name, operator="!=", value=value.value),
    )
