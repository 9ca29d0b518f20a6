"""Tests for uplift tree fitting: tree builder, model lifecycle, inspection, and rules."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import polars as pl
import pytest
from pydantic import ValidationError
from pytest_check import check

from upliftkit.exceptions import (
    ColumnsNotFoundError,
    FeatureSampleSizeError,
    InvalidTreatmentError,
    ModelNotFittedError,
    UnsupportedFeatureTypeError,
)
from upliftkit.uplift_tree.fitting import UpliftTreeModel, _TreeBuilder
from upliftkit.uplift_tree.models import (
    CategoricalSplit,
    NumericSplit,
    Predicate,
    TreeNode,
    UpliftTreeConfig,
)


class TestEightRowScenario:
    """The alternating-treatment campaign whose responders flip at x = 4."""

    def test_root_splits_at_midpoint(self) -> None:
        """The root splits on `x <= 4`; with two levels both children are leaves."""
        # Arrange
        model = UpliftTreeModel(max_depth=2, min_sample_leaf=0, feature_sample_size=1, max_splits=8, random_state=0)

        # Act
        model.fit(_make_flip_campaign(), "treatment", "converted")

        # Assert
        root = model.nodes[0]
        with check:
            assert len(model.nodes) == 2
        with check:
            assert root.feature_name == "x"
        with check:
            assert root.split_value == NumericSplit(value=4.0)
        with check:
            assert root.true_branch_index == -1
        with check:
            assert root.false_branch_index == -1
        with check:
            assert model.nodes[1].is_leaf

    def test_children_stop_without_positive_gain(self) -> None:
        """With room for a third level the children still stay leaves: no child split gains."""
        # Arrange
        model = UpliftTreeModel(max_depth=3, min_sample_leaf=0, feature_sample_size=1, max_splits=8, random_state=0)

        # Act
        model.fit(_make_flip_campaign(), "treatment", "converted")

        # Assert
        with check:
            assert model.split_count == 1
        with check:
            assert model.depth == 2
        with check:
            assert all(node.is_leaf for node in model.nodes[1:])

    def test_single_level_tree_never_splits(self) -> None:
        """`max_depth=1` holds only the root slot, which stays a leaf."""
        # Arrange
        model = UpliftTreeModel(max_depth=1, feature_sample_size=1, max_splits=8)

        # Act
        model.fit(_make_flip_campaign(), "treatment", "converted")

        # Assert
        with check:
            assert len(model.nodes) == 1
        with check:
            assert model.nodes[0].is_leaf
        with check:
            assert model.depth == 1

    def test_min_sample_leaf_blocks_small_sides(self) -> None:
        """Every candidate leaves a side with at most four rows, so `min_sample_leaf=4` prevents any split."""
        # Arrange
        model = UpliftTreeModel(max_depth=3, min_sample_leaf=4, feature_sample_size=1, max_splits=8)

        # Act
        model.fit(_make_flip_campaign(), "treatment", "converted")

        # Assert
        assert model.split_count == 0


class TestTreeBuilder:
    """Direct tests of `_TreeBuilder.build` on prepared data."""

    def test_returns_node_index_on_commit(self) -> None:
        """A committed split returns its own slot index and fills that slot."""
        # Arrange
        builder = _make_builder(max_depth=2)

        # Act
        result = builder.build(_prepared_flip_campaign(), 0, 0)

        # Assert
        with check:
            assert result == 0
        with check:
            assert builder.nodes[0].feature_name == "x"
        with check:
            assert builder.nodes[0].split_value == NumericSplit(value=4.0)

    def test_depth_limit_returns_minus_one(self) -> None:
        """A node at the last level never splits and leaves its slot untouched."""
        # Arrange
        builder = _make_builder(max_depth=2)

        # Act
        result = builder.build(_prepared_flip_campaign(), 1, 1)

        # Assert
        with check:
            assert result == -1
        with check:
            assert builder.nodes[1] == TreeNode()

    def test_single_arm_node_is_a_leaf(self) -> None:
        """A node holding only treated rows cannot be scored and is not split."""
        # Arrange
        treated_only = _prepared_flip_campaign().filter(pl.col("treatment") == 1)
        builder = _make_builder()

        # Act
        result = builder.build(treated_only, 0, 0)

        # Assert
        with check:
            assert result == -1
        with check:
            assert builder.nodes[0].is_leaf

    def test_single_arm_side_is_never_chosen(self) -> None:
        """A candidate leaving one side without treated rows is discarded."""
        # Arrange - `x <= 1` isolates the only control responder but leaves no treated row on its side
        df = pl.DataFrame({
            "x": [1.0, 2.0, 2.0, 3.0, 3.0, 3.0],
            "treatment": pl.Series([0, 1, 0, 1, 0, 1], dtype=pl.Int32),
            "converted": pl.Series([1, 0, 0, 1, 0, 1], dtype=pl.Int32),
        })
        builder = _make_builder()

        # Act
        builder.build(df, 0, 0)

        # Assert - `x <= 3` empties the right side, so `x <= 2` is the only admissible candidate
        assert builder.nodes[0].split_value == NumericSplit(value=2.0)


class TestTreeProperties:
    """Structural properties that hold for every fitted tree."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    @pytest.mark.parametrize("max_depth", [2, 3, 4])
    def test_reachable_nodes_stay_inside_array(self, seed: int, max_depth: int) -> None:
        """Followed pointers stay inside `[0, 2 ** (max_depth - 1))` and point at split slots.

        Args:
            seed (int): Data and sampling seed.
            max_depth (int): Tree levels.
        """
        # Arrange
        model = UpliftTreeModel(
            max_depth=max_depth, min_sample_leaf=5, feature_sample_size=2, max_splits=6, random_state=seed
        )

        # Act
        model.fit(_make_marketing_campaign(seed=seed), "treatment", "converted")

        # Assert
        capacity = 2 ** (max_depth - 1)
        pending = [(0, 1)]
        while pending:
            index, level = pending.pop()
            node = model.nodes[index]
            if node.is_leaf:
                continue
            with check:
                assert level < max_depth
            for child, expected in ((node.true_branch_index, 2 * index + 1), (node.false_branch_index, 2 * index + 2)):
                if child == -1:
                    continue
                with check:
                    assert child == expected
                with check:
                    assert 0 <= child < capacity
                with check:
                    assert not model.nodes[child].is_leaf
                pending.append((child, level + 1))
        with check:
            assert model.depth <= max_depth

    @pytest.mark.parametrize("min_sample_leaf", [10, 40, 90])
    def test_leaf_size_respected(self, min_sample_leaf: int) -> None:
        """No committed split leaves `min_sample_leaf` rows or fewer on either side.

        Args:
            min_sample_leaf (int): Minimum rows a split side must exceed.
        """
        # Arrange
        df = _make_marketing_campaign(seed=7)
        model = UpliftTreeModel(
            max_depth=4, min_sample_leaf=min_sample_leaf, feature_sample_size=3, max_splits=8, random_state=7
        )

        # Act
        model.fit(df, "treatment", "converted")

        # Assert
        for rule in model.extract_rules():
            rows = df.filter(_rule_mask(rule.predicates))
            with check:
                assert rows.height > min_sample_leaf, f"Leaf {rule.leaf_index} holds {rows.height} rows"

    def test_same_seed_gives_identical_nodes(self) -> None:
        """Two fits with the same seed on identical input produce the same node array."""
        # Arrange
        df = _make_marketing_campaign(seed=3)
        params = {"max_depth": 4, "min_sample_leaf": 10, "feature_sample_size": 2, "max_splits": 5}

        # Act
        first = UpliftTreeModel(**params, random_state=42).fit(df, "treatment", "converted")
        second = UpliftTreeModel(**params, random_state=42).fit(df, "treatment", "converted")

        # Assert
        assert first.nodes == second.nodes

    def test_refit_with_seed_is_repeatable(self) -> None:
        """`random_state` seeds a fresh generator per fit, so refitting the same model repeats the tree."""
        # Arrange
        df = _make_marketing_campaign(seed=5)
        model = UpliftTreeModel(max_depth=3, min_sample_leaf=10, feature_sample_size=2, max_splits=5, random_state=9)

        # Act
        first_nodes = model.fit(df, "treatment", "converted").nodes
        second_nodes = model.fit(df, "treatment", "converted").nodes

        # Assert
        assert first_nodes == second_nodes

    def test_injected_generators_with_same_seed_agree(self) -> None:
        """An injected generator overrides `random_state`; equal seeds give equal trees."""
        # Arrange
        df = _make_marketing_campaign(seed=8)
        params = {"max_depth": 3, "min_sample_leaf": 10, "feature_sample_size": 1, "max_splits": 4}

        # Act
        first = UpliftTreeModel(**params, random_state=1).fit(
            df, "treatment", "converted", rng=np.random.default_rng(123)
        )
        second = UpliftTreeModel(**params, random_state=2).fit(
            df, "treatment", "converted", rng=np.random.default_rng(123)
        )

        # Assert
        assert first.nodes == second.nodes

    def test_categorical_feature_splits_on_label(self) -> None:
        """A string feature is split with an equality criterion on one of its labels."""
        # Arrange
        df = pl.DataFrame({
            "segment": ["new", "new", "new", "new", "loyal", "loyal", "loyal", "loyal", "lapsed", "lapsed"],
            "treatment": [0, 1, 0, 1, 0, 1, 0, 1, 0, 1],
            "converted": [0, 1, 0, 1, 1, 0, 1, 0, 0, 0],
        })
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1, max_splits=3, random_state=0)

        # Act
        model.fit(df, "treatment", "converted")

        # Assert
        root = model.nodes[0]
        with check:
            assert root.feature_name == "segment"
        with check:
            assert isinstance(root.split_value, CategoricalSplit)
        with check:
            assert root.split_value == CategoricalSplit(value="loyal")


class TestUpliftTreeModel:
    """Tests for the model's configuration, validation, and inspection surface."""

    def test_unfitted_model_has_default_nodes(self) -> None:
        """A new model holds `2 ** (max_depth - 1)` default leaf slots."""
        # Act
        model = UpliftTreeModel(max_depth=4)

        # Assert
        with check:
            assert len(model.nodes) == 8
        with check:
            assert all(node == TreeNode() for node in model.nodes)
        with check:
            assert not model.is_fitted

    @pytest.mark.parametrize(
        "params",
        [
            {"max_depth": 0},
            {"max_depth": 3, "min_sample_leaf": -1},
            {"max_depth": 3, "feature_sample_size": 0},
            {"max_depth": 3, "max_splits": 0},
            {"max_depth": 3, "metric": "kl_divergence"},
        ],
        ids=["max_depth", "min_sample_leaf", "feature_sample_size", "max_splits", "metric"],
    )
    def test_invalid_hyperparameters_rejected(self, params: dict[str, object]) -> None:
        """Out-of-range hyperparameters fail at construction.

        Args:
            params (dict[str, object]): Constructor keyword arguments.
        """
        with pytest.raises(ValidationError):
            UpliftTreeModel(**params)  # type: ignore[arg-type]

    def test_from_config_copies_hyperparameters(self) -> None:
        """`from_config` builds a model with the given config."""
        # Arrange
        config = UpliftTreeConfig(max_depth=3, min_sample_leaf=2, feature_sample_size=2, max_splits=4)

        # Act
        model = UpliftTreeModel.from_config(config, random_state=3)

        # Assert
        with check:
            assert model.config == config
        with check:
            assert model.random_state == 3

    def test_fit_records_columns(self) -> None:
        """Fitting stores treatment, outcome, and feature names in column order."""
        # Arrange
        df = _make_marketing_campaign(seed=0)

        # Act
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1, random_state=0).fit(df, "treatment", "converted")

        # Assert
        with check:
            assert model.treatment_column == "treatment"
        with check:
            assert model.outcome_column == "converted"
        with check:
            assert model.feature_columns == ("tenure_months", "monthly_spend", "channel")
        with check:
            assert model.is_fitted

    def test_fit_from_parquet_path(self, tmp_path: Path) -> None:
        """A parquet path is loaded eagerly and fitted like the in-memory frame."""
        # Arrange
        df = _make_flip_campaign()
        path = tmp_path / "campaign.parquet"
        df.write_parquet(path)
        params = {"max_depth": 2, "feature_sample_size": 1, "max_splits": 8, "random_state": 0}

        # Act
        from_path = UpliftTreeModel(**params).fit(path, "treatment", "converted")
        from_frame = UpliftTreeModel(**params).fit(df, "treatment", "converted")

        # Assert
        assert from_path.nodes == from_frame.nodes

    def test_feature_sample_size_above_feature_count_is_fatal(self) -> None:
        """Sampling more features than exist aborts the fit."""
        # Arrange
        model = UpliftTreeModel(max_depth=2, feature_sample_size=2)

        # Act / Assert
        with pytest.raises(FeatureSampleSizeError):
            model.fit(_make_flip_campaign(), "treatment", "converted")
        with check:
            assert not model.is_fitted

    def test_unsupported_feature_type_is_fatal(self) -> None:
        """A boolean feature is neither numeric nor string-typed."""
        # Arrange
        df = _make_flip_campaign().with_columns(pl.Series("is_member", [True, False] * 4))
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1)

        # Act / Assert
        with pytest.raises(UnsupportedFeatureTypeError, match="is_member"):
            model.fit(df, "treatment", "converted")

    def test_missing_outcome_column(self) -> None:
        """An unknown outcome column is reported with the available columns."""
        # Arrange
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1)

        # Act / Assert
        with pytest.raises(ColumnsNotFoundError) as exc_info:
            model.fit(_make_flip_campaign(), "treatment", "revenue")
        with check:
            assert exc_info.value.missing_columns == ["revenue"]

    def test_control_only_dataset_rejected(self) -> None:
        """The root must contain both arms."""
        # Arrange
        df = _make_flip_campaign().with_columns(pl.lit(0).alias("treatment"))
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1)

        # Act / Assert
        with pytest.raises(InvalidTreatmentError, match="both control and treatment"):
            model.fit(df, "treatment", "converted")

    def test_fractional_treatment_rejected(self) -> None:
        """A 0.4 treatment value aborts the fit and leaves the model unfitted."""
        # Arrange
        df = pl.DataFrame({
            "x": [1.0, 2.0, 3.0, 4.0],
            "treatment": [0.0, 1.0, 0.4, 1.0],
            "converted": [0, 1, 0, 1],
        })
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1)

        # Act / Assert
        with pytest.raises(InvalidTreatmentError, match="only 0"):
            model.fit(df, "treatment", "converted")
        with check:
            assert not model.is_fitted

    def test_failed_build_keeps_previous_tree(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An error while growing the tree leaves the model exactly as before the call.

        Args:
            monkeypatch (pytest.MonkeyPatch): Used to make the builder fail mid-fit.
        """
        # Arrange
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1, max_splits=8, random_state=0)
        model.fit(_make_flip_campaign(), "treatment", "converted")
        nodes_before = model.nodes

        def _failing_build(self: _TreeBuilder, df: pl.DataFrame, node_index: int, depth: int) -> int:
            self.nodes[node_index].feature_name = "partial"
            raise MemoryError("out of memory")

        monkeypatch.setattr(_TreeBuilder, "build", _failing_build)
        renamed = _make_flip_campaign().rename({"treatment": "arm"})

        # Act
        with pytest.raises(MemoryError):
            model.fit(renamed, "arm", "converted")

        # Assert
        with check:
            assert model.nodes == nodes_before
        with check:
            assert model.treatment_column == "treatment"
        with check:
            assert model.export_state().nodes[0].feature_name == "x"

    def test_failed_first_fit_stays_unfitted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A model whose first build fails cannot be exported.

        Args:
            monkeypatch (pytest.MonkeyPatch): Used to make the builder fail mid-fit.
        """
        # Arrange
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1, max_splits=8)

        def _failing_build(self: _TreeBuilder, df: pl.DataFrame, node_index: int, depth: int) -> int:
            raise MemoryError("out of memory")

        monkeypatch.setattr(_TreeBuilder, "build", _failing_build)

        # Act
        with pytest.raises(MemoryError):
            model.fit(_make_flip_campaign(), "treatment", "converted")

        # Assert
        with check:
            assert not model.is_fitted
        with pytest.raises(ModelNotFittedError):
            model.export_state()

    def test_unfitted_model_has_no_rules(self) -> None:
        """Rule extraction requires a fitted model."""
        with pytest.raises(ModelNotFittedError):
            UpliftTreeModel(max_depth=2).extract_rules()

    def test_repr_lists_hyperparameters(self) -> None:
        """`repr` shows the configured hyperparameters."""
        # Act
        text = repr(UpliftTreeModel(max_depth=3, max_splits=7, random_state=1))

        # Assert
        with check:
            assert "max_depth=3" in text
        with check:
            assert "max_splits=7" in text
        with check:
            assert "random_state=1" in text


class TestExtractRules:
    """Tests for `UpliftTreeModel.extract_rules`."""

    def test_single_split_gives_two_rules(self) -> None:
        """The midpoint split yields a `<=` rule and a `>` rule ending at slots 1 and 2."""
        # Arrange
        model = UpliftTreeModel(max_depth=2, feature_sample_size=1, max_splits=8, random_state=0)
        model.fit(_make_flip_campaign(), "treatment", "converted")

        # Act
        rules = model.extract_rules()

        # Assert
        with check:
            assert [rule.leaf_index for rule in rules] == [1, 2]
        with check:
            assert rules[0].predicates == [Predicate(variable="x", operator="<=", value=4.0)]
        with check:
            assert rules[1].predicates == [Predicate(variable="x", operator=">", value=4.0)]
        with check:
            assert str(rules[0]) == "x <= 4.0"

    def test_root_only_tree_has_one_empty_rule(self) -> None:
        """A tree without splits has a single rule covering all rows."""
        # Arrange
        model = UpliftTreeModel(max_depth=1, feature_sample_size=1)
        model.fit(_make_flip_campaign(), "treatment", "converted")

        # Act
        rules = model.extract_rules()

        # Assert
        with check:
            assert len(rules) == 1
        with check:
            assert rules[0].predicates == []
        with check:
            assert rules[0].leaf_index == 0

    def test_rules_partition_training_rows(self) -> None:
        """Every training row satisfies exactly one rule."""
        # Arrange
        df = _make_marketing_campaign(seed=11)
        model = UpliftTreeModel(max_depth=4, min_sample_leaf=10, feature_sample_size=3, max_splits=6, random_state=11)
        model.fit(df, "treatment", "converted")

        # Act
        rules = model.extract_rules()

        # Assert
        matches = sum(df.filter(_rule_mask(rule.predicates)).height for rule in rules)
        with check:
            assert matches == df.height
        with check:
            assert len(rules) == model.split_count + 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_flip_campaign() -> pl.DataFrame:
    """Eight customers with alternating treatment whose response flips at x = 4.

    Control customers with x <= 4 convert; treated customers with x > 4 convert.

    Returns:
        pl.DataFrame: Columns `x`, `treatment`, `converted`.
    """
    x = [1, 2, 3, 4, 5, 6, 7, 8]
    treatment = [0, 1, 0, 1, 0, 1, 0, 1]
    converted = [int((xi > 4 and ti == 1) or (xi <= 4 and ti == 0)) for xi, ti in zip(x, treatment, strict=True)]
    return pl.DataFrame({"x": x, "treatment": treatment, "converted": converted})


def _prepared_flip_campaign() -> pl.DataFrame:
    """The flip campaign cast the way `fit` casts it."""
    return _make_flip_campaign().with_columns(
        pl.col("x").cast(pl.Float64),
        pl.col("treatment", "converted").cast(pl.Int32),
    )


def _make_builder(*, max_depth: int = 3) -> _TreeBuilder:
    """Build a `_TreeBuilder` over the single feature `x`.

    Args:
        max_depth (int): Tree levels.

    Returns:
        _TreeBuilder: A builder with an empty node array.
    """
    config = UpliftTreeConfig(max_depth=max_depth, min_sample_leaf=0, feature_sample_size=1, max_splits=8)
    return _TreeBuilder(
        config=config,
        treatment_column="treatment",
        outcome_column="converted",
        feature_columns=["x"],
        nodes=[TreeNode() for _ in range(config.node_capacity)],
        rng=np.random.default_rng(0),
    )


def _make_marketing_campaign(seed: int, n_rows: int = 400) -> pl.DataFrame:
    """Build a randomized campaign where treatment only helps short-tenure customers.

    Args:
        seed (int): Random seed.
        n_rows (int): Number of customers.

    Returns:
        pl.DataFrame: Columns `tenure_months`, `monthly_spend`, `channel`,
            `treatment`, and `converted`.
    """
    rng = np.random.default_rng(seed)
    tenure = rng.integers(1, 60, n_rows)
    spend = rng.uniform(10.0, 200.0, n_rows).round(2)
    channel = rng.choice(["email", "sms", "push", "web"], n_rows)
    treatment = rng.integers(0, 2, n_rows)
    base_rate = np.where(channel == "email", 0.3, 0.15)
    uplift = np.where(tenure < 12, 0.4, -0.05) * treatment
    converted = (rng.uniform(0.0, 1.0, n_rows) < np.clip(base_rate + uplift, 0.0, 1.0)).astype(np.int64)
    return pl.DataFrame({
        "tenure_months": tenure,
        "monthly_spend": spend,
        "channel": channel,
        "treatment": treatment,
        "converted": converted,
    })


def _rule_mask(predicates: list[Predicate]) -> pl.Expr:
    """Translate rule predicates into a Polars filter expression.

    Args:
        predicates (list[Predicate]): Conditions joined with AND.

    Returns:
        pl.Expr: Boolean expression selecting the rule's rows.
    """
    mask = pl.lit(True)
    for predicate in predicates:
        column = pl.col(predicate.variable)
        if predicate.operator == "<=":
            mask &= column <= predicate.value
        elif predicate.operator == ">":
            mask &= column > predicate.value
        elif predicate.operator == "==":
            mask &= column == predicate.value
        else:
            mask &= column != predicate.value
    return mask
