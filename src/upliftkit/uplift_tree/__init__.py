"""Uplift tree sub-package: models, preprocessing, splitting, scoring, and fitting."""

from __future__ import annotations

from upliftkit.uplift_tree.fitting import UpliftTreeModel
from upliftkit.uplift_tree.models import (
    CategoricalSplit,
    ColumnType,
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

__all__ = [
    "CategoricalSplit",
    "ColumnType",
    "DivergenceMetric",
    "NumericSplit",
    "Predicate",
    "SplitValue",
    "TreeNode",
    "UpliftRule",
    "UpliftSummary",
    "UpliftTreeConfig",
    "UpliftTreeModel",
    "UpliftTreeState",
]
