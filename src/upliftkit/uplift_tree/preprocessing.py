"""Preprocessing pipeline: dataset loading, column classification, validation, and casting."""

from __future__ import annotations

from pathlib import Path
from typing import NamedTuple, TypeAlias

import polars as pl
from loguru import logger

from upliftkit.exceptions import (
    FeatureSampleSizeError,
    InvalidTreatmentError,
    UnsupportedFeatureTypeError,
)
from upliftkit.polars_utils import validate_columns, validate_no_nulls
from upliftkit.uplift_tree.models import ColumnType

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

_TREATMENT_VALUES: frozenset[int] = frozenset({0, 1})

_DTYPE_TO_COLUMN_TYPE: dict[type[pl.DataType] | pl.DataType, ColumnType] = {
    pl.Int8: "numeric",
    pl.Int16: "numeric",
    pl.Int32: "numeric",
    pl.Int64: "numeric",
    pl.UInt8: "numeric",
    pl.UInt16: "numeric",
    pl.UInt32: "numeric",
    pl.UInt64: "numeric",
    pl.Float32: "numeric",
    pl.Float64: "numeric",
    pl.String: "categorical",
    pl.Categorical: "categorical",
}

_FILE_READERS = {
    ".parquet": pl.scan_parquet,
    ".csv": pl.scan_csv,
    ".ipc": pl.scan_ipc,
    ".arrow": pl.scan_ipc,
    ".feather": pl.scan_ipc,
}

DatasetSource: TypeAlias = pl.DataFrame | pl.LazyFrame | str | Path


class PreparedDataset(NamedTuple):
    """A dataset ready for tree building.

    Attributes:
        df (pl.DataFrame): Features cast to Float64/Categorical, treatment and
            outcome cast to Int32.
        feature_columns (list[str]): Feature names in the dataset's column order.
        column_types (dict[str, ColumnType]): Classification of each feature.
    """

    df: pl.DataFrame
    feature_columns: list[str]
    column_types: dict[str, ColumnType]


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def load_dataset(source: DatasetSource) -> pl.DataFrame:
    """Load the full training dataset eagerly.

    Args:
        source (DatasetSource): An in-memory DataFrame or LazyFrame, or a path
            to a parquet, CSV, or Arrow IPC file.

    Returns:
        pl.DataFrame: The collected dataset.

    Raises:
        ValueError: If a path has an unrecognized file extension.
    """
    if isinstance(source, pl.DataFrame):
        return source
    if isinstance(source, pl.LazyFrame):
        return source.collect()

    path = Path(source)
    reader = _FILE_READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported dataset file type '{path.suffix}'. Expected one of {sorted(_FILE_READERS)}")
    logger.debug("Loading dataset", path=str(path))
    return reader(path).collect()


def classify_column(dtype: pl.DataType) -> ColumnType | None:
    """Classify a Polars dtype as a numeric or categorical feature.

    Parameterized dtypes (e.g. `Enum([...])` or `Categorical("lexical")`) do
    not hash like their bare classes, so an `isinstance` fallback handles them.

    Args:
        dtype (pl.DataType): The dtype to classify.

    Returns:
        ColumnType | None: `"numeric"`, `"categorical"`, or `None` when the
            dtype cannot be used as a feature.
    """
    result = _DTYPE_TO_COLUMN_TYPE.get(dtype)
    if result is not None:
        return result
    if isinstance(dtype, (pl.Categorical, pl.Enum)):
        return "categorical"
    if dtype.is_numeric():
        return "numeric"
    return None


def select_feature_columns(columns: list[str], treatment_column: str, outcome_column: str) -> list[str]:
    """Return every column except the treatment and outcome, in native order.

    Args:
        columns (list[str]): All column names of the dataset.
        treatment_column (str): Treatment indicator column.
        outcome_column (str): Outcome column.

    Returns:
        list[str]: Feature column names.
    """
    return [col for col in columns if col not in {treatment_column, outcome_column}]


def prepare_dataset(
    df: pl.DataFrame,
    *,
    treatment_column: str,
    outcome_column: str,
    feature_sample_size: int,
) -> PreparedDataset:
    """Validate and cast a raw dataset for tree building.

    Args:
        df (pl.DataFrame): The raw dataset.
        treatment_column (str): Treatment indicator column (0 = control, 1 = treatment).
        outcome_column (str): Outcome column summed per arm.
        feature_sample_size (int): Features sampled per node; must not exceed
            the number of feature columns.

    Returns:
        PreparedDataset: The cast dataset with its feature metadata.

    Raises:
        ColumnsNotFoundError: If the treatment or outcome column is missing.
        DuplicateColumnsError: If treatment and outcome name the same column.
        FeatureSampleSizeError: If there are fewer features than `feature_sample_size`.
        UnsupportedFeatureTypeError: If a feature is neither numeric nor string-typed.
        NullValuesError: If any used column contains nulls.
        InvalidTreatmentError: If treatment values are not 0/1 or one arm is absent.
    """
    validate_columns([treatment_column, outcome_column], df.columns)

    feature_columns = select_feature_columns(df.columns, treatment_column, outcome_column)
    if feature_sample_size > len(feature_columns):
        raise FeatureSampleSizeError(feature_sample_size=feature_sample_size, available_features=feature_columns)

    column_types = _classify_features(df, feature_columns)
    validate_no_nulls(df, [*feature_columns, treatment_column, outcome_column])
    # Checked before the Int32 cast, which would truncate e.g. 0.4 to 0.
    _validate_treatment(df[treatment_column])

    cast_exprs = [
        pl.col(name).cast(pl.Categorical if column_type == "categorical" else pl.Float64)
        for name, column_type in column_types.items()
    ]
    prepared = df.with_columns(
        *cast_exprs,
        pl.col(treatment_column).cast(pl.Int32),
        pl.col(outcome_column).cast(pl.Int32),
    )

    return PreparedDataset(df=prepared, feature_columns=feature_columns, column_types=column_types)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _classify_features(df: pl.DataFrame, feature_columns: list[str]) -> dict[str, ColumnType]:
    """Classify every feature column, failing on the first unsupported dtype.

    Args:
        df (pl.DataFrame): The raw dataset.
        feature_columns (list[str]): Feature names to classify.

    Returns:
        dict[str, ColumnType]: Column type per feature, in feature order.

    Raises:
        UnsupportedFeatureTypeError: If a column cannot be used as a feature.
    """
    column_types: dict[str, ColumnType] = {}
    for name in feature_columns:
        dtype = df.schema[name]
        column_type = classify_column(dtype)
        if column_type is None:
            raise UnsupportedFeatureTypeError(column=name, dtype=str(dtype))
        column_types[name] = column_type
    logger.debug(
        "Classified feature columns",
        numeric=[name for name, kind in column_types.items() if kind == "numeric"],
        categorical=[name for name, kind in column_types.items() if kind == "categorical"],
    )
    return column_types


def _validate_treatment(series: pl.Series) -> None:
    """Check that the treatment column is binary with both arms present.

    Values are compared as read, so `0.0` and `1.0` pass while `0.4` or
    `"1"` do not.

    Args:
        series (pl.Series): The raw treatment column.

    Raises:
        InvalidTreatmentError: On values outside {0, 1} or a missing arm.
    """
    values = sorted(series.unique().to_list())
    if not set(values) <= _TREATMENT_VALUES:
        raise InvalidTreatmentError(
            f"Treatment column '{series.name}' must contain only 0 (control) and 1 (treatment), got {values}",
            column=series.name,
            values=values,
        )
    if len(values) != len(_TREATMENT_VALUES):
        raise InvalidTreatmentError(
            f"Treatment column '{series.name}' must contain both control and treatment rows, got only {values}",
            column=series.name,
            values=values,
        )
