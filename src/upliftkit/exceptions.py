"""Custom exceptions for upliftkit.

Column validation exceptions (subclass ValueError):
- ColumnsNotFoundError: requested columns do not exist in a DataFrame.
- DuplicateColumnsError: duplicate column names were provided.
- NullValuesError: columns used for training contain nulls.
- InvalidTreatmentError: the treatment column is not a binary 0/1 indicator
  with both arms present.

Configuration exceptions (subclass ConfigurationError, itself a ValueError):
- FeatureSampleSizeError: more features requested per node than exist.
- UnsupportedFeatureTypeError: a feature column is neither numeric nor string-typed.

Other:
- DegenerateGroupError (ArithmeticError): a treatment/control group count of
  zero would enter a ratio.
- ModelNotFittedError (RuntimeError): fitted state requested from an unfitted model.
- StateValidationError (ValueError): a persisted model state violates the node layout.
"""

from __future__ import annotations


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the DataFrame.

    Examples:
        >>> err = ColumnsNotFoundError(missing_columns=["treatment"], available_columns=["x", "y"])
        >>> err.missing_columns
        ['treatment']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(self, missing_columns: list[str], available_columns: list[str]) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the DataFrame.
            available_columns (list[str]): Column names present in the DataFrame.
        """
        super().__init__(f"Columns not found in DataFrame: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(ValueError):
    """Raised when duplicate column names are provided.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): Each duplicated name, listed once.

    Examples:
        >>> DuplicateColumnsError(columns=["t", "t"]).duplicate_columns
        ['t']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        super().__init__(f"Duplicate column names are not allowed: {columns}")
        self.columns = columns
        self.duplicate_columns = sorted({col for col in columns if columns.count(col) > 1})


class NullValuesError(ValueError):
    """Raised when columns used for training contain null values.

    Attributes:
        columns (list[str]): Column names holding at least one null.
    """

    columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize NullValuesError.

        Args:
            columns (list[str]): Column names holding at least one null.
        """
        super().__init__(f"Columns contain null values: {columns}. Remove or impute nulls before fitting.")
        self.columns = columns


class InvalidTreatmentError(ValueError):
    """Raised when the treatment column is not a usable 0/1 indicator.

    Attributes:
        column (str): The treatment column name.
        values (list[object]): Distinct treatment values found in the data.
    """

    column: str
    values: list[object]

    def __init__(self, message: str, *, column: str, values: list[object]) -> None:
        """Initialize InvalidTreatmentError.

        Args:
            message (str): Description of the problem.
            column (str): The treatment column name.
            values (list[object]): Distinct treatment values found in the data.
        """
        super().__init__(message)
        self.column = column
        self.values = values


class ConfigurationError(ValueError):
    """Base class for fatal pre-flight configuration errors raised by ``fit``."""


class FeatureSampleSizeError(ConfigurationError):
    """Raised when ``feature_sample_size`` exceeds the number of feature columns.

    Attributes:
        feature_sample_size (int): The configured sample size.
        available_features (list[str]): Feature columns present in the data.
    """

    feature_sample_size: int
    available_features: list[str]

    def __init__(self, feature_sample_size: int, available_features: list[str]) -> None:
        """Initialize FeatureSampleSizeError.

        Args:
            feature_sample_size (int): The configured sample size.
            available_features (list[str]): Feature columns present in the data.
        """
        super().__init__(
            f"feature_sample_size={feature_sample_size} exceeds the {len(available_features)} "
            f"available feature columns: {available_features}"
        )
        self.feature_sample_size = feature_sample_size
        self.available_features = available_features


class UnsupportedFeatureTypeError(ConfigurationError):
    """Raised when a feature column is neither numeric nor string-typed.

    Attributes:
        column (str): The offending column name.
        dtype (str): String form of the column's Polars dtype.
    """

    column: str
    dtype: str

    def __init__(self, column: str, dtype: str) -> None:
        """Initialize UnsupportedFeatureTypeError.

        Args:
            column (str): The offending column name.
            dtype (str): String form of the column's Polars dtype.
        """
        super().__init__(f"Feature column '{column}' has unsupported dtype {dtype}; only numeric and string features")
        self.column = column
        self.dtype = dtype


class DegenerateGroupError(ArithmeticError):
    """Raised when a zero treatment or control count would be used as a divisor."""


class ModelNotFittedError(RuntimeError):
    """Raised when fitted state is requested from a model that has not been fitted."""


class StateValidationError(ValueError):
    """Raised when a persisted model state is inconsistent with the tree layout."""
