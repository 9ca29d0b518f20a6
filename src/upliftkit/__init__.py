"""upliftkit: Uplift decision trees for heterogeneous treatment-effect estimation."""

from loguru import logger

from upliftkit.logging import PACKAGE_NAME, enable_logging
from upliftkit.persistence import load_model, save_model
from upliftkit.uplift_tree import UpliftTreeConfig, UpliftTreeModel

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the upliftkit module by default

__all__ = [
    "UpliftTreeConfig",
    "UpliftTreeModel",
    "enable_logging",
    "load_model",
    "save_model",
]
