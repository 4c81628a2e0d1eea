"""
Work catalog and dependency planning.
"""

from .loader import (
    DEFAULT_CATALOG_PATH,
    SectionDefinition,
    WorkCatalog,
    WorkItemDefinition,
    catalog_from_dict,
    load_catalog,
)
from .planner import ExecutionPlan, plan_execution_order

__all__ = [
    "DEFAULT_CATALOG_PATH",
    "ExecutionPlan",
    "SectionDefinition",
    "WorkCatalog",
    "WorkItemDefinition",
    "catalog_from_dict",
    "load_catalog",
    "plan_execution_order",
]
