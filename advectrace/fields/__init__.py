# advectrace/fields/__init__.py
"""
Field snapshot model for advectrace.

Contains:
- base: FieldBlock protocol, locator strategies, barycentric helpers
- structured: uniform grid blocks (trilinear)
- unstructured: tetrahedral blocks (barycentric, scipy locators)
- snapshot: multi-block snapshot at one time
- schema: attribute schema and validity gate
- time_series: temporal dataset providers
"""

from .base import (
    CELL_TOLERANCE,
    BlockSample,
    FieldBlock,
    LocatorStrategy,
    velocity_curl,
)
from .structured import StructuredBlock, create_uniform_block
from .unstructured import TetrahedralBlock, create_tetrahedral_block
from .snapshot import FieldSnapshot
from .schema import ArraySpec, AttributeSchema, validate_point_data
from .time_series import (
    TemporalDatasetProvider,
    InMemoryTemporalDataset,
    FunctionTemporalDataset,
    constant_velocity,
    solid_body_rotation,
)

__all__ = [
    # base
    "CELL_TOLERANCE",
    "BlockSample",
    "FieldBlock",
    "LocatorStrategy",
    "velocity_curl",
    # blocks
    "StructuredBlock",
    "create_uniform_block",
    "TetrahedralBlock",
    "create_tetrahedral_block",
    "FieldSnapshot",
    # schema
    "ArraySpec",
    "AttributeSchema",
    "validate_point_data",
    # providers
    "TemporalDatasetProvider",
    "InMemoryTemporalDataset",
    "FunctionTemporalDataset",
    "constant_velocity",
    "solid_body_rotation",
]
