"""
Schema types for graph models and DataFrames.

A schema is an ordered list of named columns. Each column has a vector type
(item dtype plus ordered dimension sizes) and a metadata dict. Columns that
describe graph operations carry the operation type and, when the operation
has inputs, the names of its upstream operations.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

OPERATOR_TYPE_KIND = "OperatorType"
UPSTREAM_OPERATORS_KIND = "UpstreamOperators"


class SchemaMismatchError(TypeError):
    """Raised when a column's type does not match what a consumer expects."""


class ShapeMismatchError(ValueError):
    """Raised when a column's per-row shape does not match a graph input."""


@dataclass(frozen=True)
class VectorType:
    """Item dtype and per-row dimensions of a column."""

    item_type: Optional[np.dtype]
    dims: Tuple[int, ...] = ()

    @property
    def size(self) -> int:
        return int(np.prod(self.dims)) if self.dims else 1

    @property
    def is_scalar(self) -> bool:
        return len(self.dims) == 0

    def __repr__(self) -> str:
        item = self.item_type.name if self.item_type is not None else "unknown"
        return f"VectorType({item}, dims={list(self.dims)})"


@dataclass
class SchemaColumn:
    name: str
    type: VectorType
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def operator_type(self) -> Optional[str]:
        return self.metadata.get(OPERATOR_TYPE_KIND)

    @property
    def upstream_operators(self) -> Optional[List[str]]:
        return self.metadata.get(UPSTREAM_OPERATORS_KIND)


class Schema:
    """Ordered collection of columns addressable by position or name."""

    def __init__(self, columns: List[SchemaColumn]):
        self._columns = list(columns)
        self._index = {}
        for i, column in enumerate(self._columns):
            # later columns hide earlier ones with the same name
            self._index[column.name] = i

    def __len__(self) -> int:
        return len(self._columns)

    def __iter__(self) -> Iterator[SchemaColumn]:
        return iter(self._columns)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __getitem__(self, key: Union[int, str]) -> SchemaColumn:
        if isinstance(key, str):
            if key not in self._index:
                raise KeyError(f"Column '{key}' not found in schema")
            return self._columns[self._index[key]]
        return self._columns[key]

    @property
    def names(self) -> List[str]:
        return [column.name for column in self._columns]

    def get_column_index(self, name: str) -> Optional[int]:
        """Return the position of ``name``, or None when the schema lacks it."""
        return self._index.get(name)

    def __repr__(self) -> str:
        return f"Schema({', '.join(f'{c.name}: {c.type!r}' for c in self._columns)})"


def infer_column_type(series: pd.Series) -> VectorType:
    """Infer the vector type of a DataFrame column from its first cell."""
    if isinstance(series.dtype, np.dtype) and series.dtype != object:
        return VectorType(series.dtype, ())
    if len(series) == 0:
        return VectorType(None, ())
    first = np.asarray(series.iloc[0])
    return VectorType(first.dtype, tuple(first.shape))


def infer_dataframe_schema(df: pd.DataFrame) -> Schema:
    return Schema([SchemaColumn(str(name), infer_column_type(df[name])) for name in df.columns])
