"""
Sequential row access over a DataFrame.

A RowCursor walks the rows of a DataFrame once. Values are read through
getters that overwrite a caller-supplied ValueBuffer, so the same buffer can
be reused for every row.
"""

from typing import Callable, List, Optional, Union

import numpy as np
import pandas as pd

from .schema import Schema, SchemaMismatchError, infer_dataframe_schema


class CursorStateError(RuntimeError):
    """Raised when a getter is used while the cursor is not on a row."""


class ValueBuffer:
    """Reusable holder for one row's value of a column, flattened."""

    def __init__(self, values: Optional[np.ndarray] = None):
        self.values = values if values is not None else np.empty(0)

    @property
    def length(self) -> int:
        return int(self.values.size)

    def __len__(self) -> int:
        return self.length

    def assign(self, value) -> None:
        value = np.asarray(value).reshape(-1)
        if self.values.shape == value.shape and self.values.dtype == value.dtype:
            np.copyto(self.values, value)
        else:
            self.values = value.copy()

    def __repr__(self) -> str:
        return f"ValueBuffer({self.values!r})"


Getter = Callable[[ValueBuffer], None]


class RowCursor:
    """Single-pass cursor over the rows of a DataFrame."""

    def __init__(self, df: pd.DataFrame, columns: Optional[List[Union[int, str]]] = None):
        self._df = df
        self.schema: Schema = infer_dataframe_schema(df)
        if columns is None:
            self._active = set(range(len(df.columns)))
        else:
            self._active = {self._column_index(c) for c in columns}
        self._position = -1
        self._done = False

    def _column_index(self, column: Union[int, str]) -> int:
        if isinstance(column, str):
            index = self.schema.get_column_index(column)
            if index is None:
                raise KeyError(f"Column '{column}' not found")
            return index
        if not 0 <= column < len(self._df.columns):
            raise IndexError(f"Column index {column} out of range")
        return column

    @property
    def position(self) -> int:
        return self._position

    def is_column_active(self, index: int) -> bool:
        return index in self._active

    def move_next(self) -> bool:
        """Advance to the next row; False once the rows are exhausted."""
        if self._done:
            return False
        if self._position + 1 >= len(self._df):
            self._done = True
            self._position = -1
            return False
        self._position += 1
        return True

    def get_getter(self, column: Union[int, str], dtype=None) -> Getter:
        """Getter for a column, optionally checking its item dtype."""
        index = self._column_index(column)
        if index not in self._active:
            raise ValueError(f"Column {index} was not requested from this cursor")

        column_type = self.schema[index].type
        if dtype is not None and column_type.item_type != np.dtype(dtype):
            raise SchemaMismatchError(
                f"Column '{self.schema[index].name}' holds {column_type.item_type}, not {np.dtype(dtype)}"
            )
        series = self._df.iloc[:, index]

        def getter(buffer: ValueBuffer) -> None:
            if self._position < 0:
                raise CursorStateError("Cursor is not positioned on a row")
            buffer.assign(series.iloc[self._position])

        return getter

    def close(self) -> None:
        self._done = True
        self._position = -1

    def __enter__(self) -> "RowCursor":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


def get_row_cursor(df: pd.DataFrame, *columns: Union[int, str]) -> RowCursor:
    """Cursor over the given columns, or over all columns when none are named."""
    return RowCursor(df, list(columns) if columns else None)
