"""
Delimited text loading into scalar and vector columns.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Tuple, Union

import numpy as np
import pandas as pd

from src.common import matrix_to_column


@dataclass
class TextColumn:
    """A column read from one field or an inclusive range of fields.

    A range source produces one vector per row, a single index a scalar.
    """

    name: str
    dtype: Any = np.float32
    source: Union[int, Tuple[int, int]] = 0

    def __post_init__(self):
        if isinstance(self.source, (list, tuple)):
            start, end = self.source
            if end < start:
                raise ValueError(f"Column '{self.name}': range end {end} before start {start}")
            self.source = (int(start), int(end))

    @property
    def is_vector(self) -> bool:
        return isinstance(self.source, tuple)

    @property
    def indices(self) -> List[int]:
        if self.is_vector:
            return list(range(self.source[0], self.source[1] + 1))
        return [self.source]


class TextLoader:
    def __init__(self, columns: List[TextColumn], has_header: bool = False, separator: str = "\t"):
        self.columns = columns
        self.has_header = has_header
        self.separator = separator

    def read(self, path: str) -> pd.DataFrame:
        raw = pd.read_csv(
            path,
            sep=self.separator,
            header=0 if self.has_header else None,
            dtype=str,
            keep_default_na=False,
        )
        num_fields = raw.shape[1]

        data = {}
        for column in self.columns:
            out_of_range = [i for i in column.indices if i >= num_fields]
            if out_of_range:
                raise ValueError(
                    f"Column '{column.name}' reads fields {out_of_range} but {path} has {num_fields} fields"
                )
            dtype = np.dtype(column.dtype)
            if column.is_vector:
                matrix = raw.iloc[:, column.indices].to_numpy().astype(dtype)
                data[column.name] = matrix_to_column(matrix)
            elif dtype.kind in "US":
                data[column.name] = raw.iloc[:, column.source].astype(str).reset_index(drop=True)
            else:
                data[column.name] = raw.iloc[:, column.source].astype(dtype).reset_index(drop=True)

        df = pd.DataFrame(data)
        logging.info(f"Read {len(df)} rows with columns {list(df.columns)} from {path}")
        return df
