import os
import random
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd
import torch


def set_seed(seed: Optional[int]):
    """Seed python, numpy and torch; no-op for None."""
    if seed is None:
        return
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


def to_object_column(values: Iterable, index: Optional[pd.Index] = None) -> pd.Series:
    """Build a Series whose cells are the given arrays, one per row."""
    values = list(values)
    cells = np.empty(len(values), dtype=object)
    for i, value in enumerate(values):
        cells[i] = value
    return pd.Series(cells, index=index)


def column_as_matrix(series: pd.Series, dtype=None) -> np.ndarray:
    """Stack scalar or vector cells into a 2-d (rows, values) array."""
    if series.dtype != object:
        matrix = series.to_numpy().reshape(-1, 1)
    elif len(series) == 0:
        matrix = np.zeros((0, 0))
    else:
        matrix = np.stack([np.asarray(v).reshape(-1) for v in series])
    return matrix if dtype is None else matrix.astype(dtype, copy=False)


def matrix_to_column(matrix: np.ndarray, index: Optional[pd.Index] = None) -> pd.Series:
    return to_object_column((row.copy() for row in matrix), index=index)


def check_columns(df: pd.DataFrame, columns: List[str], stage: str):
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{stage}: columns {missing} not found in data (have {list(df.columns)})")


def resolve_model_location(location: str) -> str:
    """Resolve a relative model location against $GRAPH_MODELS_DIR when it is set."""
    models_dir = os.environ.get("GRAPH_MODELS_DIR")
    if models_dir and not os.path.isabs(location) and not os.path.exists(location):
        return os.path.join(models_dir, location)
    return location
