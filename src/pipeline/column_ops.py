"""
Column-level estimators for DataFrame pipelines.

Every stage takes a DataFrame and returns a copy with its output column added
or replaced, so stages compose in a scikit-learn Pipeline.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder

from src.common import check_columns, column_as_matrix, matrix_to_column


class CopyColumns(BaseEstimator, TransformerMixin):
    """Copy each ``(source, destination)`` pair of columns."""

    def __init__(self, columns: Sequence[Tuple[str, str]] = ()):
        self.columns = columns

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [source for source, _ in self.columns], "CopyColumns")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [source for source, _ in self.columns], "CopyColumns")
        output = X.copy()
        for source, destination in self.columns:
            output[destination] = X[source].copy()
        return output

    def __sklearn_is_fitted__(self):
        return True


class Concatenate(BaseEstimator, TransformerMixin):
    """Concatenate scalar or vector columns into one vector column."""

    def __init__(self, output_column: str = "Features", input_columns: Sequence[str] = (), dtype=None):
        self.output_column = output_column
        self.input_columns = input_columns
        self.dtype = dtype

    def _input_columns(self) -> List[str]:
        if isinstance(self.input_columns, str):
            return [self.input_columns]
        return list(self.input_columns)

    def fit(self, X: pd.DataFrame, y=None):
        if not self._input_columns():
            raise ValueError("Concatenate needs at least one input column")
        check_columns(X, self._input_columns(), "Concatenate")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        columns = self._input_columns()
        check_columns(X, columns, "Concatenate")
        matrix = np.concatenate([column_as_matrix(X[c]) for c in columns], axis=1)
        if self.dtype is not None:
            matrix = matrix.astype(self.dtype)
        output = X.copy()
        output[self.output_column] = matrix_to_column(matrix, index=X.index)
        return output

    def __sklearn_is_fitted__(self):
        return True


class OneHotEncoding(BaseEstimator, TransformerMixin):
    """Encode a scalar column as float32 indicator vectors.

    Categories are learned in ``fit``; values unseen during fit encode to all zeros.
    """

    def __init__(self, input_column: str = "Label", output_column: Optional[str] = None):
        self.input_column = input_column
        self.output_column = output_column

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [self.input_column], "OneHotEncoding")
        self.encoder_ = OneHotEncoder(sparse_output=False, dtype=np.float32, handle_unknown="ignore")
        self.encoder_.fit(X[self.input_column].to_numpy().reshape(-1, 1))
        logging.info(f"One-hot encoding '{self.input_column}' with {len(self.encoder_.categories_[0])} categories")
        return self

    @property
    def categories_(self) -> np.ndarray:
        return self.encoder_.categories_[0]

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [self.input_column], "OneHotEncoding")
        encoded = self.encoder_.transform(X[self.input_column].to_numpy().reshape(-1, 1))
        output = X.copy()
        output[self.output_column or self.input_column] = matrix_to_column(encoded, index=X.index)
        return output


class MinMaxNormalizer(BaseEstimator, TransformerMixin):
    """Scale every slot of a vector column to [0, 1] using the ranges seen in fit."""

    def __init__(self, input_column: str = "Features", output_column: Optional[str] = None):
        self.input_column = input_column
        self.output_column = output_column

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [self.input_column], "MinMaxNormalizer")
        self.scaler_ = MinMaxScaler()
        self.scaler_.fit(column_as_matrix(X[self.input_column], np.float32))
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [self.input_column], "MinMaxNormalizer")
        scaled = self.scaler_.transform(column_as_matrix(X[self.input_column], np.float32))
        output = X.copy()
        output[self.output_column or self.input_column] = matrix_to_column(
            scaled.astype(np.float32), index=X.index
        )
        return output


class ValueToKeyMapper(BaseEstimator, TransformerMixin):
    """Map each distinct value of a column to an integer key.

    Keys are assigned in order of first appearance, at most ``max_num_terms``
    of them; values without a key map to -1.
    """

    def __init__(self, input_column: str = "Label", output_column: Optional[str] = None, max_num_terms: int = 1000000):
        self.input_column = input_column
        self.output_column = output_column
        self.max_num_terms = max_num_terms

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [self.input_column], "ValueToKeyMapper")
        if self.max_num_terms <= 0:
            raise ValueError(f"max_num_terms must be positive, got {self.max_num_terms}")
        terms = pd.unique(X[self.input_column])[: self.max_num_terms]
        self.terms_ = terms
        self.mapping_ = {term: key for key, term in enumerate(terms)}
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [self.input_column], "ValueToKeyMapper")
        keys = X[self.input_column].map(self.mapping_).fillna(-1).astype(np.int64)
        output = X.copy()
        output[self.output_column or self.input_column] = keys
        return output


class RowShuffler(BaseEstimator, TransformerMixin):
    """Return the rows in a seeded random order with a fresh index."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed

    def fit(self, X: pd.DataFrame, y=None):
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        return X.sample(frac=1.0, random_state=self.seed).reset_index(drop=True)

    def __sklearn_is_fitted__(self):
        return True
