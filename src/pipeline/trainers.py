"""
Multiclass trainer stage over a vector feature column.
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.ensemble import HistGradientBoostingClassifier

from src.common import check_columns, column_as_matrix, matrix_to_column, to_object_column


class GradientBoostingTrainer(BaseEstimator, TransformerMixin):
    """Gradient boosted trees on ``feature_column`` predicting ``label_column``.

    ``transform`` appends a float32 ``Score`` vector (one probability per
    class, ordered as ``classes_``) and the ``PredictedLabel``.
    """

    def __init__(
        self,
        label_column: str = "Label",
        feature_column: str = "Features",
        max_iter: int = 100,
        learning_rate: float = 0.1,
        min_samples_leaf: int = 20,
        random_state: Optional[int] = None,
        score_column: str = "Score",
        predicted_label_column: str = "PredictedLabel",
    ):
        self.label_column = label_column
        self.feature_column = feature_column
        self.max_iter = max_iter
        self.learning_rate = learning_rate
        self.min_samples_leaf = min_samples_leaf
        self.random_state = random_state
        self.score_column = score_column
        self.predicted_label_column = predicted_label_column

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [self.label_column, self.feature_column], "GradientBoostingTrainer")
        features = column_as_matrix(X[self.feature_column], np.float32)
        labels = X[self.label_column].to_numpy()

        logging.info(f"Training gradient boosting on {features.shape[0]} rows, {features.shape[1]} features")
        self.classifier_ = HistGradientBoostingClassifier(
            max_iter=self.max_iter,
            learning_rate=self.learning_rate,
            min_samples_leaf=self.min_samples_leaf,
            random_state=self.random_state,
        )
        self.classifier_.fit(features, labels)
        self.classes_ = self.classifier_.classes_
        logging.info(f"Trained with {len(self.classes_)} classes in {self.classifier_.n_iter_} iterations")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [self.feature_column], "GradientBoostingTrainer")
        features = column_as_matrix(X[self.feature_column], np.float32)
        scores = self.classifier_.predict_proba(features).astype(np.float32)

        output = X.copy()
        output[self.score_column] = matrix_to_column(scores, index=X.index)
        predicted = self.classes_[np.argmax(scores, axis=1)]
        if predicted.dtype == object:
            output[self.predicted_label_column] = to_object_column(predicted, index=X.index)
        else:
            output[self.predicted_label_column] = pd.Series(predicted, index=X.index)
        return output
