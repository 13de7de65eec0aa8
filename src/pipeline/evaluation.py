import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import accuracy_score, confusion_matrix, log_loss, recall_score

from src.common import check_columns, column_as_matrix


@dataclass
class MulticlassMetrics:
    accuracy_micro: float
    accuracy_macro: float
    log_loss: float
    confusion_matrix: np.ndarray

    def __str__(self):
        return (
            f"MulticlassMetrics(accuracy_micro={self.accuracy_micro:.4f}, "
            f"accuracy_macro={self.accuracy_macro:.4f}, log_loss={self.log_loss:.4f})"
        )


def evaluate_multiclass(
    df: pd.DataFrame,
    label_column: str = "Label",
    score_column: str = "Score",
    predicted_label_column: str = "PredictedLabel",
    classes: Optional[Sequence] = None,
) -> MulticlassMetrics:
    """Score a scored DataFrame.

    Micro accuracy is the fraction of rows predicted correctly; macro accuracy
    averages per-class accuracy over the classes present in ``label_column``.
    ``classes`` gives the label of each score slot and defaults to 0..k-1.
    """
    check_columns(df, [label_column, score_column, predicted_label_column], "Evaluation")
    if len(df) == 0:
        raise ValueError("Cannot evaluate an empty dataset")

    y_true = df[label_column].to_numpy()
    y_pred = df[predicted_label_column].to_numpy()
    scores = column_as_matrix(df[score_column], np.float64)
    scores = scores / scores.sum(axis=1, keepdims=True)
    if classes is None:
        classes = np.arange(scores.shape[1])
    classes = np.asarray(classes)
    if len(classes) != scores.shape[1]:
        raise ValueError(f"{len(classes)} classes given for {scores.shape[1]} score slots")

    present = np.unique(y_true)
    metrics = MulticlassMetrics(
        accuracy_micro=float(accuracy_score(y_true, y_pred)),
        accuracy_macro=float(recall_score(y_true, y_pred, labels=present, average="macro", zero_division=0)),
        log_loss=float(log_loss(y_true, scores, labels=classes)),
        confusion_matrix=confusion_matrix(y_true, y_pred, labels=classes),
    )
    logging.info(f"Evaluated {len(df)} rows: {metrics}")
    return metrics
