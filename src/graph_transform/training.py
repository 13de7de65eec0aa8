"""
Re-training of saved graph models.

The graph declares its loss, optional metric and optimizer operations; this
module feeds pipeline columns through them with ``torch.optim`` doing the
parameter updates.
"""

import logging
import os
import pickle
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import torch

from src.common import check_columns

from .config import ModelTransformerOptions
from .graph_model import GraphModel, column_to_batch


class TrainingHistory:
    def __init__(self, optimization_operation: Optional[str] = None):
        self.optimization_operation = optimization_operation
        self._losses = []
        self._metrics = []

    @property
    def num_epochs(self) -> int:
        return len(self._losses)

    @property
    def losses(self) -> List[float]:
        return list(self._losses)

    @property
    def metrics(self) -> List[float]:
        return list(self._metrics)

    def get_last_loss(self) -> float:
        return self._losses[-1]

    def get_last_metric(self) -> Optional[float]:
        if len(self._metrics):
            return self._metrics[-1]
        else:
            return None

    def add_epoch(self, loss: float, metric: Optional[float] = None):
        self._losses.append(loss)
        if metric is not None:
            self._metrics.append(metric)

    def load(self, file_name: str):
        if os.path.exists(file_name):
            with open(file_name, "rb") as file:
                self = pickle.load(file)
        else:
            raise FileNotFoundError("Training history not found", file_name)

        return self

    def save(self, file_name: str):
        with open(file_name, "wb") as file:
            pickle.dump(self, file)
        frame = {"epoch": np.arange(1, self.num_epochs + 1), "loss": self._losses}
        if len(self._metrics) == self.num_epochs:
            frame["metric"] = self._metrics
        pd.DataFrame(frame).to_csv(os.path.splitext(file_name)[0] + "_epochs.csv", index=False)


def _make_optimizer(model: GraphModel, options: ModelTransformerOptions) -> torch.optim.Optimizer:
    if options.optimization_operation not in model.optimizers:
        raise KeyError(
            f"Optimization operation '{options.optimization_operation}' not declared by "
            f"{model.location} (has {list(model.optimizers)})"
        )
    spec = model.optimizers[options.optimization_operation]

    if (
        options.learning_rate_operation is not None
        and options.learning_rate_operation != spec.learning_rate_operation
    ):
        raise ValueError(
            f"Learning rate operation '{options.learning_rate_operation}' does not belong to "
            f"'{options.optimization_operation}' (expected '{spec.learning_rate_operation}')"
        )

    optimizer_class = getattr(torch.optim, spec.optimizer_class, None)
    if optimizer_class is None:
        raise ValueError(f"Unknown optimizer class '{spec.optimizer_class}'")

    params = model.trainable_parameters()
    if not params:
        raise ValueError(f"Graph {model.location} has no trainable variables")

    learning_rate = options.learning_rate if options.learning_rate_operation else spec.learning_rate
    return optimizer_class(params, lr=learning_rate, **spec.kwargs)


def _training_feeds(
    model: GraphModel, options: ModelTransformerOptions, df: pd.DataFrame, fetches: List[str]
) -> Dict[str, np.ndarray]:
    bindings = {name: name for name in options.input_columns}
    bindings[options.tensor_label] = options.label_column
    check_columns(df, list(bindings.values()), "Re-training")

    feeds = {}
    for input_name in model.required_feeds(fetches):
        if input_name not in bindings:
            raise ValueError(f"Training operations need graph input '{input_name}' which is not bound to a column")
        feeds[input_name] = column_to_batch(df[bindings[input_name]], model.inputs[input_name], input_name)
    return feeds


def train_graph_model(
    model: GraphModel, options: ModelTransformerOptions, df: pd.DataFrame
) -> TrainingHistory:
    """Run ``options.epoch`` passes over ``df`` in row order.

    Returns:
        Per-epoch mean loss and metric
    """
    if model.frozen:
        raise ValueError(f"Re-training is only supported for saved models, not frozen graph {model.location}")

    fetches = [options.loss_operation]
    if options.metric_operation:
        fetches.append(options.metric_operation)

    optimizer = _make_optimizer(model, options)
    feeds = _training_feeds(model, options, df, fetches)
    num_rows = len(df)
    if num_rows == 0:
        raise ValueError("Cannot re-train on an empty dataset")

    history = TrainingHistory(options.optimization_operation)
    model.graph_module.train()
    try:
        for epoch in range(options.epoch):
            total_loss = 0.0
            total_metric = 0.0
            for start in range(0, num_rows, options.batch_size):
                batch = {name: values[start : start + options.batch_size] for name, values in feeds.items()}
                batch_rows = min(options.batch_size, num_rows - start)

                outputs = model.run(batch, fetches)
                loss = outputs[0]

                optimizer.zero_grad()
                loss.backward()
                optimizer.step()

                total_loss += loss.item() * batch_rows
                if options.metric_operation:
                    total_metric += outputs[1].item() * batch_rows

            mean_loss = total_loss / num_rows
            mean_metric = total_metric / num_rows if options.metric_operation else None
            history.add_epoch(mean_loss, mean_metric)
            if mean_metric is None:
                logging.info(f"Epoch [{epoch + 1}/{options.epoch}], Loss: {mean_loss:.4f}")
            else:
                logging.info(
                    f"Epoch [{epoch + 1}/{options.epoch}], Loss: {mean_loss:.4f}, "
                    f"{options.metric_operation}: {mean_metric:.4f}"
                )
    finally:
        model.graph_module.eval()

    return history
