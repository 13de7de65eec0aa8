"""
Pipeline stage binding DataFrame columns to graph model operations.
"""

import logging
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
import torch
from sklearn.base import BaseEstimator, TransformerMixin

from src.common import check_columns, set_seed, to_object_column

from .config import ModelTransformerOptions
from .graph_io import update_model_on_disk
from .graph_model import GraphModel, column_to_batch, load_graph_model
from .schema import Schema
from .training import train_graph_model


class GraphModelTransformer(BaseEstimator, TransformerMixin):
    """Feeds input columns to a graph and appends one column per fetched operation.

    Args:
        model: Model location (frozen graph file or saved model directory)
            or an already loaded GraphModel
        input_columns: Column name(s); each feeds the graph input of the same name
        output_columns: Operation name(s) to fetch; each becomes a new column
        options: Full ModelTransformerOptions, used instead of the three
            arguments above, required for re-training
        batch_size: Rows per graph execution when transforming
    """

    def __init__(
        self,
        model: Union[str, GraphModel, None] = None,
        input_columns: Union[str, List[str], None] = None,
        output_columns: Union[str, List[str], None] = None,
        options: Optional[ModelTransformerOptions] = None,
        batch_size: int = 64,
    ):
        self.model = model
        self.input_columns = input_columns
        self.output_columns = output_columns
        self.options = options
        self.batch_size = batch_size

    def _get_options(self) -> ModelTransformerOptions:
        if self.options is not None:
            return self.options
        if self.model is None:
            raise ValueError("Either a model or options must be given")
        location = self.model.location if isinstance(self.model, GraphModel) else self.model
        return ModelTransformerOptions(
            model_location=location,
            input_columns=self.input_columns,
            output_columns=self.output_columns,
            batch_size=self.batch_size,
        )

    @property
    def graph_model(self) -> GraphModel:
        if getattr(self, "graph_model_", None) is None:
            options = self._get_options()
            if isinstance(self.model, GraphModel):
                graph = self.model
            else:
                graph = load_graph_model(options.model_location)
            self._check_bindings(graph, options)
            self.graph_model_ = graph
        return self.graph_model_

    @staticmethod
    def _check_bindings(graph: GraphModel, options: ModelTransformerOptions):
        for name in options.input_columns:
            if name not in graph.inputs:
                raise ValueError(
                    f"Input column '{name}' does not match a graph input of {graph.location} "
                    f"(inputs are {list(graph.inputs)})"
                )
        for name in options.output_columns:
            # raises for unknown operations and operations without tensor output
            graph.get_output_type(name)

    def _input_batches(self, df: pd.DataFrame) -> Dict[str, np.ndarray]:
        options = self._get_options()
        graph = self.graph_model
        check_columns(df, options.input_columns, "Graph model transform")

        required = graph.required_feeds(options.output_columns)
        unbound = [name for name in required if name not in options.input_columns]
        if unbound:
            raise ValueError(f"Outputs {options.output_columns} need unbound graph inputs {unbound}")
        return {name: column_to_batch(df[name], graph.inputs[name], name) for name in required}

    def fit(self, X: pd.DataFrame, y=None):
        options = self._get_options()
        graph = self.graph_model
        if options.retrain:
            set_seed(options.seed)
            logging.info(
                f"Re-training {graph.location} for {options.epoch} epochs "
                f"(batch size {options.batch_size}, learning rate {options.learning_rate})"
            )
            self.history_ = train_graph_model(graph, options, X)
            self.backup_location_ = update_model_on_disk(graph.location, graph.state_dict())
        else:
            self._input_batches(X)
        return self

    def _split_rows(self, name: str, tensor: torch.Tensor, num_rows: int) -> List[np.ndarray]:
        graph = self.graph_model
        values = tensor.detach().cpu().numpy()
        if not graph.is_batched(name):
            return [values.copy() for _ in range(num_rows)]

        dims = graph.get_output_type(name).dims
        if values.shape != (num_rows,) + dims:
            raise ValueError(
                f"Operation '{name}' returned shape {list(values.shape)} for {num_rows} rows, "
                f"expected {[num_rows] + list(dims)}"
            )
        return [values[i].copy() for i in range(num_rows)]

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        options = self._get_options()
        graph = self.graph_model
        batches = self._input_batches(X)

        num_rows = len(X)
        results = {name: [] for name in options.output_columns}
        with torch.no_grad():
            for start in range(0, num_rows, options.batch_size):
                feeds = {name: values[start : start + options.batch_size] for name, values in batches.items()}
                batch_rows = min(options.batch_size, num_rows - start)
                outputs = graph.run(feeds, options.output_columns)
                for name, tensor in zip(options.output_columns, outputs):
                    results[name].extend(self._split_rows(name, tensor, batch_rows))

        output = X.copy()
        for name in options.output_columns:
            output[name] = to_object_column(results[name], index=X.index)
        return output

    def get_output_schema(self) -> Schema:
        """Schema of the columns this stage appends."""
        graph = self.graph_model
        return Schema([graph.get_operation_column(name) for name in self._get_options().output_columns])
