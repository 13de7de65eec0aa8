"""
Graph model bindings for DataFrame pipelines.

This module provides the stage that loads a serialized computation graph,
binds DataFrame columns to its inputs and appends the values of named graph
operations as new columns, plus schema introspection and row cursors over the
results.
"""


from .config import ConfigBuilder, ModelTransformerOptions
from .cursor import CursorStateError, RowCursor, ValueBuffer, get_row_cursor
from .graph_io import (
    InputSpec,
    ModelFormatError,
    OptimizerSpec,
    freeze_graph,
    load_artifact,
    restore_variables,
    save_graph_model,
    update_model_on_disk,
)
from .graph_model import GraphModel, get_model_schema, load_graph_model
from .schema import (
    OPERATOR_TYPE_KIND,
    UPSTREAM_OPERATORS_KIND,
    Schema,
    SchemaColumn,
    SchemaMismatchError,
    ShapeMismatchError,
    VectorType,
    infer_dataframe_schema,
)
from .training import TrainingHistory, train_graph_model
from .transformer import GraphModelTransformer

__all__ = [
    "ConfigBuilder",
    "ModelTransformerOptions",
    "CursorStateError",
    "RowCursor",
    "ValueBuffer",
    "get_row_cursor",
    "InputSpec",
    "ModelFormatError",
    "OptimizerSpec",
    "freeze_graph",
    "load_artifact",
    "restore_variables",
    "save_graph_model",
    "update_model_on_disk",
    "GraphModel",
    "get_model_schema",
    "load_graph_model",
    "OPERATOR_TYPE_KIND",
    "UPSTREAM_OPERATORS_KIND",
    "Schema",
    "SchemaColumn",
    "SchemaMismatchError",
    "ShapeMismatchError",
    "VectorType",
    "infer_dataframe_schema",
    "TrainingHistory",
    "train_graph_model",
    "GraphModelTransformer",
]
