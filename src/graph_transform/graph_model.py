"""
Executable view of a graph model artifact.

GraphModel rebuilds the ``torch.fx`` module of an artifact, infers the shape
and type of every operation and runs the minimal sub-graph needed to fetch a
set of named operations.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import torch
import torch.fx
from torch.fx.passes.shape_prop import ShapeProp, TensorMetadata

from .graph_io import (
    GraphArtifact,
    InputSpec,
    OptimizerSpec,
    build_graph_module,
    fetch_attr,
    load_artifact,
)
from .schema import (
    OPERATOR_TYPE_KIND,
    UPSTREAM_OPERATORS_KIND,
    Schema,
    SchemaColumn,
    SchemaMismatchError,
    ShapeMismatchError,
    VectorType,
)

_TORCH_TO_NUMPY = {
    torch.float16: np.float16,
    torch.float32: np.float32,
    torch.float64: np.float64,
    torch.int8: np.int8,
    torch.int16: np.int16,
    torch.int32: np.int32,
    torch.int64: np.int64,
    torch.uint8: np.uint8,
    torch.uint16: np.uint16,
    torch.uint32: np.uint32,
    torch.uint64: np.uint64,
    torch.bool: np.bool_,
}


def numpy_dtype(dtype: torch.dtype) -> Optional[np.dtype]:
    """numpy equivalent of a torch dtype, None when there is none."""
    if dtype not in _TORCH_TO_NUMPY:
        return None
    return np.dtype(_TORCH_TO_NUMPY[dtype])


def to_tensor(value: Any) -> torch.Tensor:
    if isinstance(value, torch.Tensor):
        return value
    return torch.from_numpy(np.ascontiguousarray(value))


def column_to_batch(series: pd.Series, spec: InputSpec, input_name: str) -> np.ndarray:
    """Stack a column into a batch array shaped and typed for a graph input.

    Raises:
        ShapeMismatchError: if a row does not hold exactly the number of
            values the input shape needs
        SchemaMismatchError: if the column dtype does not cast safely to the
            input dtype
    """
    values = [np.asarray(v) for v in series]
    if not values:
        return np.zeros((0,) + spec.dims, dtype=spec.dtype)

    expected = int(np.prod(spec.dims)) if spec.dims else 1
    sizes = sorted({v.size for v in values})
    if sizes != [expected]:
        raise ShapeMismatchError(
            f"Input '{input_name}' has shape {list(spec.dims)} ({expected} values per row) "
            f"but column '{series.name}' holds {sizes} values per row"
        )
    for dtype in sorted({v.dtype for v in values}, key=str):
        if not np.can_cast(dtype, spec.dtype, casting="safe"):
            raise SchemaMismatchError(
                f"Column '{series.name}' of type {dtype} cannot feed input '{input_name}' of type {spec.dtype}"
            )
    return np.stack([v.reshape(spec.dims) for v in values]).astype(spec.dtype, copy=False)


class GraphModel:
    """A loaded graph with named operations."""

    def __init__(self, artifact: GraphArtifact):
        self.artifact = artifact
        self.graph_module, self._nodes = build_graph_module(artifact)
        self.graph_module.eval()
        self._names = {node: name for name, node in self._nodes.items()}
        self._fetch_modules: Dict[Tuple[str, ...], Tuple[torch.fx.GraphModule, List[str]]] = {}
        self._batched = self._find_batched_nodes()
        self._shapes = self._propagate_shapes()
        logging.info(
            f"Loaded graph {self.location} with {len(self._nodes)} operations "
            f"({'frozen' if self.frozen else 'saved model'})"
        )

    @property
    def location(self) -> str:
        return self.artifact.location

    @property
    def frozen(self) -> bool:
        return self.artifact.frozen

    @property
    def inputs(self) -> Dict[str, InputSpec]:
        return self.artifact.inputs

    @property
    def optimizers(self) -> Dict[str, OptimizerSpec]:
        return self.artifact.optimizers

    @property
    def operation_names(self) -> List[str]:
        return list(self._nodes.keys())

    def has_operation(self, name: str) -> bool:
        return name in self._nodes

    def _node(self, name: str) -> torch.fx.Node:
        if name not in self._nodes:
            raise KeyError(f"Operation '{name}' not found in graph {self.location}")
        return self._nodes[name]

    def _find_batched_nodes(self) -> set:
        batched = set()
        for node in self.graph_module.graph.nodes:
            if node.op == "placeholder" or any(n in batched for n in node.all_input_nodes):
                batched.add(node)
        return batched

    def _example_inputs(self) -> List[torch.Tensor]:
        examples = []
        for node in self.graph_module.graph.nodes:
            if node.op != "placeholder":
                continue
            spec = self.inputs[self._names[node]]
            examples.append(to_tensor(np.zeros((1,) + spec.dims, dtype=spec.dtype)))
        return examples

    def _propagate_shapes(self) -> Dict[torch.fx.Node, Tuple[torch.dtype, Tuple[int, ...]]]:
        with torch.no_grad():
            ShapeProp(self.graph_module).propagate(*self._example_inputs())

        shapes = {}
        for node in self.graph_module.graph.nodes:
            meta = node.meta.get("tensor_meta")
            if node.op == "output" or not isinstance(meta, TensorMetadata):
                continue
            dims = tuple(int(d) for d in meta.shape)
            if node in self._batched:
                dims = dims[1:]
            shapes[node] = (meta.dtype, dims)
        return shapes

    def is_batched(self, name: str) -> bool:
        """Whether the operation's value depends on a graph input."""
        return self._node(name) in self._batched

    def operation_type(self, name: str) -> str:
        node = self._node(name)
        if node.op == "placeholder":
            return "Placeholder"
        if node.op == "get_attr":
            value = fetch_attr(self.graph_module, node.target)
            is_variable = isinstance(value, torch.nn.Parameter) and value.requires_grad
            return "Variable" if is_variable else "Constant"
        if node.op == "call_module":
            return type(self.graph_module.get_submodule(node.target)).__name__
        if node.op == "call_method":
            return node.target
        return getattr(node.target, "__name__", str(node.target))

    def upstream_operations(self, name: str) -> List[str]:
        return [self._names[n] for n in self._node(name).all_input_nodes]

    def get_output_type(self, name: str) -> VectorType:
        node = self._node(name)
        if node not in self._shapes:
            raise ValueError(f"Operation '{name}' does not produce a tensor")
        dtype, dims = self._shapes[node]
        return VectorType(numpy_dtype(dtype), dims)

    def get_operation_column(self, name: str) -> SchemaColumn:
        """Schema column describing one operation."""
        metadata = {OPERATOR_TYPE_KIND: self.operation_type(name)}
        upstream = self.upstream_operations(name)
        if upstream:
            metadata[UPSTREAM_OPERATORS_KIND] = upstream
        return SchemaColumn(name, self.get_output_type(name), metadata)

    def get_model_schema(self) -> Schema:
        """One column per tensor-producing operation, in graph order."""
        return Schema(
            [
                self.get_operation_column(self._names[node])
                for node in self.graph_module.graph.nodes
                if node in self._shapes
            ]
        )

    def get_input_schema(self) -> Schema:
        columns = []
        for node in self.graph_module.graph.nodes:
            if node.op != "placeholder":
                continue
            spec = self.inputs[self._names[node]]
            columns.append(
                SchemaColumn(
                    self._names[node],
                    VectorType(spec.dtype, spec.dims),
                    {OPERATOR_TYPE_KIND: "Placeholder"},
                )
            )
        return Schema(columns)

    def _fetch_module(self, fetches: Tuple[str, ...]) -> Tuple[torch.fx.GraphModule, List[str]]:
        if fetches in self._fetch_modules:
            return self._fetch_modules[fetches]

        targets = [self._node(name) for name in fetches]
        needed = set()
        stack = list(targets)
        while stack:
            node = stack.pop()
            if node in needed:
                continue
            needed.add(node)
            stack.extend(node.all_input_nodes)

        graph = torch.fx.Graph()
        env = {}
        for node in self.graph_module.graph.nodes:
            if node in needed:
                env[node] = graph.node_copy(node, lambda n: env[n])
        graph.output(tuple(env[node] for node in targets))

        # attributes are shared with the full module, so training is visible here
        module = torch.fx.GraphModule(self.graph_module, graph)
        feed_names = [
            self._names[node]
            for node in self.graph_module.graph.nodes
            if node.op == "placeholder" and node in needed
        ]
        self._fetch_modules[fetches] = (module, feed_names)
        return module, feed_names

    def required_feeds(self, fetches: Sequence[str]) -> List[str]:
        """Graph inputs that must be fed to compute ``fetches``."""
        return list(self._fetch_module(tuple(fetches))[1])

    def run(self, feeds: Dict[str, Any], fetches: Sequence[str]) -> List[torch.Tensor]:
        """Compute the named operations from the given input values.

        Args:
            feeds: Graph input name -> batch array or tensor
            fetches: Operation names to compute

        Returns:
            One tensor per fetched operation
        """
        module, feed_names = self._fetch_module(tuple(fetches))
        missing = [name for name in feed_names if name not in feeds]
        if missing:
            raise ValueError(f"Missing values for graph inputs {missing} needed by {list(fetches)}")
        outputs = module(*[to_tensor(feeds[name]) for name in feed_names])
        return list(outputs)

    def trainable_parameters(self) -> List[torch.nn.Parameter]:
        return [p for p in self.graph_module.parameters() if p.requires_grad]

    def state_dict(self) -> Dict[str, torch.Tensor]:
        return self.graph_module.state_dict()


def load_graph_model(location: str) -> GraphModel:
    """Load a frozen graph file or saved model directory."""
    return GraphModel(load_artifact(location))


def get_model_schema(location: str) -> Schema:
    return load_graph_model(location).get_model_schema()
