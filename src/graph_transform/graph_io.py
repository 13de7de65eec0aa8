"""
Reading and writing graph model artifacts.

Two artifact forms are supported:

* a frozen graph: a single file holding the node list and every tensor as a
  constant;
* a saved model: a directory holding ``graph.pt`` (node list, attributes,
  input and optimizer declarations) and ``variables/variables.pt`` with the
  trainable state, which re-training rewrites.

Graphs are captured with ``torch.fx.symbolic_trace``. Node names are stored
verbatim so that artifacts may use any operation naming scheme.
"""

import builtins
import copy
import glob
import importlib
import logging
import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import torch
import torch.fx
from torch.fx.node import map_aggregate, map_arg

FORMAT_VERSION = 1
GRAPH_FILE = "graph.pt"
VARIABLES_DIR = "variables"
VARIABLES_FILE = "variables.pt"


class ModelFormatError(ValueError):
    """Raised when an artifact cannot be written or read back."""


@dataclass
class InputSpec:
    """Per-row shape (no batch dimension) and dtype of a graph input."""

    dims: Tuple[int, ...] = ()
    dtype: Any = np.float32

    def __post_init__(self):
        self.dims = tuple(int(d) for d in self.dims)
        self.dtype = np.dtype(self.dtype)

    def to_dict(self) -> dict:
        return {"dims": list(self.dims), "dtype": self.dtype.name}

    @classmethod
    def from_dict(cls, data: dict) -> "InputSpec":
        return cls(dims=tuple(data["dims"]), dtype=data["dtype"])


@dataclass
class OptimizerSpec:
    """A named optimization operation backed by a ``torch.optim`` class."""

    optimizer_class: str = "SGD"
    learning_rate_operation: Optional[str] = None
    learning_rate: float = 0.01
    kwargs: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "optimizer_class": self.optimizer_class,
            "learning_rate_operation": self.learning_rate_operation,
            "learning_rate": self.learning_rate,
            "kwargs": dict(self.kwargs),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OptimizerSpec":
        return cls(**data)


@dataclass(frozen=True)
class NodeRef:
    """Reference to another node inside a serialized node's arguments."""

    name: str


@dataclass
class GraphArtifact:
    """In-memory form of an artifact as read from disk."""

    location: str
    nodes: List[dict]
    attributes: Dict[str, Any]
    inputs: Dict[str, InputSpec]
    optimizers: Dict[str, OptimizerSpec]
    frozen: bool
    variables: Optional[Dict[str, torch.Tensor]] = None


def _qualified_name(fn) -> str:
    name = fn.__name__
    if getattr(builtins, name, None) is fn:
        return name
    if getattr(torch.Tensor, name, None) is fn:
        return f"torch.Tensor.{name}"
    module = getattr(fn, "__module__", None)
    if module is None:
        for guess in (torch, torch.nn.functional):
            if getattr(guess, name, None) is fn:
                module = guess.__name__
                break
    if module is None:
        raise ModelFormatError(f"Cannot serialize call to {fn!r}")
    return f"{module.replace('torch._ops', 'torch.ops')}.{name}"


def _resolve_function(qualified_name: str):
    if "." not in qualified_name:
        if hasattr(builtins, qualified_name):
            return getattr(builtins, qualified_name)
        raise ModelFormatError(f"Unknown builtin function '{qualified_name}'")

    parts = qualified_name.split(".")
    for i in range(len(parts) - 1, 0, -1):
        try:
            obj = importlib.import_module(".".join(parts[:i]))
        except ImportError:
            continue
        try:
            for attr in parts[i:]:
                obj = getattr(obj, attr)
        except AttributeError:
            continue
        return obj
    raise ModelFormatError(f"Cannot resolve function '{qualified_name}'")


def fetch_attr(module: torch.nn.Module, target: str):
    obj = module
    for attr in target.split("."):
        obj = getattr(obj, attr)
    return obj


def trace_module(module: torch.nn.Module) -> torch.fx.GraphModule:
    if isinstance(module, torch.fx.GraphModule):
        return module
    return torch.fx.symbolic_trace(module)


def _serialize_graph(
    graph_module: torch.fx.GraphModule,
    names: Optional[Dict[str, str]],
    frozen: bool,
) -> Tuple[List[dict], Dict[str, Any]]:
    names = dict(names or {})
    external = {}
    for node in graph_module.graph.nodes:
        # inputs keep the forward argument name, fx may rename their nodes
        default = node.target if node.op == "placeholder" else node.name
        external[node.name] = names.get(node.name, default)

    seen = set()
    for node_name, op_name in external.items():
        if op_name in seen:
            raise ModelFormatError(f"Duplicate operation name '{op_name}' (from node '{node_name}')")
        seen.add(op_name)

    nodes = []
    attributes = {}
    for node in graph_module.graph.nodes:
        if node.op == "call_function":
            target = _qualified_name(node.target)
        else:
            target = node.target

        if node.op in ("call_module", "get_attr") and node.target not in attributes:
            value = fetch_attr(graph_module, node.target)
            if isinstance(value, torch.nn.Module):
                value = copy.deepcopy(value)
                if frozen:
                    value.requires_grad_(False)
            elif isinstance(value, torch.Tensor):
                if frozen or not isinstance(value, torch.nn.Parameter):
                    value = value.detach().clone()
                else:
                    value = torch.nn.Parameter(value.detach().clone())
            attributes[node.target] = value

        nodes.append(
            {
                "name": external[node.name],
                "op": node.op,
                "target": target,
                "args": map_arg(node.args, lambda n: NodeRef(external[n.name])),
                "kwargs": map_arg(node.kwargs, lambda n: NodeRef(external[n.name])),
            }
        )
    return nodes, attributes


def _check_inputs(nodes: List[dict], inputs: Dict[str, InputSpec]):
    placeholders = [n["name"] for n in nodes if n["op"] == "placeholder"]
    missing = [p for p in placeholders if p not in inputs]
    if missing:
        raise ModelFormatError(f"No input spec declared for graph inputs {missing}")
    unknown = [name for name in inputs if name not in placeholders]
    if unknown:
        raise ModelFormatError(f"Input specs {unknown} do not name graph inputs")


def _as_specs(inputs: Dict[str, Any]) -> Dict[str, InputSpec]:
    return {
        name: spec if isinstance(spec, InputSpec) else InputSpec(*spec)
        for name, spec in inputs.items()
    }


def _atomic_save(obj: Any, path: str):
    temp_file = path + ".tmp"
    try:
        torch.save(obj, temp_file)
        os.replace(temp_file, path)
    except Exception as e:
        if os.path.exists(temp_file):
            os.remove(temp_file)
        raise e


def freeze_graph(
    module: torch.nn.Module,
    path: str,
    inputs: Dict[str, Any],
    names: Optional[Dict[str, str]] = None,
) -> str:
    """Trace ``module`` and write it as a single-file frozen graph.

    Args:
        module: Module (or already traced GraphModule) to capture
        path: Output file
        inputs: Graph input name -> InputSpec (or ``(dims, dtype)`` tuple),
            keyed by operation name
        names: Optional fx node name -> operation name mapping

    Returns:
        The path written
    """
    inputs = _as_specs(inputs)
    graph_module = trace_module(module)
    nodes, attributes = _serialize_graph(graph_module, names, frozen=True)
    _check_inputs(nodes, inputs)

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    _atomic_save(
        {
            "format_version": FORMAT_VERSION,
            "frozen": True,
            "nodes": nodes,
            "attributes": attributes,
            "inputs": {name: spec.to_dict() for name, spec in inputs.items()},
            "optimizers": {},
        },
        path,
    )
    logging.info(f"Froze graph with {len(nodes)} nodes to {path}")
    return path


def save_graph_model(
    module: torch.nn.Module,
    directory: str,
    inputs: Dict[str, Any],
    names: Optional[Dict[str, str]] = None,
    optimizers: Optional[Dict[str, OptimizerSpec]] = None,
) -> str:
    """Trace ``module`` and write it as a re-trainable saved model directory."""
    inputs = _as_specs(inputs)
    graph_module = trace_module(module)
    nodes, attributes = _serialize_graph(graph_module, names, frozen=False)
    _check_inputs(nodes, inputs)

    os.makedirs(os.path.join(directory, VARIABLES_DIR), exist_ok=True)
    _atomic_save(
        {
            "format_version": FORMAT_VERSION,
            "frozen": False,
            "nodes": nodes,
            "attributes": attributes,
            "inputs": {name: spec.to_dict() for name, spec in inputs.items()},
            "optimizers": {
                name: spec.to_dict() for name, spec in (optimizers or {}).items()
            },
        },
        os.path.join(directory, GRAPH_FILE),
    )
    variables = {k: v.detach().clone() for k, v in graph_module.state_dict().items()}
    _atomic_save(variables, os.path.join(directory, VARIABLES_DIR, VARIABLES_FILE))
    logging.info(
        f"Saved graph model with {len(nodes)} nodes and {len(variables)} variables to {directory}"
    )
    return directory


def _load_payload(path: str) -> dict:
    try:
        payload = torch.load(path, map_location="cpu", weights_only=False)
    except Exception as e:
        raise ModelFormatError(f"Could not read model artifact {path}: {e}") from e
    if not isinstance(payload, dict) or "nodes" not in payload:
        raise ModelFormatError(f"{path} is not a graph model artifact")
    version = payload.get("format_version")
    if version != FORMAT_VERSION:
        raise ModelFormatError(f"Unsupported artifact format version {version} in {path}")
    return payload


def load_artifact(location: str) -> GraphArtifact:
    """Read a frozen graph file or a saved model directory."""
    location = str(location)
    if not os.path.exists(location):
        raise FileNotFoundError(f"Model not found: {location}")

    variables = None
    if os.path.isdir(location):
        graph_file = os.path.join(location, GRAPH_FILE)
        if not os.path.exists(graph_file):
            raise FileNotFoundError(f"Saved model directory has no {GRAPH_FILE}: {location}")
        payload = _load_payload(graph_file)
        variables_file = os.path.join(location, VARIABLES_DIR, VARIABLES_FILE)
        if os.path.exists(variables_file):
            variables = torch.load(variables_file, map_location="cpu", weights_only=True)
    else:
        payload = _load_payload(location)

    return GraphArtifact(
        location=location,
        nodes=payload["nodes"],
        attributes=payload["attributes"],
        inputs={name: InputSpec.from_dict(d) for name, d in payload["inputs"].items()},
        optimizers={
            name: OptimizerSpec.from_dict(d) for name, d in payload["optimizers"].items()
        },
        frozen=payload["frozen"],
        variables=variables,
    )


def build_graph_module(artifact: GraphArtifact) -> Tuple[torch.fx.GraphModule, Dict[str, torch.fx.Node]]:
    """Rebuild the executable module and the operation name -> node table."""
    graph = torch.fx.Graph()
    env: Dict[str, torch.fx.Node] = {}

    def resolve(arg):
        return env[arg.name] if isinstance(arg, NodeRef) else arg

    for record in artifact.nodes:
        args = map_aggregate(record["args"], resolve)
        kwargs = map_aggregate(record["kwargs"], resolve)
        if record["op"] == "output":
            graph.output(args[0])
            continue
        target = record["target"]
        if record["op"] == "call_function":
            target = _resolve_function(target)
        env[record["name"]] = graph.create_node(
            record["op"], target, args, kwargs, name=record["name"]
        )

    graph_module = torch.fx.GraphModule(artifact.attributes, graph)
    if artifact.variables is not None:
        try:
            graph_module.load_state_dict(artifact.variables)
        except RuntimeError as e:
            raise ModelFormatError(
                f"Variables do not match graph in {artifact.location}: {e}"
            ) from e
    return graph_module, env


def update_model_on_disk(directory: str, state_dict: Dict[str, torch.Tensor]) -> str:
    """Write re-trained variables, keeping the previous ones as a backup.

    Returns:
        Path of the backup directory holding the previous variables
    """
    if not os.path.isdir(directory):
        raise ValueError(f"Only saved model directories can be updated: {directory}")

    variables_dir = os.path.join(directory, VARIABLES_DIR)
    # backup names sort in creation order
    backup_dir = os.path.join(
        directory, f"{VARIABLES_DIR}-{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"
    )
    if os.path.isdir(variables_dir):
        os.rename(variables_dir, backup_dir)
    os.makedirs(variables_dir)
    _atomic_save(
        {k: v.detach().cpu().clone() for k, v in state_dict.items()},
        os.path.join(variables_dir, VARIABLES_FILE),
    )
    logging.info(f"Updated variables in {variables_dir} (previous kept in {backup_dir})")
    return backup_dir


def restore_variables(directory: str) -> bool:
    """Put the oldest variables backup back in place and drop the others.

    Returns:
        True if a backup was restored
    """
    backups = sorted(glob.glob(os.path.join(directory, f"{VARIABLES_DIR}-*")))
    if not backups:
        return False

    variables_dir = os.path.join(directory, VARIABLES_DIR)
    if os.path.isdir(variables_dir):
        shutil.rmtree(variables_dir)
    os.rename(backups[0], variables_dir)
    for backup in backups[1:]:
        shutil.rmtree(backup)
    logging.info(f"Restored variables of {directory} from {backups[0]}")
    return True

