"""
Configuration classes for graph model bindings.

This module contains the options that bind pipeline columns to graph
operations and, for re-trainable bindings, the training hyperparameters.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml


def _as_list(value: Union[str, List[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


@dataclass
class ModelTransformerOptions:
    """Options for a GraphModelTransformer.

    Input and output columns are named after the graph operations they are
    bound to. The training fields only matter when ``retrain`` is set.
    """

    model_location: str
    input_columns: List[str] = field(default_factory=list)
    output_columns: List[str] = field(default_factory=list)

    # Re-training
    label_column: Optional[str] = None
    tensor_label: Optional[str] = None
    optimization_operation: Optional[str] = None
    loss_operation: Optional[str] = None
    metric_operation: Optional[str] = None
    epoch: int = 5
    learning_rate_operation: Optional[str] = None
    learning_rate: float = 0.01
    batch_size: int = 64
    retrain: bool = False
    seed: Optional[int] = None

    def __post_init__(self):
        self.model_location = str(self.model_location)
        self.input_columns = _as_list(self.input_columns)
        self.output_columns = _as_list(self.output_columns)

        if not self.input_columns:
            raise ValueError("At least one input column is required")
        if not self.output_columns:
            raise ValueError("At least one output column is required")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.epoch <= 0:
            raise ValueError("epoch must be positive")
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive")

        if self.retrain:
            required = {
                "label_column": self.label_column,
                "tensor_label": self.tensor_label,
                "optimization_operation": self.optimization_operation,
                "loss_operation": self.loss_operation,
            }
            missing = [name for name, value in required.items() if not value]
            if missing:
                raise ValueError(f"Re-training requires {', '.join(missing)}")

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "ModelTransformerOptions":
        """Load options from a YAML file.

        Args:
            yaml_path: Path to YAML configuration file

        Returns:
            ModelTransformerOptions instance
        """
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            config_dict = yaml.safe_load(f)

        return cls(**config_dict)


class ConfigBuilder:
    """Factory for creating configuration objects from various sources."""

    @staticmethod
    def from_args(args: Any) -> ModelTransformerOptions:
        """Create ModelTransformerOptions from command-line arguments."""
        return ModelTransformerOptions(
            model_location=args.model_location,
            input_columns=getattr(args, "input_columns", []),
            output_columns=getattr(args, "output_columns", []),
            label_column=getattr(args, "label_column", None),
            tensor_label=getattr(args, "tensor_label", None),
            optimization_operation=getattr(args, "optimization_operation", None),
            loss_operation=getattr(args, "loss_operation", None),
            metric_operation=getattr(args, "metric_operation", None),
            epoch=getattr(args, "epoch", 5),
            learning_rate_operation=getattr(args, "learning_rate_operation", None),
            learning_rate=getattr(args, "learning_rate", 0.01),
            batch_size=getattr(args, "batch_size", 64),
            retrain=bool(getattr(args, "retrain", False)),
            seed=getattr(args, "seed", None),
        )
