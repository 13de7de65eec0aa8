"""
Apply a graph model binding to a tab separated dataset.

Input columns are read from field ranges of the dataset, fed to the graph
inputs of the same name, and every requested operation is written back as
``<operation>.<i>`` columns alongside the dataset's other fields.
"""

import argparse
import logging
import os
import sys

import numpy as np
import pandas as pd
from dotenv import load_dotenv

sys.path.append(os.getcwd())

from src.common import column_as_matrix, resolve_model_location
from src.graph_transform import ConfigBuilder, GraphModelTransformer, ModelTransformerOptions
from src.pipeline import TextColumn, TextLoader


def parse_args(args):
    """parse command line arguments"""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--model-location", type=str, default=None)
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML file with ModelTransformerOptions, used instead of the binding arguments",
    )
    parser.add_argument("--in-dataset-file", type=str, required=True)
    parser.add_argument("--out-dataset-file", type=str, required=True)
    parser.add_argument(
        "--column",
        type=str,
        action="append",
        required=True,
        help="NAME:START[-END] fields read as a float32 input column, repeatable",
    )
    parser.add_argument("--input-columns", type=str, nargs="+", default=None)
    parser.add_argument("--output-columns", type=str, nargs="+", default=None)
    parser.add_argument("--has-header", action="store_true", default=False)
    parser.add_argument("--batch-size", type=int, default=64)
    parser.add_argument("--log-file", type=str, default=None, help="Path to log file")
    args = parser.parse_args(args)
    return args


def parse_column(spec: str) -> TextColumn:
    name, _, fields = spec.rpartition(":")
    if not name:
        raise ValueError(f"Column spec '{spec}' must look like NAME:START[-END]")
    if "-" in fields:
        start, end = fields.split("-")
        return TextColumn(name, np.float32, (int(start), int(end)))
    return TextColumn(name, np.float32, int(fields))


def flatten_outputs(df: pd.DataFrame, columns) -> pd.DataFrame:
    """Spread vector columns over one numbered column per value."""
    flat = df.drop(columns=list(columns))
    for name in columns:
        matrix = column_as_matrix(df[name])
        for i in range(matrix.shape[1]):
            flat[f"{name}.{i}"] = matrix[:, i]
    return flat


def main(args):
    args = parse_args(args)
    load_dotenv()
    if args.log_file:
        logging.basicConfig(
            format="%(asctime)s - %(levelname)s - %(name)s - %(funcName)s - %(message)s",
            filename=args.log_file,
            level=logging.INFO,
            force=True,
        )
    else:
        logging.basicConfig(level=logging.INFO)
    logging.info(f"Scoring with args: {args}")

    columns = [parse_column(spec) for spec in args.column]
    data = TextLoader(columns, has_header=args.has_header).read(args.in_dataset_file)

    if args.config:
        options = ModelTransformerOptions.from_yaml(args.config)
    else:
        if args.model_location is None:
            raise ValueError("Either --model-location or --config is required")
        if args.input_columns is None:
            args.input_columns = [column.name for column in columns]
        options = ConfigBuilder.from_args(args)
    options.model_location = resolve_model_location(options.model_location)

    transformer = GraphModelTransformer(options=options)
    scored = transformer.fit(data).transform(data)

    output = flatten_outputs(scored.drop(columns=options.input_columns), options.output_columns)
    output_dir = os.path.dirname(args.out_dataset_file)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    output.to_csv(args.out_dataset_file, sep="\t", index=False)
    logging.info(f"Wrote {len(output)} scored rows to {args.out_dataset_file}")
    return output


if __name__ == "__main__":
    main(sys.argv[1:])
