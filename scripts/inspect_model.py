"""
Print the schema of a graph model: one line per operation with its output
type, shape, operation type and upstream operations.
"""

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

sys.path.append(os.getcwd())

from src.common import resolve_model_location
from src.graph_transform import load_graph_model


def parse_args(args):
    """parse command line arguments"""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--model-location",
        type=str,
        required=True,
        help="Frozen graph file or saved model directory (relative paths also tried under $GRAPH_MODELS_DIR)",
    )
    parser.add_argument(
        "--inputs-only",
        action="store_true",
        default=False,
        help="Only list the graph inputs",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Path to log file")
    args = parser.parse_args(args)
    return args


def format_column(column) -> str:
    item = column.type.item_type.name if column.type.item_type is not None else "?"
    line = f"{column.name}\t{item}{list(column.type.dims)}\t{column.operator_type}"
    if column.upstream_operators:
        line += "\t<- " + ", ".join(column.upstream_operators)
    return line


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

    model = load_graph_model(resolve_model_location(args.model_location))
    schema = model.get_input_schema() if args.inputs_only else model.get_model_schema()
    for column in schema:
        print(format_column(column))

    print(f"{len(schema)} columns")
    return schema


if __name__ == "__main__":
    main(sys.argv[1:])
