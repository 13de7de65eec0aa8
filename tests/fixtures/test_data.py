"""Test data generators for graph model binding tests."""

import os
from typing import List, Tuple

import numpy as np
import pandas as pd
from PIL import Image

IMAGE_SIDE = 28
NUM_PIXELS = IMAGE_SIDE * IMAGE_SIDE
NUM_CLASSES = 10


def create_digit_prototypes(seed: int = 0) -> np.ndarray:
    """One 28x28 stroke pattern per class, pixel values in [0, 255]."""
    rng = np.random.default_rng(seed)
    prototypes = np.zeros((NUM_CLASSES, IMAGE_SIDE, IMAGE_SIDE), dtype=np.float32)
    for label in range(NUM_CLASSES):
        for _ in range(4):
            row, col = rng.integers(2, IMAGE_SIDE - 8, size=2)
            height, width = rng.integers(2, 7, size=2)
            prototypes[label, row : row + height, col : col + width] = 255.0
    return prototypes.reshape(NUM_CLASSES, NUM_PIXELS)


def create_digit_data(n_per_class: int = 30, seed: int = 42, noise: float = 20.0) -> pd.DataFrame:
    """Noisy copies of the class prototypes.

    Returns a frame with an integer ``Label`` and one column per pixel,
    rows ordered by class.
    """
    prototypes = create_digit_prototypes()
    rng = np.random.default_rng(seed)

    labels = np.repeat(np.arange(NUM_CLASSES), n_per_class)
    pixels = prototypes[labels] + rng.normal(0.0, noise, size=(len(labels), NUM_PIXELS))
    dropout = rng.random((len(labels), NUM_PIXELS)) < 0.05
    pixels[dropout] = 0.0
    pixels = np.clip(np.round(pixels), 0, 255)

    data = pd.DataFrame(pixels.astype(int), columns=[f"pixel{i}" for i in range(NUM_PIXELS)])
    data.insert(0, "Label", labels)
    return data


def write_digit_data(path: str, n_per_class: int = 30, seed: int = 42) -> str:
    """Write digit data as a tab separated file with a header row."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    create_digit_data(n_per_class, seed).to_csv(path, sep="\t", index=False)
    return path


def create_one_digit_example(label: int = 5) -> np.ndarray:
    """Clean prototype of one class as 784 float32 pixels."""
    return create_digit_prototypes()[label].astype(np.float32)


IMAGE_SPECS: List[Tuple[str, Tuple[int, int], Tuple[int, int, int]]] = [
    ("banana", (64, 48), (230, 210, 40)),
    ("hotdog", (50, 50), (180, 90, 40)),
    ("tomato", (40, 60), (200, 30, 30)),
    ("sky", (33, 33), (60, 120, 220)),
]


def write_test_images(folder: str) -> str:
    """Write four small RGB images and an ``images.tsv`` listing them.

    Returns:
        Path of ``images.tsv``; image paths in it are relative to its folder
    """
    os.makedirs(folder, exist_ok=True)
    rng = np.random.default_rng(7)
    lines = []
    for name, (width, height), color in IMAGE_SPECS:
        pixels = np.empty((height, width, 3), dtype=np.uint8)
        pixels[:] = color
        pixels = np.clip(pixels + rng.integers(-20, 20, size=pixels.shape), 0, 255).astype(np.uint8)
        file_name = f"{name}.png"
        Image.fromarray(pixels).save(os.path.join(folder, file_name))
        lines.append(f"{file_name}\t{name}")

    tsv_path = os.path.join(folder, "images.tsv")
    with open(tsv_path, "w") as f:
        f.write("\n".join(lines) + "\n")
    return tsv_path
