"""
Image loading, resizing and pixel extraction stages.

Images are held as PIL images in object columns until the pixel extractor
turns them into float or byte arrays.
"""

import logging
import os
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from PIL import Image
from sklearn.base import BaseEstimator, TransformerMixin

from src.common import check_columns, to_object_column


def load_image(path: str) -> Image.Image:
    with Image.open(path) as img:
        return img.convert("RGB")


class ImageLoader(BaseEstimator, TransformerMixin):
    """Load the images named by ``(source, destination)`` column pairs.

    Relative paths are resolved against ``image_folder``.
    """

    def __init__(self, image_folder: str = ".", columns: Sequence[Tuple[str, str]] = ()):
        self.image_folder = image_folder
        self.columns = columns

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [source for source, _ in self.columns], "ImageLoader")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [source for source, _ in self.columns], "ImageLoader")
        output = X.copy()
        for source, destination in self.columns:
            images = []
            for name in X[source]:
                path = name if os.path.isabs(name) else os.path.join(self.image_folder, name)
                if not os.path.exists(path):
                    raise FileNotFoundError(f"Image not found: {path}")
                images.append(load_image(path))
            output[destination] = to_object_column(images, index=X.index)
            logging.info(f"Loaded {len(images)} images from '{source}' into '{destination}'")
        return output

    def __sklearn_is_fitted__(self):
        return True


class ImageResizer(BaseEstimator, TransformerMixin):
    def __init__(self, input_column: str = "ImageReal", output_column: Optional[str] = None, width: int = 32, height: int = 32):
        self.input_column = input_column
        self.output_column = output_column
        self.width = width
        self.height = height

    def fit(self, X: pd.DataFrame, y=None):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Image size must be positive, got {self.width}x{self.height}")
        check_columns(X, [self.input_column], "ImageResizer")
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [self.input_column], "ImageResizer")
        resized = [
            img.resize((self.width, self.height), Image.Resampling.BILINEAR) for img in X[self.input_column]
        ]
        output = X.copy()
        output[self.output_column or self.input_column] = to_object_column(resized, index=X.index)
        return output

    def __sklearn_is_fitted__(self):
        return True


class ImagePixelExtractor(BaseEstimator, TransformerMixin):
    """Turn images into pixel arrays.

    Args:
        interleave: Channel-last (height, width, channel) layout when True,
            channel-first (channel, height, width) otherwise
        as_float: float32 values computed as ``(pixel - offset) * scale``,
            raw uint8 bytes when False
    """

    def __init__(
        self,
        input_column: str = "ImageCropped",
        output_column: Optional[str] = None,
        interleave: bool = False,
        as_float: bool = True,
        offset: float = 0.0,
        scale: float = 1.0,
    ):
        self.input_column = input_column
        self.output_column = output_column
        self.interleave = interleave
        self.as_float = as_float
        self.offset = offset
        self.scale = scale

    def fit(self, X: pd.DataFrame, y=None):
        check_columns(X, [self.input_column], "ImagePixelExtractor")
        return self

    def _pixels(self, img: Image.Image) -> np.ndarray:
        pixels = np.asarray(img.convert("RGB"))
        if not self.interleave:
            pixels = pixels.transpose(2, 0, 1)
        if self.as_float:
            return ((pixels.astype(np.float32) - self.offset) * self.scale).astype(np.float32)
        return np.ascontiguousarray(pixels)

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        check_columns(X, [self.input_column], "ImagePixelExtractor")
        pixels = [self._pixels(img) for img in X[self.input_column]]
        output = X.copy()
        output[self.output_column or self.input_column] = to_object_column(pixels, index=X.index)
        return output

    def __sklearn_is_fitted__(self):
        return True
