"""
DataFrame pipeline stages used around graph models: text and image loading,
column operations, a gradient boosting trainer, evaluation and single record
prediction. Stages are scikit-learn estimators and chain with ``make_pipeline``.
"""

from sklearn.pipeline import make_pipeline

from .column_ops import Concatenate, CopyColumns, MinMaxNormalizer, OneHotEncoding, RowShuffler, ValueToKeyMapper
from .evaluation import MulticlassMetrics, evaluate_multiclass
from .images import ImageLoader, ImagePixelExtractor, ImageResizer
from .prediction import PredictionEngine, record_to_frame
from .text_loader import TextColumn, TextLoader
from .trainers import GradientBoostingTrainer

__all__ = [
    "make_pipeline",
    "Concatenate",
    "CopyColumns",
    "MinMaxNormalizer",
    "OneHotEncoding",
    "RowShuffler",
    "ValueToKeyMapper",
    "MulticlassMetrics",
    "evaluate_multiclass",
    "ImageLoader",
    "ImagePixelExtractor",
    "ImageResizer",
    "PredictionEngine",
    "record_to_frame",
    "TextColumn",
    "TextLoader",
    "GradientBoostingTrainer",
]
