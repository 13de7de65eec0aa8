from typing import Any, Dict, Mapping

import numpy as np
import pandas as pd

from src.common import to_object_column


def record_to_frame(record: Mapping[str, Any]) -> pd.DataFrame:
    """One-row DataFrame from a mapping; array values become vector cells."""
    data = {}
    for name, value in record.items():
        if np.ndim(value) > 0:
            data[name] = to_object_column([np.asarray(value)])
        else:
            data[name] = pd.Series([value])
    return pd.DataFrame(data)


class PredictionEngine:
    """Runs a fitted pipeline on single records."""

    def __init__(self, model):
        self.model = model

    def predict(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        output = self.model.transform(record_to_frame(record))
        return {name: output[name].iloc[0] for name in output.columns}
