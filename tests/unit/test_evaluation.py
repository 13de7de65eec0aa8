"""Unit tests for evaluation, the trainer stage and single record prediction."""

import warnings

import numpy as np
import pandas as pd
import pytest

from src.common import matrix_to_column, to_object_column
from src.pipeline import GradientBoostingTrainer, PredictionEngine, evaluate_multiclass, record_to_frame


def scored_frame(labels, predicted, scores):
    return pd.DataFrame(
        {
            "Label": np.asarray(labels),
            "Score": matrix_to_column(np.asarray(scores, dtype=np.float32)),
            "PredictedLabel": np.asarray(predicted),
        }
    )


@pytest.mark.unit
def test_micro_and_macro_accuracy():
    # class 0: 3 of 4 right, class 1: 1 of 1 right
    df = scored_frame(
        labels=[0, 0, 0, 0, 1],
        predicted=[0, 0, 0, 1, 1],
        scores=[[0.9, 0.1], [0.8, 0.2], [0.7, 0.3], [0.4, 0.6], [0.1, 0.9]],
    )

    metrics = evaluate_multiclass(df)

    assert metrics.accuracy_micro == pytest.approx(0.8)
    assert metrics.accuracy_macro == pytest.approx((0.75 + 1.0) / 2)
    assert metrics.log_loss > 0
    assert metrics.confusion_matrix.tolist() == [[3, 1], [0, 1]]


@pytest.mark.unit
def test_macro_accuracy_ignores_absent_classes():
    df = scored_frame(labels=[2, 2], predicted=[2, 0], scores=[[0.1, 0.1, 0.8], [0.5, 0.2, 0.3]])

    metrics = evaluate_multiclass(df)

    assert metrics.accuracy_macro == pytest.approx(0.5)


@pytest.mark.unit
def test_evaluate_checks_score_width():
    df = scored_frame(labels=[0], predicted=[0], scores=[[1.0, 0.0]])

    with pytest.raises(ValueError, match="score slots"):
        evaluate_multiclass(df, classes=[0, 1, 2])
    with pytest.raises(ValueError, match="empty"):
        evaluate_multiclass(df.iloc[:0])


@pytest.fixture
def blobs():
    rng = np.random.default_rng(0)
    labels = np.repeat(np.arange(3), 20)
    centers = np.array([[0.0, 0.0], [5.0, 5.0], [0.0, 5.0]])
    features = centers[labels] + rng.normal(0.0, 0.5, size=(60, 2))
    return pd.DataFrame({"Label": labels, "Features": matrix_to_column(features.astype(np.float32))})


@pytest.mark.unit
def test_trainer_appends_score_and_prediction(blobs):
    trainer = GradientBoostingTrainer(max_iter=20, min_samples_leaf=5, random_state=0).fit(blobs)
    output = trainer.transform(blobs)

    assert list(trainer.classes_) == [0, 1, 2]
    assert output["Score"].iloc[0].dtype == np.float32
    assert output["Score"].iloc[0].shape == (3,)
    assert evaluate_multiclass(output).accuracy_micro > 0.9


@pytest.mark.unit
def test_prediction_engine_single_record(blobs):
    trainer = GradientBoostingTrainer(max_iter=20, min_samples_leaf=5, random_state=0).fit(blobs)
    engine = PredictionEngine(trainer)

    prediction = engine.predict({"Label": 1, "Features": np.array([5.0, 5.0], dtype=np.float32)})

    assert prediction["PredictedLabel"] == 1
    assert int(np.argmax(prediction["Score"])) == 1


@pytest.mark.unit
def test_record_to_frame():
    df = record_to_frame({"Label": 5, "Placeholder": np.zeros(784, dtype=np.float32)})

    assert len(df) == 1
    assert df["Placeholder"].iloc[0].shape == (784,)
    assert df["Label"].iloc[0] == 5


@pytest.mark.unit
def test_to_object_column_keeps_arrays():
    column = to_object_column([np.arange(3), np.arange(3) + 1])

    assert column.dtype == object
    np.testing.assert_array_equal(column.iloc[1], [1, 2, 3])


@pytest.mark.unit
def test_log_loss_renormalises_float32_scores():
    # float32 softmax rows drift slightly off one
    scores = np.array([[0.7000001, 0.3000001], [0.2, 0.8000002]], dtype=np.float32)
    df = scored_frame(labels=[0, 1], predicted=[0, 1], scores=scores)

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        metrics = evaluate_multiclass(df)

    expected = -(np.log(0.7) + np.log(0.8)) / 2
    assert metrics.log_loss == pytest.approx(expected, rel=1e-5)
