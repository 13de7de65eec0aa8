"""Integration tests for re-training saved graph models inside a pipeline.

Re-training rewrites the model's variables on disk, so every test restores
the original variables when it finishes.
"""

import os

import numpy as np
import pytest
import torch

from src.graph_transform import (
    GraphModelTransformer,
    ModelTransformerOptions,
    TrainingHistory,
    ValueBuffer,
    get_row_cursor,
    load_artifact,
    restore_variables,
)
from src.pipeline import (
    Concatenate,
    CopyColumns,
    GradientBoostingTrainer,
    MinMaxNormalizer,
    OneHotEncoding,
    PredictionEngine,
    RowShuffler,
    TextColumn,
    TextLoader,
    ValueToKeyMapper,
    evaluate_multiclass,
    make_pipeline,
)
from tests.fixtures.models import requires_64bit
from tests.fixtures.test_configs import create_conv_training_options, create_lr_training_options
from tests.fixtures.test_data import NUM_PIXELS, create_one_digit_example


@requires_64bit
@pytest.mark.slow
@pytest.mark.integration
def test_softmax_regression_training(lr_model, mnist_train_file, mnist_test_file):
    try:
        reader = TextLoader(
            [
                TextColumn("Label", np.int64, 0),
                TextColumn("Placeholder", np.float32, (1, NUM_PIXELS)),
            ],
            has_header=True,
        )
        train_data = reader.read(mnist_train_file)
        test_data = reader.read(mnist_test_file)

        transformer = GraphModelTransformer(options=create_lr_training_options(lr_model))
        pipe = make_pipeline(
            OneHotEncoding("Label", "OneHotLabel"),
            MinMaxNormalizer("Placeholder", "Features"),
            transformer,
            Concatenate("Features", "Prediction"),
            ValueToKeyMapper("Label", "KeyLabel", max_num_terms=10),
            GradientBoostingTrainer("KeyLabel", "Features", max_iter=50, min_samples_leaf=5, random_state=1),
        )

        trained_model = pipe.fit(train_data)
        predicted = trained_model.transform(test_data)
        metrics = evaluate_multiclass(predicted, label_column="KeyLabel")

        assert metrics.accuracy_micro >= 0.7
        assert metrics.accuracy_macro >= 0.65

        engine = PredictionEngine(trained_model)
        prediction = engine.predict({"Label": 5, "Placeholder": create_one_digit_example(5)})
        key_mapper = trained_model.steps[4][1]
        assert key_mapper.terms_[int(np.argmax(prediction["Score"]))] == 5

        assert isinstance(transformer.history_, TrainingHistory)
        assert transformer.history_.num_epochs == 10
        assert transformer.history_.get_last_metric() is None

        train_transformed = trained_model.transform(train_data)
        with get_row_cursor(train_transformed) as cursor:
            getter = cursor.get_getter("b", np.float32)
            trained_bias = ValueBuffer()
            assert cursor.move_next()
            getter(trained_bias)
            assert trained_bias.length == 10
            assert not np.array_equal(trained_bias.values, np.full(10, 0.1, dtype=np.float32))

        assert os.path.isdir(transformer.backup_location_)
        saved = load_artifact(lr_model).variables
        np.testing.assert_allclose(saved["b"].numpy(), trained_bias.values)
    finally:
        restore_variables(lr_model)

    torch.testing.assert_close(load_artifact(lr_model).variables["b"], torch.full((10,), 0.1))


def check_conv_training(model_location, train_file, test_file, shuffle, shuffle_seed):
    try:
        reader = TextLoader(
            [
                TextColumn("Label", np.uint32, 0),
                TextColumn("TfLabel", np.int64, 0),
                TextColumn("Placeholder", np.float32, (1, NUM_PIXELS)),
            ],
            has_header=True,
        )
        train_data = reader.read(train_file)
        test_data = reader.read(test_file)
        if shuffle:
            train_data = RowShuffler(seed=shuffle_seed).fit_transform(train_data)
            test_data = RowShuffler(seed=shuffle_seed).fit_transform(test_data)

        initial = {name: value.clone() for name, value in load_artifact(model_location).variables.items()}
        transformer = GraphModelTransformer(options=create_conv_training_options(model_location))
        pipe = make_pipeline(
            CopyColumns([("Placeholder", "Features")]),
            transformer,
            Concatenate("Features", "Prediction"),
            GradientBoostingTrainer("Label", "Features", max_iter=50, min_samples_leaf=5, random_state=1),
        )

        trained_model = pipe.fit(train_data)
        predicted = trained_model.transform(test_data)
        metrics = evaluate_multiclass(predicted)

        assert metrics.accuracy_micro >= 0.6
        assert metrics.accuracy_macro >= 0.5

        engine = PredictionEngine(trained_model)
        prediction = engine.predict(
            {"Label": 5, "TfLabel": 5, "Placeholder": create_one_digit_example(5)}
        )
        assert int(np.argmax(prediction["Score"])) == 5

        history = transformer.history_
        assert history.num_epochs == 10
        assert len(history.metrics) == 10
        assert all(0.0 <= accuracy <= 1.0 for accuracy in history.metrics)
        assert history.get_last_loss() < history.losses[0]

        trained = load_artifact(model_location).variables
        assert not torch.equal(trained["dense.bias"], initial["dense.bias"])
        assert not torch.equal(trained["conv.weight"], initial["conv.weight"])
    finally:
        restore_variables(model_location)


@requires_64bit
@pytest.mark.slow
@pytest.mark.integration
def test_conv_training_in_row_order(conv_training_model, mnist_train_file, mnist_test_file):
    check_conv_training(conv_training_model, mnist_train_file, mnist_test_file, shuffle=False, shuffle_seed=None)


@requires_64bit
@pytest.mark.slow
@pytest.mark.integration
def test_conv_training_shuffled(conv_training_model, mnist_train_file, mnist_test_file):
    check_conv_training(conv_training_model, mnist_train_file, mnist_test_file, shuffle=True, shuffle_seed=5)


@requires_64bit
@pytest.mark.integration
def test_training_history_save_and_load(temp_dir):
    history = TrainingHistory("MomentumOp")
    history.add_epoch(2.3, 0.1)
    history.add_epoch(1.1, 0.6)
    path = os.path.join(temp_dir, "history.pkl")

    history.save(path)
    loaded = TrainingHistory().load(path)

    assert loaded.optimization_operation == "MomentumOp"
    assert loaded.losses == [2.3, 1.1]
    assert loaded.get_last_metric() == pytest.approx(0.6)
    assert os.path.exists(os.path.join(temp_dir, "history_epochs.csv"))


@requires_64bit
@pytest.mark.integration
def test_unknown_optimizer_rejected(lr_model, mnist_test_file):
    reader = TextLoader(
        [TextColumn("Label", np.int64, 0), TextColumn("Placeholder", np.float32, (1, NUM_PIXELS))],
        has_header=True,
    )
    data = OneHotEncoding("Label", "OneHotLabel").fit_transform(reader.read(mnist_test_file))
    data = CopyColumns([("Placeholder", "Features")]).fit_transform(data)

    options = ModelTransformerOptions(
        model_location=lr_model,
        input_columns=["Features"],
        output_columns=["Prediction"],
        label_column="OneHotLabel",
        tensor_label="Label",
        optimization_operation="AdamOptimizer",
        loss_operation="Loss",
        retrain=True,
    )

    with pytest.raises(KeyError, match="AdamOptimizer"):
        GraphModelTransformer(options=options).fit(data)
    assert not restore_variables(lr_model)


@requires_64bit
@pytest.mark.integration
def test_training_history_save_without_pkl_extension(temp_dir):
    history = TrainingHistory("SGDOptimizer")
    history.add_epoch(0.5)
    path = os.path.join(temp_dir, "history")

    history.save(path)
    loaded = TrainingHistory().load(path)

    assert loaded.losses == [0.5]
    assert os.path.exists(os.path.join(temp_dir, "history_epochs.csv"))
