"""Shared pytest fixtures for graph model binding tests."""

import os
import tempfile

import pytest

from tests.fixtures.models import (
    build_cifar_model,
    build_conv_training_model,
    build_identity_model,
    build_lr_model,
    build_matmul_model,
    build_mnist_model,
)
from tests.fixtures.test_data import write_digit_data, write_test_images


@pytest.fixture
def temp_dir():
    """Provide temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(scope="session")
def data_dir():
    """Digit datasets and images shared by all tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(scope="session")
def mnist_train_file(data_dir):
    """300 digit rows, 30 per class, with a header row."""
    return write_digit_data(os.path.join(data_dir, "mnist_train.tsv"), n_per_class=30, seed=42)


@pytest.fixture(scope="session")
def mnist_test_file(data_dir):
    """100 digit rows, 10 per class, drawn independently of the training rows."""
    return write_digit_data(os.path.join(data_dir, "mnist_test.tsv"), n_per_class=10, seed=7)


@pytest.fixture(scope="session")
def images_file(data_dir):
    return write_test_images(os.path.join(data_dir, "images"))


@pytest.fixture
def matmul_model(temp_dir):
    return build_matmul_model(temp_dir)


@pytest.fixture
def identity_model(temp_dir):
    return build_identity_model(temp_dir)


@pytest.fixture
def mnist_frozen_model(temp_dir):
    return build_mnist_model(temp_dir, frozen=True)


@pytest.fixture
def mnist_saved_model(temp_dir):
    return build_mnist_model(temp_dir, frozen=False)


@pytest.fixture
def lr_model(temp_dir):
    return build_lr_model(temp_dir)


@pytest.fixture
def conv_training_model(temp_dir):
    return build_conv_training_model(temp_dir)


@pytest.fixture
def cifar_frozen_model(temp_dir):
    return build_cifar_model(temp_dir, frozen=True)


@pytest.fixture
def cifar_saved_model(temp_dir):
    return build_cifar_model(temp_dir, frozen=False)
