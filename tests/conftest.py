from __future__ import annotations

import random

import numpy as np
import pytest
from hypothesis import seed, settings

from shared_clustering.utils.parallel_utils import sequential_executor

# ---- Deterministic Testing Configuration ---------------------

# Global deterministic seed
DETERMINISTIC_SEED = 42


@pytest.fixture(autouse=True)
def set_deterministic_seed():
    """Set deterministic seed for all tests"""
    random.seed(DETERMINISTIC_SEED)
    np.random.seed(DETERMINISTIC_SEED)
    yield
    # Reset after test
    random.seed()
    np.random.seed()


# Hypothesis settings for all property-based tests
settings.register_profile(
    "deterministic",
    deadline=None,
    max_examples=100,
    derandomize=True,
    database=None,
)
settings.load_profile("deterministic")
seed(DETERMINISTIC_SEED)


@pytest.fixture
def executor():
    """Executor running every phase in the test thread."""
    return sequential_executor()
