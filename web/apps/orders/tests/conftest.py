import pytest

from memory_pipeline import build_memory_pipeline


@pytest.fixture
def pipeline():
    return build_memory_pipeline()
