# tests/conftest.py
import pytest

from mirdata_shims.detectors import ReentrancyDetector
from mirdata_shims.driver import CheckerRunner, FunctionVisitor
from mirdata_shims.signatures import default_signatures


@pytest.fixture
def signatures():
    return default_signatures()


@pytest.fixture
def detector(signatures):
    return ReentrancyDetector(signatures)


@pytest.fixture
def visitor(signatures):
    return FunctionVisitor(signatures)


@pytest.fixture
def runner(signatures):
    return CheckerRunner(signatures)
