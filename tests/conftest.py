import os
import pytest


@pytest.fixture(scope="module")
def fixture_path():
    here = os.path.abspath(os.path.dirname(__file__))
    return os.path.join(here, "fixtures")


@pytest.fixture(scope="module")
def read_fixture(fixture_path):
    def read(name: str) -> str:
        with open(os.path.join(fixture_path, name), encoding="utf-8") as f:
            return f.read()

    return read
