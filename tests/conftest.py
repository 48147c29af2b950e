import pytest

from fakes import FakeClient


@pytest.fixture
def client():
    return FakeClient()
