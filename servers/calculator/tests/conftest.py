import pytest

from main import state


@pytest.fixture(autouse=True)
def fresh_history():
    """Every test starts with an empty operation history."""
    state.reset()
    yield
    state.reset()
