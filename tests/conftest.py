import pytest

from config import CFG


@pytest.fixture(autouse=True)
def _thread_backend(monkeypatch):
    # Tests pick the process backend explicitly; everything else stays
    # in-process so monkeypatched helpers are seen by the workers.
    monkeypatch.setattr(CFG, "BACKEND", "thread")
