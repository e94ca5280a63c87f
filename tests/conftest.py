import time

import pytest

from mailbyebye.audit import AuditLog
from mailbyebye.config import DEFAULT_CONFIG, RunContext
from mailbyebye.confirm import ConfirmationGate


@pytest.fixture
def audit():
    log = AuditLog()
    yield log
    log.close()


@pytest.fixture
def make_ctx(audit):
    def _make(preset=None, prompt=None, **kwargs):
        def _prompt(text):
            if prompt is not None:
                return prompt(text)
            raise AssertionError("unexpected prompt")

        gate = ConfirmationGate(audit, prompt=_prompt, preset=preset)
        return RunContext(config=dict(DEFAULT_CONFIG), audit=audit, gate=gate, **kwargs)
    return _make


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls instead of sleeping."""
    recorded = []
    clock = [0.0]

    def fake_sleep(seconds):
        recorded.append(seconds)
        clock[0] += seconds

    monkeypatch.setattr(time, "sleep", fake_sleep)
    monkeypatch.setattr(time, "monotonic", lambda: clock[0])
    return recorded
