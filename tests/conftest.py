import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def fresh_store(monkeypatch):
    import app
    import history
    import storage

    store = storage.reset()
    # Route handlers write through the module-level recorder; keep it local-only.
    monkeypatch.setattr(app, "HISTORY", history.HistoryRecorder())
    monkeypatch.delenv("DEMO_USER_ID", raising=False)
    return store
