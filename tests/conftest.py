import dataclasses
import os
import sys

import pytest

# Ensure project root is importable (so `import skyreg` / `import main` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from skyreg import db  # noqa: E402


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Point the journal at an isolated sqlite file and keep stderr quiet."""
    test_settings = dataclasses.replace(db.settings, db_path=str(tmp_path / "journal.db"), log_level="ERROR")
    monkeypatch.setattr(db, "settings", test_settings)
    db.init_db()
    return test_settings
