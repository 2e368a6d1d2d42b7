# tests/conftest.py
from __future__ import annotations

import os
import tempfile

# must run before smart_intake.config is imported
_DB_DIR = tempfile.mkdtemp(prefix="smart_intake_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["CMS_ENABLED"] = "false"
os.environ.pop("LLM_BASE_URL", None)

import pytest  # noqa: E402

from smart_intake.db import create_tables  # noqa: E402

create_tables()


@pytest.fixture()
def text_file():
    from smart_intake.domain.pipeline_types import UploadedFile

    def _make(filename: str, text: str) -> UploadedFile:
        return UploadedFile(filename=filename, content=text.encode("utf-8"), media_type="text/plain")

    return _make
