from pathlib import Path

import pytest


@pytest.fixture
def write_html():
    """Write markup to root/rel_path, creating parent directories."""

    def _write(root: Path, rel_path: str, markup: str) -> Path:
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(markup, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "SourceA").mkdir()
    (tmp_path / "SourceB").mkdir()
    return tmp_path
