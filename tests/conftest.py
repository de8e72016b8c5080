"""Shared fixtures for the rsmap test suite."""

import importlib.util
import shutil
from pathlib import Path

import pytest

FIXTURES = Path(__file__).parent / "fixtures"


def pytest_collect_file(parent, file_path):  # noqa: ARG001
    """Skip test_code_tree_* files when tree-sitter is not installed."""
    if file_path.name.startswith("test_code_tree") and file_path.suffix == ".py":
        if importlib.util.find_spec("tree_sitter") is None:
            return None  # skip collection entirely


def write_files(root: Path, files: dict[str, str]) -> Path:
    """Write {relative path: contents} under root and return root."""
    for rel, contents in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(contents, encoding="utf8")
    return root


@pytest.fixture
def sample_crate(tmp_path):
    """A writable copy of tests/fixtures/sample_crate.

    Modules: crate, crate::engine, crate::engine::eval, crate::models,
    crate::utils. Conversion chain: ParseFailure -> EngineError -> AppError.
    """
    dest = tmp_path / "sample_crate"
    shutil.copytree(FIXTURES / "sample_crate", dest)
    return dest


@pytest.fixture
def rust_parser():
    from rsmap.code_tree.parsers.rust import RustParser
    return RustParser()


@pytest.fixture
def make_crate(tmp_path):
    """Factory writing a small crate into tmp_path from {path: source}."""
    def _make(files: dict[str, str]) -> Path:
        return write_files(tmp_path, files)
    return _make
