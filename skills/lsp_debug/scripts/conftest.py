"""Shared fixtures for the lsp_debug tests.

When tests run via __main__ (PEP-723 entry point), the module under test
is imported before pytest.main() starts coverage tracing, so it is reloaded
once coverage is active. The document fixtures give every session test the
same small C file to open in the server.
"""

from __future__ import annotations

import importlib
import tempfile
import textwrap
from collections.abc import Generator
from pathlib import Path

import lsp_debug
import pytest

C_SOURCE = textwrap.dedent("""\
    #include <stdio.h>

    static int add(int a, int b) {
        return a + b;
    }

    int main(void) {
        printf("%d\\n", add(1, 2));
        return 0;
    }
    """)


@pytest.fixture(autouse=True, scope="session")
def _reload_for_coverage() -> None:
    """Reload module under test so pytest-cov captures module-level code."""
    importlib.reload(lsp_debug)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def c_source(temp_dir: Path) -> Path:
    """A small C file with a function to look up."""
    src = temp_dir / "main.c"
    src.write_text(C_SOURCE, encoding="utf-8")
    return src


@pytest.fixture
def document(c_source: Path) -> lsp_debug.Document:
    return lsp_debug.load_document(c_source)
