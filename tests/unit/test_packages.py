"""Smoke tests to verify all packages are importable."""

from __future__ import annotations


def test_core_version() -> None:
    from lorevault_core import __version__

    assert __version__ == "0.1.0"


def test_storage_version() -> None:
    from lorevault_storage import __version__

    assert __version__ == "0.1.0"


def test_retrieval_version() -> None:
    from lorevault_retrieval import __version__

    assert __version__ == "0.1.0"
