"""Pytest configuration and fixtures for contenant tests.

This module ensures the contenant package is importable during tests
without requiring installation.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add src directory to path for development testing
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

import pytest  # noqa: E402

from contenant.paths import AppDirs  # noqa: E402


@pytest.fixture
def app_dirs(tmp_path: Path) -> AppDirs:
    """Fabricated config/cache/state directories under tmp_path."""
    return AppDirs(
        config_home=tmp_path / "config" / "contenant",
        cache_home=tmp_path / "cache" / "contenant",
        state_home=tmp_path / "state" / "contenant",
    )


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "projects" / "my-app"
    path.mkdir(parents=True)
    return path
