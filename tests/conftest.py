"""Shared fixtures for alpmbuild tests."""

from unittest.mock import Mock

import pytest

from alpmbuild.alpm import PacmanDatabase
from alpmbuild.config import BuildOptions
from alpmbuild.config_manager import Settings
from alpmbuild.context import BuildContext, WorkingArea


@pytest.fixture
def area(tmp_path):
    """Working area inside the test's temporary directory."""
    return WorkingArea(tmp_path / "alpmbuild")


@pytest.fixture
def make_context(tmp_path, area):
    """Factory for build contexts with option overrides."""

    def factory(settings: Settings | None = None, **overrides) -> BuildContext:
        options = BuildOptions(recipe=str(tmp_path / "foo.spec"), **overrides)
        return BuildContext(options, settings or Settings(), area)

    return factory


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def database():
    """Package database stand-in with a small sync repository."""
    db = Mock(spec=PacmanDatabase)
    db.package_names.return_value = ["bash", "gcc", "glibc", "make", "python", "zlib"]
    db.group_names.return_value = ["base-devel", "gnome"]
    db.list_installed.return_value = []
    db.missing_dependencies.return_value = []
    return db
