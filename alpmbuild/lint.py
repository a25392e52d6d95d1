"""Package name linting and checks on built package trees."""

import logging
import os
import re
from enum import Enum
from pathlib import Path

from alpmbuild.alpm import PacmanDatabase
from alpmbuild.errors import VerificationError
from alpmbuild.utils import closest_string

logger = logging.getLogger(__name__)

INVALID_CHARACTER = re.compile(r"[^a-zA-Z0-9 +_.@-]")
VERSION_CONSTRAINT = re.compile(r"[<>=]")


class NameProblem(Enum):
    VALID = "valid"
    EMPTY = "empty"
    STARTS_WITH_HYPHEN = "starts with a hyphen"
    STARTS_WITH_DOT = "starts with a dot"
    NON_ASCII = "contains a non-ASCII character"
    NON_ALPHANUMERIC = "contains a disallowed character"


def lint_identifier(name: str) -> tuple[NameProblem, int]:
    """Classify a package identifier.

    Args:
        name: Package name to check

    Returns:
        The first problem found and the index of the offending character
        (-1 when there is no single offending character)

    Examples:
        >>> lint_identifier("pkg-1.0")
        (<NameProblem.VALID: 'valid'>, -1)
        >>> lint_identifier("pkg!")
        (<NameProblem.NON_ALPHANUMERIC: 'contains a disallowed character'>, 3)
    """
    if name == "":
        return NameProblem.EMPTY, -1
    if name.startswith("-"):
        return NameProblem.STARTS_WITH_HYPHEN, 0
    if name.startswith("."):
        return NameProblem.STARTS_WITH_DOT, 0
    for index, char in enumerate(name):
        if not 32 <= ord(char) <= 126:
            return NameProblem.NON_ASCII, index
    match = INVALID_CHARACTER.search(name)
    if match:
        return NameProblem.NON_ALPHANUMERIC, match.start()
    return NameProblem.VALID, -1


def dependency_name(item: str) -> str:
    """Strip a version constraint: ``foo>=1.0`` -> ``foo``."""
    return VERSION_CONSTRAINT.split(item, maxsplit=1)[0]


class NameLinter:
    """Checks dependency and group names against the package database."""

    def __init__(self, database: PacmanDatabase):
        self.database = database

    def suggest_dependency(self, name: str) -> tuple[str, bool]:
        """Return (closest known package, exists) for ``name``.

        An empty package database counts as "exists" since nothing can be
        suggested.
        """
        names = self.database.package_names()
        if not names or name in names:
            return "", True
        return closest_string(name, names), False

    def suggest_group(self, name: str) -> tuple[str, bool]:
        """Return (closest known group, exists) for ``name``."""
        groups = self.database.group_names()
        if not groups or name in groups:
            return "", True
        return closest_string(name, groups), False


def lint_package_root(root: Path, nevra: str, build_path: Path) -> None:
    """Run the post-build lints on a package tree.

    Warns about files that mention ``build_path`` and about dotfiles in the
    package root.

    Raises:
        VerificationError: If a path contains a newline
    """
    logger.info(f"Linting package {nevra}...")
    needle = str(build_path).encode()

    for dirpath, dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            if path.is_symlink():
                continue
            try:
                content = path.read_bytes()
            except OSError as e:
                raise VerificationError(
                    f"Failed to open file /{path.relative_to(root)} in package {nevra}: {e}"
                ) from e
            if needle in content:
                logger.warning(
                    f"Package {nevra} contains a reference to the build directory "
                    f"in file /{path.relative_to(root)}"
                )

    for entry in sorted(root.iterdir()):
        if entry.name.startswith("."):
            logger.warning(f"Package {nevra} contains a dotfile /{entry.name} in the package root")

    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            if "\n" in name:
                path = (Path(dirpath) / name).relative_to(root)
                raise VerificationError(f"Package {nevra} has paths with a newline: /{path!s}")
