"""Queries against the pacman package database."""

import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class InstalledPackage:
    name: str
    version: str


class PacmanDatabase:
    """Thin wrapper around the pacman command line.

    Package and group lists are read once and cached for the lifetime of the
    object.
    """

    def __init__(self, pacman: str = "pacman"):
        self.pacman = pacman
        self._package_names: list[str] | None = None
        self._group_names: list[str] | None = None

    def _query(self, *args: str) -> list[str]:
        """Run pacman and return its stdout lines.

        An unavailable pacman yields no lines; callers treat an empty
        namespace as unknown.
        """
        command = [self.pacman, *args]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as e:
            logger.warning(f"Could not query the package database with {self.pacman}: {e}")
            return []
        # -T exits 127 when a dependency is unsatisfied
        if result.returncode not in (0, 1, 127):
            logger.warning(f"{' '.join(command)} exited with status {result.returncode}")
        return [line for line in result.stdout.splitlines() if line.strip()]

    def package_names(self) -> list[str]:
        """Names of every package in the sync databases (``pacman -Sl``)."""
        if self._package_names is None:
            names = []
            for line in self._query("-Sl"):
                parts = line.split()
                if len(parts) >= 2:
                    names.append(parts[1])
            self._package_names = names
        return self._package_names

    def group_names(self) -> list[str]:
        """Names of every group in the sync databases (``pacman -Sg``)."""
        if self._group_names is None:
            self._group_names = sorted({line.split()[0] for line in self._query("-Sg")})
        return self._group_names

    def list_installed(self) -> list[InstalledPackage]:
        """Installed packages with their versions (``pacman -Q``)."""
        installed = []
        for line in self._query("-Q"):
            parts = line.split()
            if len(parts) >= 2:
                installed.append(InstalledPackage(name=parts[0], version=parts[1]))
        return installed

    def missing_dependencies(self, dependencies: list[str]) -> list[str]:
        """Dependencies not satisfied by installed packages (``pacman -T``)."""
        if not dependencies:
            return []
        return self._query("-T", *dependencies)
