"""Build context shared by the parser, macro engine, orchestrator and assembler."""

import logging
import os
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path

from alpmbuild.config import ENV_SOURCE_DATE_EPOCH, BuildOptions, get_env_var
from alpmbuild.config_manager import Settings
from alpmbuild.errors import BuildEnvironmentError
from alpmbuild.macros import MacroEngine

logger = logging.getLogger(__name__)


@dataclass
class WorkingArea:
    """Fixed directory layout under the per-user working area."""

    base: Path

    @classmethod
    def for_settings(cls, settings: Settings) -> "WorkingArea":
        """Resolve the working area from settings, defaulting to ~/alpmbuild.

        Raises:
            BuildEnvironmentError: If the home directory cannot be determined
        """
        if settings.workdir:
            return cls(Path(settings.workdir).expanduser())
        try:
            home = Path.home()
        except (KeyError, RuntimeError) as e:
            raise BuildEnvironmentError(f"Could not get user's home directory: {e}") from e
        return cls(home / "alpmbuild")

    @property
    def package_root(self) -> Path:
        return self.base / "package"

    @property
    def sources(self) -> Path:
        return self.base / "sources"

    @property
    def downloads(self) -> Path:
        return self.base / "downloads"

    @property
    def build(self) -> Path:
        return self.base / "build"

    @property
    def subpackages(self) -> Path:
        return self.base / "subpackages"

    @property
    def packages(self) -> Path:
        return self.base / "packages"

    @property
    def source_packages(self) -> Path:
        return self.base / "srcpackages"

    def subpackage_root(self, name: str) -> Path:
        return self.subpackages / name

    def prepare(self) -> None:
        """Recreate the staging directories and ensure the output ones exist.

        Raises:
            BuildEnvironmentError: If a directory cannot be created or removed
        """
        try:
            for directory in (self.package_root, self.sources, self.build, self.subpackages):
                if directory.exists():
                    shutil.rmtree(directory)
                directory.mkdir(parents=True)
            for directory in (self.downloads, self.packages, self.source_packages):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BuildEnvironmentError(f"Failed to prepare working area {self.base}: {e}") from e

        logger.debug(f"Prepared working area in {self.base}")


class BuildContext:
    """Everything a build run needs, created once at process start.

    Attributes:
        options: Command line toggles
        settings: YAML settings
        area: Working area directories
        macros: Macro engine seeded for this run
        arch: Host architecture used in package names
        source_date_epoch: Timestamp written into packages
        recipe_dir: Directory local sources are read from
    """

    def __init__(self, options: BuildOptions, settings: Settings, area: WorkingArea | None = None):
        self.options = options
        self.settings = settings
        self.area = area or WorkingArea.for_settings(settings)
        self.arch = platform.machine() or "any"
        self.source_date_epoch = int(get_env_var(ENV_SOURCE_DATE_EPOCH, "0") or 0)
        self.recipe_dir = Path(options.recipe).resolve().parent if options.recipe else Path(os.getcwd())
        self.macros = MacroEngine(
            builtins={
                "buildroot": str(self.area.package_root),
                "_sourcedir": str(self.area.sources),
                "_builddir": str(self.area.build),
            },
            defines=options.defines,
        )

    @property
    def privileged(self) -> bool:
        return self.options.privileged
