"""Build info record stored in every package as .ALPMBUILD_BUILDINFO."""

import json
import logging
import platform
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from alpmbuild.alpm import InstalledPackage
from alpmbuild.models import PackageDefinition

logger = logging.getLogger(__name__)

BUILDINFO_FILENAME = ".ALPMBUILD_BUILDINFO"


@dataclass
class SystemInfo:
    arch: str
    os: str
    python_version: str
    packages: list[InstalledPackage] = field(default_factory=list)

    @classmethod
    def collect(cls, installed: list[InstalledPackage]) -> "SystemInfo":
        return cls(
            arch=platform.machine(),
            os=platform.system().lower(),
            python_version=platform.python_version(),
            packages=installed,
        )


@dataclass
class BuildInfo:
    """Host and recipe snapshot a package was built from."""

    system: SystemInfo
    recipe: str
    package: PackageDefinition
    parent_package: PackageDefinition | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.parent_package is None:
            del data["parent_package"]
        return data


def generate_build_info(
    package: PackageDefinition,
    parent: PackageDefinition | None,
    recipe: str,
    installed: list[InstalledPackage],
) -> str:
    """Generate the JSON content of the build info file.

    Args:
        package: Package being assembled
        parent: Main package when ``package`` is a subpackage
        recipe: Full recipe text
        installed: Packages installed on the build host

    Returns:
        Indented JSON document
    """
    info = BuildInfo(
        system=SystemInfo.collect(installed),
        recipe=recipe,
        package=package,
        parent_package=parent,
    )
    return json.dumps(info.to_dict(), indent="\t") + "\n"


def write_build_info(root: Path, content: str) -> Path:
    path = root / BUILDINFO_FILENAME
    path.write_text(content, encoding="utf-8")
    logger.debug(f"Wrote {path}")
    return path
