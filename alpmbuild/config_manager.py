"""User settings stored in a YAML file."""

import logging
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from alpmbuild.config import ENV_CONFIG, ENV_PACKAGER, ENV_WORKDIR, get_env_var

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Host-specific settings.

    Attributes:
        workdir: Working area holding the staging root, sources and outputs
        packager: Value of the ``packager`` field in .PKGINFO
        archiver: bsdtar-compatible archiver used for .MTREE and packages
        privilege_helper: Command that runs the privileged phase (fakeroot)
        gpg: GPG-compatible signature tool
        shell: Interpreter for generated build scripts
        escalation: Command used to install missing dependencies
        download_timeout: HTTP timeout in seconds for source downloads
        download_retries: Transport retries for source downloads
        auto_import_keys: Import missing GPG keys without asking
    """

    workdir: str = ""
    packager: str = "Unknown Packager"
    archiver: str = "bsdtar"
    privilege_helper: str = "fakeroot"
    gpg: str = "gpg"
    shell: str = "/bin/sh"
    escalation: str = "pkexec"
    download_timeout: int = 300
    download_retries: int = 3
    auto_import_keys: bool = False

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "Settings":
        """Load settings from a YAML file.

        Args:
            yaml_path: Path to the YAML settings file

        Returns:
            Settings populated from the file; unknown keys are ignored

        Raises:
            FileNotFoundError: If the YAML file does not exist
            ValueError: If the file does not contain a mapping
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Settings file {yaml_path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown settings in {yaml_path}: {', '.join(unknown)}")

        return cls(**{key: value for key, value in data.items() if key in known})


class ConfigManager:
    """Locates and loads the settings file.

    Attributes:
        config_path: Path of the YAML settings file
    """

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize ConfigManager.

        Args:
            config_path: Explicit settings path. Defaults to ALPMBUILD_CONFIG or
                ~/.config/alpmbuild/config.yaml
        """
        path = config_path or get_env_var(ENV_CONFIG)
        if path:
            self.config_path = Path(path)
        else:
            self.config_path = Path.home() / ".config" / "alpmbuild" / "config.yaml"

    def load(self) -> Settings:
        """Load settings, applying environment overrides.

        Returns:
            Settings from the file, or defaults when the file does not exist
        """
        if self.config_path.exists():
            settings = Settings.from_yaml(self.config_path)
            logger.debug(f"Loaded settings from {self.config_path}")
        else:
            settings = Settings()

        workdir = get_env_var(ENV_WORKDIR)
        if workdir:
            settings.workdir = workdir
        packager = get_env_var(ENV_PACKAGER)
        if packager:
            settings.packager = packager
        return settings
