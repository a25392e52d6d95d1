"""Configuration and logging setup for alpmbuild."""

import logging
import os
import sys
from dataclasses import dataclass, field

from alpmbuild.output import DiagnosticFormatter


def setup_logging(level: str | None = None, colours: bool = True) -> None:
    """Set up the ``==>`` style console logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to
            ALPMBUILD_LOG_LEVEL or INFO.
        colours: Colour the prefixes when stderr is a terminal
    """
    log_level = level or os.getenv(ENV_LOG_LEVEL, "INFO")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(DiagnosticFormatter(colours=colours and sys.stderr.isatty()))

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=[handler],
        force=True,
    )

    # Download retries are reported by our own messages
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_env_var(name: str, default: str | None = None) -> str:
    """Get environment variable, falling back to ``default``.

    Args:
        name: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value, or an empty string
    """
    return os.getenv(name, default) or ""


@dataclass(frozen=True)
class CompressionMethod:
    """Archiver flag and file suffix of a compression choice."""

    flag: str
    suffix: str


COMPRESSION_METHODS: dict[str, CompressionMethod] = {
    "gz": CompressionMethod(flag="--gzip", suffix="gz"),
    "xz": CompressionMethod(flag="--xz", suffix="xz"),
    "zstd": CompressionMethod(flag="--zstd", suffix="zst"),
    "bz2": CompressionMethod(flag="--bzip2", suffix="bz2"),
}

DEFAULT_COMPRESSION = "zstd"


@dataclass
class BuildOptions:
    """Toggles taken from the command line.

    Attributes:
        recipe: Path of the recipe being built
        strict_files: Fail when a staged file is not listed in %files
        hide_command_output: Discard stdout/stderr of generated scripts
        colours: Colour terminal output
        source_package: Also produce a .alpmsrc source package
        compression: Key of COMPRESSION_METHODS
        ignore_deps: Skip dependency existence checks and the install prompt
        privileged: Running as the re-executed privileged phase
        defines: "name value" macro definitions from -D/--define
        argv: Arguments to pass again when re-executing for the privileged phase
    """

    recipe: str
    strict_files: bool = True
    hide_command_output: bool = False
    colours: bool = True
    source_package: bool = True
    compression: str = DEFAULT_COMPRESSION
    ignore_deps: bool = False
    privileged: bool = False
    defines: list[str] = field(default_factory=list)
    argv: list[str] = field(default_factory=list)

    @property
    def compression_method(self) -> CompressionMethod:
        return COMPRESSION_METHODS[self.compression]


# Environment variable names
ENV_LOG_LEVEL = "ALPMBUILD_LOG_LEVEL"
ENV_CONFIG = "ALPMBUILD_CONFIG"
ENV_WORKDIR = "ALPMBUILD_WORKDIR"
ENV_PACKAGER = "PACKAGER"
ENV_SOURCE_DATE_EPOCH = "SOURCE_DATE_EPOCH"

VERSION = "0.1.0"
