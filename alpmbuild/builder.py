"""Two-phase build orchestration."""

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Callable

from alpmbuild.alpm import PacmanDatabase
from alpmbuild.assembler import PackageAssembler
from alpmbuild.context import BuildContext
from alpmbuild.errors import BuildEnvironmentError, ExecutionError, VerificationError
from alpmbuild.models import PackageTree
from alpmbuild.sources import SourceFetcher

logger = logging.getLogger(__name__)

PRIVILEGED_FLAG = "--fakeroot"


class PrivilegeHelper:
    """Runs a command under a fakeroot-like helper."""

    def __init__(self, command: str = "fakeroot"):
        self.command = command

    def run(self, argv: list[str]) -> int:
        """Run ``argv`` under the helper and return its exit status."""
        full_command = [self.command, "--", *argv]
        logger.debug(f"Running {' '.join(full_command)}")
        try:
            return subprocess.run(full_command, check=False).returncode
        except OSError as e:
            raise BuildEnvironmentError(f"Could not run privilege helper {self.command}: {e}") from e


class BuildOrchestrator:
    """Drives a parsed recipe from sources to package archives.

    The unprivileged phase builds the software and re-invokes the program
    with ``--fakeroot`` under the privilege helper; the privileged phase
    installs into the staging root and assembles the packages.
    """

    def __init__(
        self,
        context: BuildContext,
        recipe: str = "",
        fetcher: SourceFetcher | None = None,
        assembler: PackageAssembler | None = None,
        helper: PrivilegeHelper | None = None,
        database: PacmanDatabase | None = None,
        prompt: Callable[[str], str] = input,
    ):
        """Initialize the orchestrator.

        Args:
            context: Build context
            recipe: Recipe text, embedded in build info
            fetcher: Source fetcher, created on demand
            assembler: Package assembler, created per tree when omitted
            helper: Privilege helper used to enter the privileged phase
            database: Package database for the dependency check
            prompt: Reads an answer from the user
        """
        self.context = context
        self.recipe = recipe
        self.fetcher = fetcher
        self.assembler = assembler
        self.helper = helper or PrivilegeHelper(context.settings.privilege_helper)
        self.database = database or PacmanDatabase()
        self.prompt = prompt

    def run(self, tree: PackageTree) -> int:
        """Run the phase selected by the command line.

        Returns:
            Process exit status
        """
        if self.context.privileged:
            return self.run_privileged(tree)
        return self.run_unprivileged(tree)

    def run_unprivileged(self, tree: PackageTree) -> int:
        """Check, fetch, build, then hand over to the privileged phase.

        Raises:
            VerificationError: On an architecture mismatch or a bad source
            ExecutionError: If the build script fails
        """
        main = tree.main
        self.check_architecture(tree)

        if not self.context.options.ignore_deps:
            if not self.install_missing_dependencies(tree):
                return 0

        self.context.area.prepare()
        fetcher = self.fetcher or SourceFetcher(self.context)
        fetcher.fetch_all(main)

        commands = main.commands
        script = commands.prepare + commands.build + commands.check
        logger.info(f"Building {main.nevr()}...")
        self.run_script("build", script, self.context.area.build)

        logger.info("Entering fakeroot environment...")
        argv = [sys.executable, "-m", "alpmbuild.main", *self.context.options.argv, PRIVILEGED_FLAG]
        status = self.helper.run(argv)
        if status != 0:
            raise ExecutionError(f"Packaging failed with exit status {status}", argv, status)
        return status

    def run_privileged(self, tree: PackageTree) -> int:
        """Install into the staging root and assemble all packages."""
        main = tree.main
        area = self.context.area

        workdir = area.build / self.context.macros.expand("%{buildsubdir}", main)
        if not workdir.is_dir():
            workdir = area.build
        logger.info(f"Installing {main.nevr()}...")
        self.run_script("install", main.commands.install, workdir)

        assembler = self.assembler or PackageAssembler(self.context, tree, self.recipe, self.database)
        for package in tree.subpackages():
            assembler.assemble(package)
        assembler.assemble(main)

        if self.context.options.source_package:
            assembler.assemble_source_package(Path(self.context.options.recipe))
        return 0

    def check_architecture(self, tree: PackageTree) -> None:
        allowed = tree.main.exclusive_arch
        if allowed and self.context.arch not in allowed and "any" not in allowed:
            raise VerificationError(
                f"{tree.main.name} cannot be built on {self.context.arch}",
                hint=f"ExclusiveArch allows: {', '.join(allowed)}",
            )

    def install_missing_dependencies(self, tree: PackageTree) -> bool:
        """Offer to install unsatisfied Requires and BuildRequires.

        Returns:
            True when the build can continue, False when the user only listed
            the missing packages

        Raises:
            BuildEnvironmentError: If the user aborts or the installation fails
        """
        main = tree.main
        missing = self.database.missing_dependencies(main.requires + main.build_requires)
        if not missing:
            return True

        logger.warning(f"{len(missing)} package(s) need installation to build {main.name}:")
        try:
            answer = self.prompt("    Actions: Install (i), List (l), Abort (default: a)\n  -> ")
        except EOFError:
            answer = ""

        if "i" in answer:
            command = [self.context.settings.escalation, "pacman", "-S", *missing]
            try:
                result = subprocess.run(command, check=False)
            except OSError as e:
                raise BuildEnvironmentError(f"Could not run {command[0]}: {e}") from e
            if result.returncode == 0:
                return True
        elif "l" in answer:
            logger.info(" ".join(missing))
            return False
        raise BuildEnvironmentError("Cannot build package without dependencies, aborting...")

    def run_script(self, name: str, lines: list[str], cwd: Path) -> None:
        """Run generated shell ``lines`` with BUILDROOT set.

        Raises:
            ExecutionError: If the script exits unsuccessfully
        """
        if not lines:
            return
        area = self.context.area
        area.build.mkdir(parents=True, exist_ok=True)
        script = area.build / f".alpmbuild-{name}.sh"
        script.write_text("\n".join(lines) + "\n", encoding="utf-8")

        env = {**os.environ, "BUILDROOT": str(area.package_root)}
        command = [self.context.settings.shell, "-e", str(script)]
        output = subprocess.DEVNULL if self.context.options.hide_command_output else None
        try:
            result = subprocess.run(command, cwd=cwd, env=env, stdout=output, stderr=output, check=False)
        except OSError as e:
            raise ExecutionError(f"Could not run {command[0]}: {e}", command) from e
        if result.returncode != 0:
            raise ExecutionError(
                f"The {name} script failed with exit status {result.returncode}", command, result.returncode
            )
