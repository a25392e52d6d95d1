"""Package assembler turning a staged tree into a pacman archive."""

import logging
import os
import re
import shutil
import subprocess
import tempfile
import time
from pathlib import Path

from alpmbuild.alpm import PacmanDatabase
from alpmbuild.buildinfo import BUILDINFO_FILENAME, generate_build_info, write_build_info
from alpmbuild.config import ENV_SOURCE_DATE_EPOCH, VERSION, get_env_var
from alpmbuild.context import BuildContext
from alpmbuild.errors import BuildEnvironmentError, ExecutionError, VerificationError
from alpmbuild.lint import lint_package_root
from alpmbuild.models import PackageDefinition, PackageTree
from alpmbuild.utils import is_url

logger = logging.getLogger(__name__)

PKGINFO_FILENAME = ".PKGINFO"
MTREE_FILENAME = ".MTREE"
INSTALL_FILENAME = ".INSTALL"
CHANGELOG_FILENAME = ".CHANGELOG"

# Order matters: pacman reads .PKGINFO from the start of the archive.
METADATA_FILES = (
    PKGINFO_FILENAME,
    BUILDINFO_FILENAME,
    MTREE_FILENAME,
    INSTALL_FILENAME,
    CHANGELOG_FILENAME,
)

MTREE_OPTIONS = "!all,use-set,type,uid,gid,mode,time,size,md5,sha256,link"


def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a %files pattern into an anchored regex over staged paths.

    The leading "/" is dropped, "." is literal and "*" matches any sequence.
    A pattern naming a directory also matches everything below it.

    Examples:
        >>> bool(glob_to_regex("/usr/bin/*").match("usr/bin/foo"))
        True
        >>> bool(glob_to_regex("/usr/share/foo").match("usr/share/foo/a/b"))
        True
    """
    body = re.escape(pattern.strip().lstrip("/")).replace(r"\*", ".*")
    return re.compile(f"^{body}(/.*)?$")


def staged_files(root: Path) -> list[str]:
    """Relative paths of all files and symlinks below ``root``, metadata excluded."""
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        directory = Path(dirpath)
        for name in filenames:
            relative = (directory / name).relative_to(root).as_posix()
            if relative not in METADATA_FILES:
                found.append(relative)
        # Symlinks to directories are entries of their own, not trees to walk.
        for name in list(dirnames):
            if (directory / name).is_symlink():
                dirnames.remove(name)
                found.append((directory / name).relative_to(root).as_posix())
    return sorted(found)


def installed_size(root: Path) -> int:
    total = 0
    for relative in staged_files(root):
        total += (root / relative).lstat().st_size
    return total


class PackageAssembler:
    """Writes metadata for one package and compresses it into the packages directory."""

    def __init__(
        self,
        context: BuildContext,
        tree: PackageTree,
        recipe: str = "",
        database: PacmanDatabase | None = None,
    ):
        """Initialize the assembler.

        Args:
            context: Build context
            tree: Parsed packages
            recipe: Recipe text embedded in the build info
            database: Package database used for the installed package list
        """
        self.context = context
        self.tree = tree
        self.recipe = recipe
        self.database = database or PacmanDatabase()
        self.area = context.area
        self.settings = context.settings
        self.options = context.options

    def root_for(self, package: PackageDefinition) -> Path:
        if package.is_subpackage:
            return self.area.subpackage_root(package.name)
        return self.area.package_root

    def assemble(self, package: PackageDefinition) -> Path:
        """Build the archive of ``package``.

        Returns:
            Path of the compressed package

        Raises:
            VerificationError: If a lint or the file coverage check fails
            ExecutionError: If the archiver fails
        """
        if package.is_subpackage:
            self.tree.inherit(package)
            self.split_subpackage(package)

        root = self.root_for(package)
        root.mkdir(parents=True, exist_ok=True)
        nevra = package.nevra(self.context.arch)
        logger.info(f"Assembling {nevra}...")

        lint_package_root(root, nevra, self.area.base)
        size = installed_size(root)

        install = self.generate_install_file(package)
        if install:
            (root / INSTALL_FILENAME).write_text(install, encoding="utf-8")
        if package.changelog:
            (root / CHANGELOG_FILENAME).write_text("\n".join(package.changelog) + "\n", encoding="utf-8")
        (root / PKGINFO_FILENAME).write_text(self.generate_pkginfo(package, size), encoding="utf-8")

        logger.info(f"Generating build info for {nevra}...")
        parent = self.tree.parent_of(package)
        write_build_info(root, generate_build_info(package, parent, self.recipe, self.database.list_installed()))

        self.write_mtree(root)
        self.verify_coverage(package, root)
        self.reset_timestamps(root)

        archive = self.area.packages / package.package_filename(self.context.arch, self.options.compression_method.suffix)
        self.compress(root, archive)
        logger.info(f"Created {archive.name}")
        return archive

    def split_subpackage(self, package: PackageDefinition) -> int:
        """Move the staged files claimed by ``package`` into its own root.

        Returns:
            Number of files moved
        """
        patterns = [glob_to_regex(pattern) for pattern in package.files + package.backup]
        source_root = self.area.package_root
        target_root = self.area.subpackage_root(package.name)
        target_root.mkdir(parents=True, exist_ok=True)

        moved = 0
        for relative in staged_files(source_root):
            if not any(pattern.match(relative) for pattern in patterns):
                continue
            destination = target_root / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source_root / relative), str(destination))
            self._prune_empty_parents(source_root / relative, source_root)
            moved += 1

        logger.debug(f"Moved {moved} file(s) into {package.name}")
        return moved

    def _prune_empty_parents(self, path: Path, root: Path) -> None:
        parent = path.parent
        while parent != root and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    def generate_install_file(self, package: PackageDefinition) -> str:
        """Generate .INSTALL content, one shell function per non-empty scriptlet.

        Returns:
            File content, or an empty string when no scriptlet is defined
        """
        functions = []
        for name, lines in package.scriptlets.hooks():
            if not lines:
                continue
            body = "\n".join(f"    {line}" for line in lines)
            functions.append(f"{name}() {{\n{body}\n}}")
        if not functions:
            return ""
        return "\n\n".join(functions) + "\n"

    def generate_pkginfo(self, package: PackageDefinition, size: int) -> str:
        """Generate .PKGINFO content.

        Args:
            package: Package with inherited fields already resolved
            size: Installed size in bytes

        Returns:
            .PKGINFO file content
        """
        description = package.summary or " ".join(line.strip() for line in package.description).strip()
        url = package.url or self.tree.main.url
        lines = [
            f"# Generated by alpmbuild {VERSION}",
            f"pkgname = {package.name}",
            f"pkgbase = {self.tree.main.name}",
            f"pkgver = {package.evr()}",
        ]
        if description:
            lines.append(f"pkgdesc = {description}")
        if url:
            lines.append(f"url = {url}")
        lines += [
            f"builddate = {self.build_date()}",
            f"packager = {self.settings.packager}",
            f"size = {size}",
            f"arch = {self.context.arch}",
        ]
        if package.license:
            lines.append(f"license = {package.license}")
        lines += [f"replaces = {item}" for item in package.replaces]
        lines += [f"group = {item}" for item in package.groups]
        lines += [f"conflict = {item}" for item in package.conflicts]
        lines += [f"provides = {item}" for item in package.provides]
        lines += [f"backup = {item}" for item in package.backup]
        lines += [f"depend = {item}" for item in package.requires]
        for item in package.recommends:
            reason = self.tree.reason_for(package, item)
            lines.append(f"optdepend = {item}: {reason}" if reason else f"optdepend = {item}")
        lines += [f"makedepend = {item}" for item in package.build_requires]
        lines += [f"checkdepend = {item}" for item in package.check_requires]
        return "\n".join(lines) + "\n"

    def build_date(self) -> int:
        epoch = get_env_var(ENV_SOURCE_DATE_EPOCH)
        if epoch:
            return self.context.source_date_epoch
        return int(time.time())

    def write_mtree(self, root: Path) -> None:
        logger.debug(f"Generating {MTREE_FILENAME} in {root}")
        entries = sorted(entry.name for entry in root.iterdir())
        self._archive(
            [
                self.settings.archiver,
                "-czf",
                MTREE_FILENAME,
                "--format=mtree",
                f"--options={MTREE_OPTIONS}",
                *entries,
            ],
            root,
        )

    def verify_coverage(self, package: PackageDefinition, root: Path) -> list[str]:
        """Check that every staged file is listed in %files.

        Returns:
            Staged paths that no pattern matches

        Raises:
            VerificationError: If unmatched files remain and checking is strict
        """
        patterns = [
            glob_to_regex(pattern)
            for owner in [package, *self.tree.children_of(package)]
            for pattern in owner.files + owner.backup
        ]
        unlisted = [path for path in staged_files(root) if not any(p.match(path) for p in patterns)]
        if not unlisted:
            return unlisted

        if self.tree.check_files and self.options.strict_files:
            listing = "\n".join(f"    /{path}" for path in unlisted)
            raise VerificationError(
                f"{len(unlisted)} file(s) not listed in %files of {package.name}:\n{listing}",
                hint="Add them to %files or build with --no-strict-files",
            )
        for path in unlisted:
            logger.warning(f"/{path} is not listed in %files of {package.name}")
        return unlisted

    def reset_timestamps(self, root: Path) -> None:
        """Set atime and mtime of everything under ``root`` to SOURCE_DATE_EPOCH."""
        stamp = (self.context.source_date_epoch, self.context.source_date_epoch)
        for dirpath, dirnames, filenames in os.walk(root, topdown=False):
            for name in filenames + dirnames:
                os.utime(Path(dirpath) / name, stamp, follow_symlinks=False)
        os.utime(root, stamp)

    def compress(self, root: Path, archive: Path) -> None:
        archive.parent.mkdir(parents=True, exist_ok=True)
        if archive.exists():
            archive.unlink()
        names = {entry.name for entry in root.iterdir()}
        entries = [name for name in METADATA_FILES if name in names]
        entries += sorted(names - set(METADATA_FILES))
        method = self.options.compression_method
        self._archive([self.settings.archiver, "-c", method.flag, "-f", str(archive), *entries], root)

    def assemble_source_package(self, recipe_path: Path) -> Path:
        """Pack the recipe and its local sources and patches.

        Returns:
            Path of the source package
        """
        main = self.tree.main
        archive = self.area.source_packages / main.source_package_filename(self.options.compression_method.suffix)
        logger.info(f"Creating source package {archive.name}...")

        with tempfile.TemporaryDirectory(prefix="alpmbuild-src-") as staging:
            staging_root = Path(staging)
            try:
                shutil.copy2(recipe_path, staging_root / recipe_path.name)
                for entry in main.sources + main.patches:
                    if is_url(entry.url):
                        continue
                    local = self.area.sources / entry.filename
                    if local.is_file():
                        shutil.copy2(local, staging_root / entry.filename)
            except OSError as e:
                raise BuildEnvironmentError(f"Failed to stage source package: {e}") from e
            self.reset_timestamps(staging_root)
            self.compress(staging_root, archive)

        return archive

    def _archive(self, command: list[str], cwd: Path) -> None:
        env = {**os.environ, "LANG": "C"}
        try:
            result = subprocess.run(command, cwd=cwd, env=env, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExecutionError(f"Could not run {command[0]}: {e}", command) from e
        if result.returncode != 0:
            raise ExecutionError(
                f"{command[0]} failed with exit status {result.returncode}:\n{result.stderr.strip()}",
                command,
                result.returncode,
            )
