"""Data models for parsed recipes."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable
from urllib.parse import urlparse


@dataclass
class SourceEntry:
    """A Source or Patch line of a recipe."""

    url: str
    rename: str | None = None
    digests: dict[str, str] = field(default_factory=dict)
    signature_url: str | None = None
    gpg_keys: list[str] = field(default_factory=list)
    keyservers: list[str] = field(default_factory=list)

    @property
    def filename(self) -> str:
        """Name of the file inside the source directory."""
        if self.rename:
            return self.rename
        return PurePosixPath(urlparse(self.url).path).name or self.url


@dataclass
class Commands:
    prepare: list[str] = field(default_factory=list)
    build: list[str] = field(default_factory=list)
    install: list[str] = field(default_factory=list)
    check: list[str] = field(default_factory=list)


@dataclass
class Scriptlets:
    pre_install: list[str] = field(default_factory=list)
    post_install: list[str] = field(default_factory=list)
    pre_upgrade: list[str] = field(default_factory=list)
    post_upgrade: list[str] = field(default_factory=list)
    pre_remove: list[str] = field(default_factory=list)
    post_remove: list[str] = field(default_factory=list)

    def hooks(self) -> list[tuple[str, list[str]]]:
        """Return (function name, lines) pairs in install-lifecycle order."""
        return [
            ("pre_install", self.pre_install),
            ("post_install", self.post_install),
            ("pre_upgrade", self.pre_upgrade),
            ("post_upgrade", self.post_upgrade),
            ("pre_remove", self.pre_remove),
            ("post_remove", self.post_remove),
        ]


@dataclass
class PackageDefinition:
    """Everything a recipe declares about one package or subpackage."""

    name: str = ""
    version: str = ""
    release: str = ""
    epoch: str = ""
    summary: str = ""
    license: str = ""
    url: str = ""
    description: list[str] = field(default_factory=list)

    requires: list[str] = field(default_factory=list)
    build_requires: list[str] = field(default_factory=list)
    check_requires: list[str] = field(default_factory=list)
    recommends: list[str] = field(default_factory=list)
    provides: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    replaces: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    exclusive_arch: list[str] = field(default_factory=list)

    sources: list[SourceEntry] = field(default_factory=list)
    patches: list[SourceEntry] = field(default_factory=list)

    commands: Commands = field(default_factory=Commands)
    scriptlets: Scriptlets = field(default_factory=Scriptlets)

    files: list[str] = field(default_factory=list)
    backup: list[str] = field(default_factory=list)
    changelog: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)

    is_subpackage: bool = False
    parent: int | None = None

    def evr(self) -> str:
        """Return ``[epoch:]version-release``."""
        version = f"{self.version}-{self.release}"
        if self.epoch:
            return f"{self.epoch}:{version}"
        return version

    def nevr(self) -> str:
        return f"{self.name}-{self.evr()}"

    def nevra(self, arch: str) -> str:
        return f"{self.nevr()}-{arch}"

    def package_filename(self, arch: str, suffix: str) -> str:
        return f"{self.nevra(arch)}.pkg.tar.{suffix}"

    def source_package_filename(self, suffix: str) -> str:
        return f"{self.nevr()}.alpmsrc.pkg.tar.{suffix}"


class Stage(Enum):
    """Recipe section that receives the lines that follow its marker."""

    NONE = "none"
    PREPARE = "prep"
    BUILD = "build"
    INSTALL = "install"
    CHECK = "check"
    FILES = "files"
    CHANGELOG = "changelog"
    DESCRIPTION = "description"
    PRE_INSTALL = "pre_install"
    POST_INSTALL = "post_install"
    PRE_UPGRADE = "pre_upgrade"
    POST_UPGRADE = "post_upgrade"
    PRE_REMOVE = "pre_remove"
    POST_REMOVE = "post_remove"


COMMAND_STAGES = {
    "%prep": Stage.PREPARE,
    "%build": Stage.BUILD,
    "%install": Stage.INSTALL,
    "%check": Stage.CHECK,
}

SCRIPTLET_STAGES = {
    "%pre_install": Stage.PRE_INSTALL,
    "%post_install": Stage.POST_INSTALL,
    "%pre_upgrade": Stage.PRE_UPGRADE,
    "%post_upgrade": Stage.POST_UPGRADE,
    "%pre_remove": Stage.PRE_REMOVE,
    "%post_remove": Stage.POST_REMOVE,
}


def stage_lines(package: PackageDefinition, stage: Stage) -> list[str]:
    """Return the list that collects lines for ``stage`` on ``package``."""
    lists = {
        Stage.PREPARE: package.commands.prepare,
        Stage.BUILD: package.commands.build,
        Stage.INSTALL: package.commands.install,
        Stage.CHECK: package.commands.check,
        Stage.PRE_INSTALL: package.scriptlets.pre_install,
        Stage.POST_INSTALL: package.scriptlets.post_install,
        Stage.PRE_UPGRADE: package.scriptlets.pre_upgrade,
        Stage.POST_UPGRADE: package.scriptlets.post_upgrade,
        Stage.PRE_REMOVE: package.scriptlets.pre_remove,
        Stage.POST_REMOVE: package.scriptlets.post_remove,
        Stage.CHANGELOG: package.changelog,
        Stage.DESCRIPTION: package.description,
    }
    return lists[stage]


@dataclass(frozen=True)
class FieldAccessor:
    """Getter/setter pair binding a recipe key to a PackageDefinition field."""

    get: Callable[[PackageDefinition], Any]
    set: Callable[[PackageDefinition, Any], None]


def _scalar(attribute: str) -> FieldAccessor:
    return FieldAccessor(
        get=lambda package: getattr(package, attribute),
        set=lambda package, value: setattr(package, attribute, value),
    )


def _array(attribute: str) -> FieldAccessor:
    return FieldAccessor(
        get=lambda package: getattr(package, attribute),
        set=lambda package, items: getattr(package, attribute).extend(items),
    )


# Keys are matched against the lower-cased first token of a line, colon included.
SINGLE_VALUE_KEYS: dict[str, FieldAccessor] = {
    "name:": _scalar("name"),
    "summary:": _scalar("summary"),
    "license:": _scalar("license"),
    "url:": _scalar("url"),
    "epoch:": _scalar("epoch"),
    "version:": _scalar("version"),
    "release:": _scalar("release"),
}

ARRAY_KEYS: dict[str, FieldAccessor] = {
    "requires:": _array("requires"),
    "buildrequires:": _array("build_requires"),
    "checkrequires:": _array("check_requires"),
    "recommends:": _array("recommends"),
    "provides:": _array("provides"),
    "conflicts:": _array("conflicts"),
    "replaces:": _array("replaces"),
    "groups:": _array("groups"),
    "exclusivearch:": _array("exclusive_arch"),
    "backup:": _array("backup"),
}

COMPOSITE_VERSION_KEYS = ("epoverrel:", "evr:", "epochversionrelease:")

# Items of these keys must be valid package identifiers.
DEPENDENCY_KEYS = (
    "requires:",
    "buildrequires:",
    "checkrequires:",
    "recommends:",
    "provides:",
    "conflicts:",
    "replaces:",
)

# Items of these keys must exist in the package database.
EXISTING_PACKAGE_KEYS = ("requires:", "buildrequires:", "checkrequires:", "recommends:")

GROUP_KEY = "groups:"

POSSIBLE_KEYS = [
    "Name:",
    "Summary:",
    "License:",
    "URL:",
    "Epoch:",
    "Version:",
    "Release:",
    "EpoVerRel:",
    "EVR:",
    "EpochVersionRelease:",
    "Requires:",
    "BuildRequires:",
    "CheckRequires:",
    "Recommends:",
    "Provides:",
    "Conflicts:",
    "Replaces:",
    "Groups:",
    "ExclusiveArch:",
    "Backup:",
    "Source:",
    "Patch:",
]

# Package fields visible to the macro engine as %{name}, %{version}, ...
MACRO_FIELDS: dict[str, Callable[[PackageDefinition], str]] = {
    "name": lambda package: package.name,
    "version": lambda package: package.version,
    "release": lambda package: package.release,
    "epoch": lambda package: package.epoch,
    "summary": lambda package: package.summary,
    "license": lambda package: package.license,
    "url": lambda package: package.url,
}

INHERITED_FIELDS = ("epoch", "version", "release", "license")


@dataclass
class PackageTree:
    """Flat arena of package definitions; index 0 is the main package.

    Subpackages refer to their parent by index, so no object holds a
    reference back to the package that owns it.
    """

    packages: list[PackageDefinition] = field(default_factory=lambda: [PackageDefinition()])
    subpackage_index: dict[str, int] = field(default_factory=dict)
    check_files: bool = True

    @property
    def main(self) -> PackageDefinition:
        return self.packages[0]

    def add_subpackage(self, name: str) -> PackageDefinition:
        """Create the subpackage ``name`` or return it if already declared."""
        if name in self.subpackage_index:
            return self.packages[self.subpackage_index[name]]
        package = PackageDefinition(name=name, is_subpackage=True, parent=0)
        self.packages.append(package)
        self.subpackage_index[name] = len(self.packages) - 1
        return package

    def get_subpackage(self, name: str) -> PackageDefinition | None:
        index = self.subpackage_index.get(name)
        if index is None:
            return None
        return self.packages[index]

    def subpackages(self) -> list[PackageDefinition]:
        """Subpackages in declaration order."""
        return [self.packages[index] for index in self.subpackage_index.values()]

    def parent_of(self, package: PackageDefinition) -> PackageDefinition | None:
        if package.parent is None:
            return None
        return self.packages[package.parent]

    def children_of(self, package: PackageDefinition) -> list[PackageDefinition]:
        return [sub for sub in self.subpackages() if self.parent_of(sub) is package]

    def resolve_inherited(self, package: PackageDefinition, attribute: str) -> str:
        """Return ``attribute`` of ``package``, falling back to its ancestors."""
        value = getattr(package, attribute)
        parent = self.parent_of(package)
        while not value and parent is not None:
            value = getattr(parent, attribute)
            parent = self.parent_of(parent)
        return value

    def inherit(self, package: PackageDefinition) -> None:
        """Fill empty identity fields of ``package`` from its parent."""
        for attribute in INHERITED_FIELDS:
            setattr(package, attribute, self.resolve_inherited(package, attribute))

    def reason_for(self, package: PackageDefinition, dependency: str) -> str | None:
        """Look up the ReasonFor text of an optional dependency."""
        current: PackageDefinition | None = package
        while current is not None:
            if dependency in current.reasons:
                return current.reasons[dependency]
            current = self.parent_of(current)
        return None
