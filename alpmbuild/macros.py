"""Macro table and %{name} expansion."""

import logging
import re

from alpmbuild.config import VERSION
from alpmbuild.models import MACRO_FIELDS, PackageDefinition

logger = logging.getLogger(__name__)

MAX_EXPANSION_PASSES = 256

TOKEN_PATTERN = re.compile(r"%\{(\??)([^{}?]+)\}")
UNEXPANDED_PATTERN = re.compile(r"%\{(.+?)\}")
SETUP_PATTERN = re.compile(r"^\s*%setup(?=\s|$)(.*)$")
PATCH_PATTERN = re.compile(r"^\s*%patch(\d*)(?=\s|$)(.*)$")

PATH_MACROS = {
    "_sysconfdir": "/etc",
    "_prefix": "/usr",
    "_datarootdir": "%{_prefix}/share",
    "_exec_prefix": "%{_prefix}",
    "_includedir": "%{_prefix}/include",
    "_bindir": "%{_exec_prefix}/bin",
    "_libdir": "%{_exec_prefix}/%{_lib}",
    "_libexecdir": "%{_exec_prefix}/libexec",
    "_sbindir": "%{_exec_prefix}/sbin",
    "_datadir": "%{_datarootdir}",
    "_infodir": "%{_datarootdir}/info",
    "_mandir": "%{_datarootdir}/man",
    "_docdir": "%{_datadir}/doc",
    "_rundir": "/run",
    "_localstatedir": "/var",
    "_sharedstatedir": "/var/lib",
    "_lib": "lib",
}

# Build invocations following Arch packaging guidelines
HELPER_MACROS = {
    "alp_cargo_build": "cargo build --release --locked",
    "alp_cargo_test": "cargo test --release --locked",
    "alpm_go_build": "go build -trimpath -buildmode=pie -mod=readonly -modcacherw",
}

TAR_SUFFIXES = (
    ".tar",
    ".tar.gz",
    ".tgz",
    ".tar.bz2",
    ".tbz",
    ".tbz2",
    ".tar.xz",
    ".txz",
    ".tar.zst",
    ".tzst",
    ".tar.lz",
    ".tar.lzma",
)
ZIP_SUFFIXES = (".zip", ".jar")


def extraction_command(filename: str, quiet: bool) -> str | None:
    """Return the shell command that unpacks ``filename`` into the current directory.

    Returns None for files that are not archives.
    """
    lowered = filename.lower()
    path = f'"%{{_sourcedir}}/{filename}"'
    if lowered.endswith(ZIP_SUFFIXES):
        return f"unzip -q {path}" if quiet else f"unzip {path}"
    if lowered.endswith(TAR_SUFFIXES):
        return f"tar -xf {path}" if quiet else f"tar -xvf {path}"
    return None


class MacroEngine:
    """Expands %{name} tokens against a macro table and the active package.

    The table is seeded once per run: path macros, helper macros, working
    area macros and finally user definitions, each able to override the
    previous ones.
    """

    def __init__(self, builtins: dict[str, str] | None = None, defines: list[str] | None = None):
        self.table: dict[str, str] = {}
        self.table.update(PATH_MACROS)
        self.table.update(HELPER_MACROS)
        self.table["alpmbuild"] = VERSION
        self.table.update(builtins or {})
        for definition in defines or []:
            self.define(definition)
        self.buildsubdir_override: str | None = None

    def define(self, definition: str) -> None:
        """Register a ``name value`` definition, as given to -D/--define."""
        name, _, value = definition.strip().partition(" ")
        name = name.lstrip("%")
        if not name:
            raise ValueError(f"Invalid macro definition: {definition!r}")
        self.table[name] = value.strip()
        logger.debug(f"Defined macro {name} as {value.strip()!r}")

    def names(self) -> list[str]:
        """All macro names that can currently resolve."""
        return sorted(set(self.table) | set(MACRO_FIELDS) | {"buildsubdir"})

    def bindings(self, package: PackageDefinition | None) -> dict[str, str]:
        """Dynamic macros taken from the package being parsed."""
        bound: dict[str, str] = {}
        if package is None:
            return bound
        for name, getter in MACRO_FIELDS.items():
            value = getter(package)
            if value:
                bound[name] = value
        if self.buildsubdir_override:
            bound["buildsubdir"] = self.buildsubdir_override
        elif package.name and package.version:
            bound["buildsubdir"] = f"{package.name}-{package.version}"
        return bound

    def lookup(self, name: str, bound: dict[str, str]) -> str | None:
        if name in bound:
            return bound[name]
        return self.table.get(name)

    def expand(self, text: str, package: PackageDefinition | None = None, directives: bool = True) -> str:
        """Expand every resolvable %{name} token in ``text``.

        Passes repeat until nothing changes or MAX_EXPANSION_PASSES is hit.
        Tokens that cannot be resolved are left in place; %{?name} tokens
        collapse to an empty string instead.

        Args:
            text: Text to expand
            package: Package whose identity fields act as macros
            directives: Synthesize %setup and %patch lines into shell commands

        Returns:
            Expanded text
        """
        if package is not None and directives:
            if SETUP_PATTERN.match(text):
                text = self.setup_script(text, package)
            elif PATCH_PATTERN.match(text):
                text = self.patch_command(text, package)

        bound = self.bindings(package)

        def substitute(match: re.Match) -> str:
            optional, name = match.group(1), match.group(2)
            value = self.lookup(name, bound)
            if value is None:
                return "" if optional else match.group(0)
            return value

        for _ in range(MAX_EXPANSION_PASSES):
            expanded = TOKEN_PATTERN.sub(substitute, text)
            if expanded == text:
                break
            text = expanded
        else:
            logger.debug(f"Macro expansion stopped after {MAX_EXPANSION_PASSES} passes")
        return text

    def unexpanded(self, expanded: str) -> list[str]:
        """Return the %{...} tokens left over in already expanded text."""
        return [match.group(0) for match in UNEXPANDED_PATTERN.finditer(expanded)]

    def setup_script(self, line: str, package: PackageDefinition) -> str:
        """Turn a %setup line into the shell commands that unpack the sources.

        Flags: -c create the build subdirectory first, -D keep an existing
        build subdirectory, -q extract quietly, -T skip the sources after the
        first one, -n DIR use DIR as the build subdirectory.
        """
        args = SETUP_PATTERN.match(line).group(1).split()
        create = "-c" in args
        keep = "-D" in args
        quiet = "-q" in args
        first_only = "-T" in args
        if "-n" in args and args.index("-n") + 1 < len(args):
            self.buildsubdir_override = self.expand(args[args.index("-n") + 1], package)

        script = ['cd "%{_builddir}"']
        if not keep:
            script.append('rm -rf "%{buildsubdir}"')
        if create:
            script.append('mkdir -p "%{buildsubdir}"')
            script.append('cd "%{buildsubdir}"')

        sources = package.sources if not first_only else package.sources[:1]
        for source in sources:
            command = extraction_command(self.expand(source.filename, package), quiet)
            if command:
                script.append(command)

        script.append('cd "%{_builddir}/%{buildsubdir}"')
        return "\n".join(script)

    def patch_command(self, line: str, package: PackageDefinition) -> str:
        """Turn ``%patchN [-pX]`` or ``%patch -P N [-pX]`` into a patch(1) call."""
        match = PATCH_PATTERN.match(line)
        args = match.group(2).split()
        number = match.group(1) or "0"
        if "-P" in args and args.index("-P") + 1 < len(args):
            number = args[args.index("-P") + 1]
        level = next((arg for arg in args if re.fullmatch(r"-p\d+", arg)), None)

        index = int(number) if number.isdigit() else -1
        if not 0 <= index < len(package.patches):
            logger.warning(f"%patch refers to undeclared patch {number}")
            return line

        command = ["patch"]
        if level:
            command.append(level)
        command.append(f'-i "%{{_sourcedir}}/{package.patches[index].filename}"')
        return " ".join(command)
