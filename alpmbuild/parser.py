"""Recipe parser producing a PackageTree."""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto

from alpmbuild.alpm import PacmanDatabase
from alpmbuild.conditionals import ConditionalState
from alpmbuild.context import BuildContext
from alpmbuild.errors import ParseError
from alpmbuild.lint import NameLinter, NameProblem, dependency_name, lint_identifier
from alpmbuild.models import (
    ARRAY_KEYS,
    COMMAND_STAGES,
    COMPOSITE_VERSION_KEYS,
    DEPENDENCY_KEYS,
    EXISTING_PACKAGE_KEYS,
    GROUP_KEY,
    POSSIBLE_KEYS,
    SCRIPTLET_STAGES,
    SINGLE_VALUE_KEYS,
    PackageDefinition,
    PackageTree,
    SourceEntry,
    Stage,
    stage_lines,
)
from alpmbuild.output import highlight_context
from alpmbuild.utils import closest_string, grab_flag

logger = logging.getLogger(__name__)

TOOL_DIRECTIVE = "#!alpmbuild"
POSSIBLE_DIRECTIVES = ["NoFileCheck", "ReasonFor"]

HASH_TYPES = ["md5", "sha1", "sha224", "sha256", "sha384", "sha512"]
SOURCE_MODIFIERS = ["with", "renamed", "signature", "key", "keyserver"]

SCOPED_STAGES = {
    **SCRIPTLET_STAGES,
    "%files": Stage.FILES,
    "%changelog": Stage.CHANGELOG,
    "%description": Stage.DESCRIPTION,
}

# Lines of these stages are stored verbatim instead of being macro-expanded.
RAW_STAGES = (Stage.CHANGELOG, Stage.DESCRIPTION)

WARNING_INDENT = len("WARNING ==> ")


class LineAction(Enum):
    """Result of offering a line to one handler."""

    HANDLED = auto()
    PASS = auto()


@dataclass
class ParserState:
    """Registers of the parser while it walks the recipe.

    Attributes:
        tree: Packages parsed so far
        stage: Section receiving plain lines
        scope: Subpackage the current scoped section belongs to ("" for main)
        subpackage: Subpackage receiving key/value lines ("" for main)
        conditions: Active %if chain
    """

    tree: PackageTree = field(default_factory=PackageTree)
    stage: Stage = Stage.NONE
    scope: str = ""
    subpackage: str = ""
    conditions: ConditionalState = field(default_factory=ConditionalState)

    @property
    def main(self) -> PackageDefinition:
        return self.tree.main


class SpecParser:
    """Turns recipe text into a PackageTree.

    Parsing stops with a ParseError on the first line that cannot be
    understood.
    """

    def __init__(self, context: BuildContext, linter: NameLinter | None = None):
        self.context = context
        self.macros = context.macros
        self.linter = linter or NameLinter(PacmanDatabase())

    @property
    def quiet(self) -> bool:
        """Diagnostics were already shown by the unprivileged phase."""
        return self.context.privileged

    @property
    def check_existence(self) -> bool:
        return not self.context.options.ignore_deps and not self.context.privileged

    def parse(self, text: str) -> PackageTree:
        """Parse a whole recipe.

        Args:
            text: Recipe contents

        Returns:
            Tree with the main package at index 0 and its subpackages

        Raises:
            ParseError: On the first line that cannot be parsed
        """
        if not self.quiet:
            logger.info("Parsing package...")

        state = ParserState()
        text = text.replace("\r\n", "\n").replace("\\\n", "")
        if text.endswith("\n"):
            text = text[:-1]

        for number, line in enumerate(text.split("\n"), start=1):
            self.parse_line(state, line, number)

        if not state.main.commands.prepare:
            if not self.quiet:
                logger.info("Automatically setting up package...")
            state.main.commands.prepare.append(self.macros.expand("%setup -q", state.main))

        return state.tree

    def parse_line(self, state: ParserState, line: str, number: int) -> None:
        """Route one physical line to the first handler that accepts it."""
        if not line.strip():
            return

        self.warn_unexpanded(state, line, number)

        if not state.conditions.suppressed:
            for handler in (self.handle_directive, self.handle_key_value):
                if handler(state, line, number) is LineAction.HANDLED:
                    return

        # Conditional markers are honoured even inside a false branch.
        if state.conditions.handle(line, state.main, self.macros, number):
            return
        if state.conditions.suppressed:
            return

        for handler in (
            self.handle_package,
            self.handle_stage_marker,
            self.handle_stage_line,
            self.handle_comment,
        ):
            if handler(state, line, number) is LineAction.HANDLED:
                return

        raise ParseError(f"Could not parse line {number}", number, line, 0, len(line))

    def warn(self, message: str, line: str, start: int, length: int, hint: str = "") -> None:
        if self.quiet:
            return
        logger.warning(message + "\n" + highlight_context(line, start, length, hint, WARNING_INDENT))

    def warn_unexpanded(self, state: ParserState, line: str, number: int) -> None:
        expanded = self.macros.expand(line, state.main, directives=False)
        for token in self.macros.unexpanded(expanded):
            hint = ""
            suggestion = closest_string(token[2:-1], self.macros.names())
            if suggestion:
                hint = f"Did you mean to use %{{{suggestion}}}?"
            self.warn(
                f"Macro not expanded on line {number}: {token}",
                line,
                line.find(token),
                len(token) if token in line else 0,
                hint,
            )

    def handle_directive(self, state: ParserState, line: str, number: int) -> LineAction:
        fields = line.split()
        if fields[0] != TOOL_DIRECTIVE:
            return LineAction.PASS

        if len(fields) < 2:
            self.warn(f"{TOOL_DIRECTIVE} directive missing type", line, 0, 0)
            return LineAction.HANDLED

        directive = fields[1]
        if directive == "NoFileCheck":
            state.tree.check_files = False
        elif directive == "ReasonFor":
            padded = line + " " * 10
            if len(fields) < 3:
                raise ParseError(
                    f"Not enough arguments to ReasonFor on line {number}",
                    number,
                    padded,
                    len(line),
                    10,
                    "Add a package you want to give a reason for and the reason like this: PackageName: Reason",
                )
            if len(fields) < 4:
                raise ParseError(
                    f"No reason provided for {fields[2]} on line {number}",
                    number,
                    padded,
                    len(line),
                    10,
                    "Add a description why you want users to install this package",
                )
            if ":" not in line:
                raise ParseError(
                    f"ReasonFor missing : on line {number}",
                    number,
                    line,
                    line.find(fields[2]),
                    len(fields[2]),
                    "Add a : after the package name",
                )
            before, _, reason = line.partition(":")
            state.main.reasons[before.split()[-1]] = reason.strip()
        else:
            self.warn(
                f"Invalid {TOOL_DIRECTIVE} directive {directive} on line {number}",
                line,
                line.find(directive),
                len(directive),
                f"Did you mean to use {closest_string(directive, POSSIBLE_DIRECTIVES)}?",
            )
        return LineAction.HANDLED

    def handle_key_value(self, state: ParserState, line: str, number: int) -> LineAction:
        if ": " not in line:
            return LineAction.PASS
        words = line.split()
        key = words[0].lower()
        if not key.endswith(":"):
            return LineAction.PASS

        known = (
            key in SINGLE_VALUE_KEYS
            or key in ARRAY_KEYS
            or key in COMPOSITE_VERSION_KEYS
            or key.startswith(("source", "patch"))
        )
        # Inside a section an unknown "Word: text" line is section content.
        if not known and state.stage is not Stage.NONE:
            return LineAction.PASS

        if len(words) < 2:
            return LineAction.HANDLED

        if key.startswith(("source", "patch")):
            self.parse_source(state, line, words, number)
            return LineAction.HANDLED

        raw_value = line.strip()[len(words[0]):].strip()
        value = self.macros.expand(raw_value, state.main)
        package = state.tree.get_subpackage(state.subpackage) if state.subpackage else state.main

        if key in COMPOSITE_VERSION_KEYS:
            parts = [part for part in re.split(r"[-:]", value) if part]
            if len(parts) < 3:
                raise ParseError(
                    f"Invalid Epoch-Versions-Release string on line {number}",
                    number,
                    line,
                    line.find(raw_value),
                    len(raw_value),
                    "Epoch-Versions-Release strings are in the following format: Epoch:Version-Release",
                )
            package.epoch, package.version, package.release = parts[0], parts[1], parts[2]
        elif key in SINGLE_VALUE_KEYS:
            SINGLE_VALUE_KEYS[key].set(package, value)
        elif key in ARRAY_KEYS:
            items = value.split()
            self.lint_items(key, items, line, number)
            ARRAY_KEYS[key].set(package, items)
        else:
            raise ParseError(
                f"{words[0]} is not a valid key on line {number}",
                number,
                line,
                line.find(words[0]),
                len(words[0]),
                f"Did you mean to use {closest_string(words[0], POSSIBLE_KEYS)}?",
            )
        return LineAction.HANDLED

    def lint_items(self, key: str, items: list[str], line: str, number: int) -> None:
        """Check array items of dependency and group keys."""
        if key in DEPENDENCY_KEYS:
            for item in items:
                name = dependency_name(item)
                problem, position = lint_identifier(name)
                if problem is not NameProblem.VALID:
                    start = line.find(item)
                    raise ParseError(
                        f"{item} is not a valid package identifier on line {number} ({problem.value})",
                        number,
                        line,
                        start + position if position >= 0 else start,
                        1 if position >= 0 else len(item),
                        "Package identifiers can include alphanumeric characters, +, _, ., @, and -",
                    )
                if key in EXISTING_PACKAGE_KEYS and self.check_existence:
                    correction, exists = self.linter.suggest_dependency(name)
                    if not exists:
                        self.warn(
                            f"Dependent package {name} does not exist in repositories on line {number}",
                            line,
                            line.find(item),
                            len(item),
                            f"Did you mean to use {correction}?",
                        )

        if key == GROUP_KEY and self.check_existence:
            for item in items:
                correction, exists = self.linter.suggest_group(item)
                if not exists:
                    self.warn(
                        f"Group {item} does not exist in repositories on line {number}",
                        line,
                        line.find(item),
                        len(item),
                        f"Did you mean to use {correction}?",
                    )

    def parse_source(self, state: ParserState, line: str, words: list[str], number: int) -> None:
        """Parse ``SourceN: url [with algo digest] [renamed name] ...``."""
        entry = SourceEntry(url=self.macros.expand(words[1], state.main))
        rest = words[2:]
        index = 0
        while index < len(rest):
            word = rest[index]
            if word == "with":
                if len(rest) > index + 2:
                    hash_type, digest = rest[index + 1], rest[index + 2]
                    if hash_type not in HASH_TYPES:
                        raise ParseError(
                            f"Invalid hash type on line {number}",
                            number,
                            line,
                            line.find(hash_type),
                            len(hash_type),
                            f"Did you mean to use {closest_string(hash_type, HASH_TYPES)}?",
                        )
                    entry.digests[hash_type] = digest
                    index += 3
                    continue
                if len(rest) > index + 1:
                    hint = "Add a hash to the end of the line to resolve this error."
                else:
                    hint = "Valid hash types are: " + ", ".join(HASH_TYPES)
                raise ParseError(f"Incomplete hash directive on line {number}", number, line, 0, 0, hint)

            if word not in SOURCE_MODIFIERS:
                raise ParseError(
                    f"Unknown source modifier {word} on line {number}",
                    number,
                    line,
                    line.find(word),
                    len(word),
                    f"Did you mean to use {closest_string(word, SOURCE_MODIFIERS)}?",
                )
            if index + 1 >= len(rest):
                raise ParseError(
                    f"Incomplete {word} directive on line {number}",
                    number,
                    line,
                    line.rfind(word),
                    len(word),
                    "Provide a value to resolve this error.",
                )
            value = self.macros.expand(rest[index + 1], state.main)
            if word == "renamed":
                entry.rename = value
            elif word == "signature":
                entry.signature_url = value
            elif word == "key":
                entry.gpg_keys.append(value)
            else:
                entry.keyservers.append(value)
            index += 2

        if words[0].lower().startswith("source"):
            state.main.sources.append(entry)
        else:
            state.main.patches.append(entry)

    def handle_package(self, state: ParserState, line: str, number: int) -> LineAction:
        fields = line.split()
        if fields[0] != "%package":
            return LineAction.PASS

        name = self.scope_name(state, line)
        if not name:
            raise ParseError("%package needs to have a name", number, line, 0, len(line))
        state.tree.add_subpackage(name)
        state.subpackage = name
        state.stage = Stage.NONE
        return LineAction.HANDLED

    def scope_name(self, state: ParserState, line: str) -> str:
        """Subpackage named by ``-n name`` (verbatim) or ``suffix`` (parent-suffix)."""
        explicit = grab_flag(line, "-n")
        if explicit is not None:
            return self.macros.expand(explicit, state.main)
        fields = line.split()
        if len(fields) >= 2 and not fields[1].startswith("-"):
            return f"{state.main.name}-{self.macros.expand(fields[1], state.main)}"
        return ""

    def handle_stage_marker(self, state: ParserState, line: str, number: int) -> LineAction:
        marker = line.split()[0]
        if marker in COMMAND_STAGES:
            state.stage = COMMAND_STAGES[marker]
            state.scope = ""
            return LineAction.HANDLED

        if marker not in SCOPED_STAGES:
            return LineAction.PASS

        scope = self.scope_name(state, line)
        if scope and state.tree.get_subpackage(scope) is None:
            raise ParseError(
                f"{marker} refers to subpackage {scope} on line {number}, which has not been declared",
                number,
                line,
                len(marker) + 1,
                len(line) - len(marker) - 1,
                f"Declare it first with %package -n {scope}",
            )
        state.stage = SCOPED_STAGES[marker]
        state.scope = scope
        return LineAction.HANDLED

    def handle_stage_line(self, state: ParserState, line: str, number: int) -> LineAction:
        if state.stage is Stage.NONE:
            return LineAction.PASS

        if state.stage in COMMAND_STAGES.values():
            stage_lines(state.main, state.stage).append(self.macros.expand(line, state.main))
            return LineAction.HANDLED

        package = state.tree.get_subpackage(state.scope) if state.scope else state.main

        if state.stage in RAW_STAGES:
            stage_lines(package, state.stage).append(line)
            return LineAction.HANDLED

        if state.stage is Stage.FILES:
            stripped = line.strip()
            if stripped.startswith("#"):
                return LineAction.HANDLED
            if stripped.startswith("%config"):
                argument = stripped[len("%config"):]
                # %config(noreplace) and similar attribute groups
                if argument.startswith("("):
                    close = argument.find(")")
                    if close == -1:
                        raise ParseError(
                            f"Unclosed %config attribute on line {number}", number, line, 0, len(line)
                        )
                    argument = argument[close + 1:]
                path = self.macros.expand(argument.strip(), state.main)
                if not path:
                    raise ParseError(f"%config needs a path on line {number}", number, line, 0, len(line))
                package.backup.append(path.removeprefix("/"))
            else:
                package.files.append(self.macros.expand(stripped, state.main))
            return LineAction.HANDLED

        stage_lines(package, state.stage).append(self.macros.expand(line, state.main))
        return LineAction.HANDLED

    def handle_comment(self, state: ParserState, line: str, number: int) -> LineAction:
        if line.lstrip().startswith("#"):
            return LineAction.HANDLED
        return LineAction.PASS
