"""Evaluation of %if / %elif / %else / %endif lines.

Only one conditional chain is tracked at a time. A %if inside an active
chain replaces the outer state, and the first %endif closes both.
"""

import re
from dataclasses import dataclass

from alpmbuild.errors import ParseError
from alpmbuild.macros import MacroEngine
from alpmbuild.models import PackageDefinition

OPERATORS = ("==", "<=", ">=", "<", ">")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")

CONDITIONAL_MARKERS = ("%if", "%elif", "%elseif", "%else", "%endif")


def _parse_int(raw: str, expanded: str, line: str, line_number: int) -> int:
    value = int(expanded) if INTEGER_PATTERN.fullmatch(expanded) else None
    if value is None or not INT64_MIN <= value <= INT64_MAX:
        if raw != expanded:
            message = f"{raw} does not expand to a valid integer on line {line_number}"
            hint = f"{raw} -> {expanded}"
        else:
            message = f"{raw} is not a valid integer on line {line_number}"
            hint = ""
        raise ParseError(message, line_number, line, line.find(raw), len(raw), hint)
    return value


def evaluate(line: str, package: PackageDefinition, macros: MacroEngine, line_number: int = 0) -> bool:
    """Evaluate the expression of a %if or %elif line.

    Args:
        line: Full conditional line, e.g. ``%if %{version} >= 2``
        package: Package whose fields resolve macros
        macros: Macro engine used to expand both operands
        line_number: Line number for diagnostics

    Returns:
        Result of the comparison

    Raises:
        ParseError: If an ordering operand is not a 64-bit integer or the
            operator is unknown
    """
    fields = line.split()

    if len(fields) < 4:
        if len(fields) == 2:
            raw = fields[1]
            return _parse_int(raw, macros.expand(raw, package), line, line_number) > 0
        return False

    left, operator, right = fields[1], fields[2], fields[3]
    expanded_left = macros.expand(left, package)
    expanded_right = macros.expand(right, package)

    if operator == "==":
        return expanded_left == expanded_right

    if operator not in OPERATORS:
        raise ParseError(
            f"Invalid comparison operand {operator} on line {line_number}",
            line_number,
            line,
            line.find(operator),
            len(operator),
            "Valid operands are ==, <=, >=, <, and >",
        )

    before = _parse_int(left, expanded_left, line, line_number)
    after = _parse_int(right, expanded_right, line, line_number)

    if operator == "<=":
        return before <= after
    if operator == ">=":
        return before >= after
    if operator == "<":
        return before < after
    return before > after


@dataclass
class ConditionalState:
    """Register of the active conditional chain.

    ``active`` is None outside a conditional, otherwise whether lines of the
    current branch are kept. ``taken`` remembers that an earlier branch of
    the chain was true.
    """

    active: bool | None = None
    taken: bool = False

    @property
    def suppressed(self) -> bool:
        return self.active is False

    def handle(self, line: str, package: PackageDefinition, macros: MacroEngine, line_number: int) -> bool:
        """Apply a conditional marker line.

        Returns:
            True if the line was a conditional marker and has been consumed
        """
        fields = line.split()
        if not fields or fields[0] not in CONDITIONAL_MARKERS:
            return False

        marker = fields[0]
        if marker == "%endif":
            self.active = None
            self.taken = False
        elif marker == "%if":
            self.active = evaluate(line, package, macros, line_number)
            self.taken = self.active
        elif marker == "%else":
            self.active = not self.taken
            self.taken = True
        elif self.taken:
            self.active = False
        else:
            self.active = evaluate(line, package, macros, line_number)
            self.taken = self.active
        return True
