"""Terminal rendering of status lines, warnings and errors."""

import logging

from rich.console import Console
from rich.text import Text

PREFIXES = {
    logging.DEBUG: ("DEBUG ==> ", "bold blue"),
    logging.INFO: ("==> ", "bold green"),
    logging.WARNING: ("WARNING ==> ", "bold bright_yellow"),
    logging.ERROR: ("ERROR ==> ", "bold red"),
    logging.CRITICAL: ("ERROR ==> ", "bold red"),
}


def prefix_width(level: int) -> int:
    return len(PREFIXES.get(level, PREFIXES[logging.INFO])[0])


def highlight_context(line: str, start: int, length: int, hint: str = "", indent: int = 0) -> str:
    """Render ``line`` with a caret underline below ``line[start:start+length]``.

    Args:
        line: Offending recipe line
        start: Index of the first highlighted character
        length: Number of highlighted characters
        hint: Optional suggestion printed below the underline
        indent: Column the context is aligned to

    Returns:
        Multi-line text meant to follow a diagnostic message
    """
    pad = " " * indent
    start = max(start, 0)
    rendered = [f"{pad}{line}"]
    if length > 0:
        rendered.append(f"{pad}{' ' * start}{'^' * length}")
    if hint:
        rendered.append("")
        rendered.append(f"{pad}{hint}")
    return "\n".join(rendered)


class DiagnosticFormatter(logging.Formatter):
    """Prefix records with ``==>`` markers, optionally in colour."""

    def __init__(self, colours: bool = False):
        super().__init__("%(message)s")
        self.colours = colours
        self.console = Console(
            force_terminal=True,
            color_system="standard",
            highlight=False,
            emoji=False,
            soft_wrap=True,
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix, style = PREFIXES.get(record.levelno, PREFIXES[logging.INFO])
        if not self.colours:
            return prefix + message
        first, _, rest = message.partition("\n")
        text = Text(prefix, style=style)
        text.append(first, style="bold white")
        if rest:
            context = Text("\n" + rest)
            context.highlight_regex(r"\^+", style=style)
            text.append_text(context)
        with self.console.capture() as capture:
            self.console.print(text, end="")
        return capture.get()
