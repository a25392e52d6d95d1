"""Exception types raised while building a package from a recipe."""


class AlpmbuildError(Exception):
    """Base class for every fatal alpmbuild error.

    Attributes:
        hint: Optional follow-up line shown under the error message
    """

    def __init__(self, message: str, hint: str = ""):
        self.hint = hint
        super().__init__(message)


class ParseError(AlpmbuildError):
    """A recipe line could not be understood."""

    def __init__(
        self,
        message: str,
        line_number: int = 0,
        line: str = "",
        start: int = 0,
        length: int = 0,
        hint: str = "",
    ):
        self.line_number = line_number
        self.line = line
        self.start = max(start, 0)
        self.length = length
        super().__init__(message, hint)


class VerificationError(AlpmbuildError):
    """A digest, signature, architecture or file coverage check failed."""


class ExecutionError(AlpmbuildError):
    """A generated script or an external tool exited unsuccessfully."""

    def __init__(self, message: str, command: list[str] | None = None, returncode: int = 1):
        self.command = command or []
        self.returncode = returncode
        super().__init__(message)


class BuildEnvironmentError(AlpmbuildError):
    """The host environment cannot support the build (home directory, I/O)."""
