"""Exception taxonomy for the clue diagnostics bridge."""

from __future__ import annotations


class ClueLspError(RuntimeError):
    pass


class NeverThrown(ClueLspError):
    """Raised by :func:`clue_lsp.invariants.never` on an unreachable path.

    Reaching one of these means an internal contract was broken, not that the
    compiler misbehaved; it is never converted into a diagnostic.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


class UnrecognizedCompilerFailure(ClueLspError):
    """The compiler failed without a single parseable error block."""

    def __init__(
        self,
        message: str,
        *,
        target: str = "",
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.target = target
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def detail(self) -> str:
        parts = [str(self)]
        if self.stderr.strip():
            parts.append(self.stderr.strip())
        if self.stdout.strip():
            parts.append(self.stdout.strip())
        return "\n".join(parts)


class CompilerUnavailable(ClueLspError):
    """The version probe failed, did not match, or reported an old version."""

    def __init__(self, message: str, *, version: str | None = None):
        super().__init__(message)
        self.version = version


class MissingTextSource(ClueLspError):
    """A file named by an error record is neither open nor readable."""

    def __init__(self, uri: str, reason: str = ""):
        super().__init__(f"no text available for {uri}" + (f": {reason}" if reason else ""))
        self.uri = uri


class RangeResolutionError(ClueLspError):
    """An error anchor points outside the document it names."""

    def __init__(self, uri: str, line: int, line_count: int):
        super().__init__(f"line {line} is outside {uri} ({line_count} lines)")
        self.uri = uri
        self.line = line
        self.line_count = line_count
