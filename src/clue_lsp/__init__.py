"""clue-lsp package root."""

from clue_lsp.exceptions import (
    ClueLspError,
    CompilerUnavailable,
    MissingTextSource,
    NeverThrown,
    RangeResolutionError,
    UnrecognizedCompilerFailure,
)

__all__ = [
    "__version__",
    "ClueLspError",
    "CompilerUnavailable",
    "MissingTextSource",
    "NeverThrown",
    "RangeResolutionError",
    "UnrecognizedCompilerFailure",
]

__version__ = "0.3.0"
