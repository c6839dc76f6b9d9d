"""Exception types raised by the ODB++ panel loader.

File-level problems raise a ParseFailure subclass. Lookups of absent
structured-text keys raise InvalidKeyError. Everything inherits from OdbError.
"""


class OdbError(Exception):
    """Base class for all odbpanel errors."""


class ParseFailure(OdbError, ValueError):
    """A whole file could not be parsed."""

    def __init__(self, message, path=None, line_no=None):
        self.path = path
        self.line_no = line_no
        if path is not None and line_no is not None:
            message = f"{path}:{line_no}: {message}"
        elif path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class StructuredTextError(ParseFailure):
    """Malformed structured-text block syntax."""


class FeaturesError(ParseFailure):
    """Malformed features file structure."""


class InvalidKeyError(OdbError, KeyError):
    """Requested key is not present in a structured-text block."""

    def __init__(self, key, block=None):
        self.key = key
        self.block = block
        super().__init__(key)

    def __str__(self):
        if self.block:
            return f"key {self.key!r} not found in block {self.block!r}"
        return f"key {self.key!r} not found"


class NotFoundError(OdbError, FileNotFoundError):
    """A logical job path could not be resolved to a file."""


class SymbolError(OdbError, ValueError):
    """A record cannot be turned into symbol geometry."""


class StepRepeatError(OdbError):
    """A step-repeat cell cannot be instantiated."""
