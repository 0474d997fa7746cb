from typing import Optional


class DfuError(RuntimeError):
    """Base class for every failure raised while flashing a DfuSe image."""


# --------------------------------------------------------------------------- #
# File parsing / validation
# --------------------------------------------------------------------------- #

class ParseError(DfuError):
    """The .dfu buffer is not a valid single-target DfuSe file."""


class FileTooShortError(ParseError):
    pass


class SignatureError(ParseError):
    pass


class VersionError(ParseError):
    pass


class TargetSignatureError(ParseError):
    pass


class ChecksumError(ParseError):
    def __init__(self, message: str, expected: int = 0, actual: int = 0) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class SuffixError(ParseError):
    pass


class SuffixFieldError(ParseError):
    pass


class ImageBoundsError(ParseError):
    pass


# --------------------------------------------------------------------------- #
# Device / file compatibility
# --------------------------------------------------------------------------- #

class CompatibilityError(DfuError):
    """The file cannot be flashed onto the connected bootloader."""


class IdentityMismatch(CompatibilityError):
    pass


class UnsupportedBootloader(CompatibilityError):
    pass


# --------------------------------------------------------------------------- #
# USB
# --------------------------------------------------------------------------- #

class TransportError(DfuError):
    """
    Raised when a control transfer fails, returns a negative length or
    moves fewer bytes than requested.
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class InputError(DfuError):
    """No usable .dfu file could be located."""
