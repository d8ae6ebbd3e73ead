"""
Error taxonomy for Aradir.

Every failure the installer can raise derives from ``AradirError`` and
carries a short error code plus a context dict, so callers can decide per
kind whether to retry, skip, or abort the run.
"""

from __future__ import annotations

from typing import Any


class AradirError(Exception):
    """Base class for all installer errors."""

    default_code = "E000"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigIOError(AradirError):
    """openmw.cfg, settings.cfg or a list file could not be read or written."""

    default_code = "E100"


class PreferencesError(AradirError):
    default_code = "E110"


class PresetError(AradirError):
    """Preset file is missing or cannot be parsed."""

    default_code = "E200"


class ManifestError(AradirError):
    default_code = "E210"


class ArchiveFormatError(AradirError):
    """Archive is missing, corrupt, or of an unsupported type."""

    default_code = "E300"


class InstructionError(AradirError):
    default_code = "E400"


class UnknownInstructionError(InstructionError):
    """Step type is not one the composer knows how to apply."""

    default_code = "E401"


class MalformedInstructionError(InstructionError):
    """Step payload does not fit its type (e.g. unpaired copy arguments)."""

    default_code = "E402"


class ResolutionError(AradirError):
    """A step could not be matched to a downloaded manifest record."""

    default_code = "E500"


class ExternalToolError(AradirError):
    default_code = "E600"


class DownloadError(AradirError):
    default_code = "E700"
