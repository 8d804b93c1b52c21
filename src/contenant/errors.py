"""Exceptions raised by contenant.

Everything derives from ContenantError; the CLI turns any of them into a red
error line and exit status 1. DNS and metadata failures are not errors: the
allowlist resolver logs and skips them.

This is a leaf module and imports nothing from contenant.
"""

from __future__ import annotations


class ContenantError(Exception):
    """Base exception for all contenant errors."""


class ConfigError(ContenantError):
    """A config file cannot be read, parsed or validated.

    Examples:
        - YAML syntax errors in config.yml
        - Unknown keys such as ``colour: blue``
        - ``bridge.port`` outside 1-65535
    """


class PathError(ContenantError):
    """Path resolution and access errors.

    Examples:
        - Home directory cannot be determined
        - Project directory does not exist
    """


class AllowlistError(ContenantError):
    """Raised when the allowlist artifact cannot be written."""


class BackendError(ContenantError):
    """Container runtime operation errors.

    Base class for all backend-related exceptions.
    """


class BackendNotFoundError(BackendError):
    """Raised when the runtime binary is not installed or not in PATH."""


class ImageBuildError(BackendError):
    """Raised when an image build or tag fails."""


class ContainerSignalError(BackendError):
    """Raised when the container process is terminated by a signal.

    There is no exit code in that case, so none is fabricated.
    """

    def __init__(self, signal_number: int) -> None:
        super().__init__(f"Container terminated by signal {signal_number}")
        self.signal_number = signal_number
