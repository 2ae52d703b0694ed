"""Error definitions for imagebake.

Every failure raised by a pipeline step derives from ImageBakeError and
carries a stable code for programmatic handling. The CLI logs the message
and exits with status 1.
"""

# Error code constants
USAGE_ERROR = "usage"
SOURCE_ERROR = "source_error"
HOOK_ERROR = "hook_failed"
INSTALL_ERROR = "install_error"
DOWNLOAD_ERROR = "download_error"
EXTRACTION_ERROR = "extraction_error"
BUILD_ERROR = "build_failed"


class ImageBakeError(Exception):
    """Base class for all imagebake errors."""

    default_code = "internal_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        """Initialize ImageBakeError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class UsageError(ImageBakeError):
    """Raised when command-line options are missing or inconsistent."""

    default_code = USAGE_ERROR


class SourceFetchError(ImageBakeError):
    """Raised when a source cannot be cloned, updated or found."""

    default_code = SOURCE_ERROR


class HookError(ImageBakeError):
    """Raised when sources.cfg is invalid or a pre-build hook fails."""

    default_code = HOOK_ERROR


class InstallError(ImageBakeError):
    """Raised when the Packer installation directory cannot be prepared."""

    default_code = INSTALL_ERROR


class DownloadError(ImageBakeError):
    """Raised when the Packer archive download fails."""

    default_code = DOWNLOAD_ERROR


class ExtractionError(ImageBakeError):
    """Raised when the Packer archive cannot be extracted."""

    default_code = EXTRACTION_ERROR


class BuildExecutionError(ImageBakeError):
    """Raised when packer build cannot run or exits unsuccessfully."""

    default_code = BUILD_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code


__all__ = [
    "BUILD_ERROR",
    "DOWNLOAD_ERROR",
    "EXTRACTION_ERROR",
    "HOOK_ERROR",
    "INSTALL_ERROR",
    "SOURCE_ERROR",
    "USAGE_ERROR",
    "BuildExecutionError",
    "DownloadError",
    "ExtractionError",
    "HookError",
    "ImageBakeError",
    "InstallError",
    "SourceFetchError",
    "UsageError",
]
