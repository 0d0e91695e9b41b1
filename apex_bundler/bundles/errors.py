"""Fatal bundle errors.

Each error carries a stable code for programmatic handling. A fatal error
aborts build-action generation for one bundle only; recoverable problems
are reported as PropertyError records instead.
"""

# Error code constants
MISSING_KEY = "missing_key"
FILE_CONTEXTS_NOT_FOUND = "file_contexts_not_found"
INVALID_PAYLOAD_TYPE = "invalid_payload_type"


class BundleError(Exception):
    """Base error for fatal bundle configuration problems."""

    def __init__(self, bundle: str, message: str, code: str = "bundle_error") -> None:
        super().__init__(f"{bundle}: {message}")
        self.bundle = bundle
        self.code = code


class MissingKeyError(BundleError):
    """Raised when a bundle has no resolvable signing key."""

    def __init__(self, bundle: str, message: str) -> None:
        super().__init__(bundle, message, code=MISSING_KEY)


class FileContextsNotFoundError(BundleError):
    """Raised when the security-label file of a bundle does not exist."""

    def __init__(self, bundle: str, path: str) -> None:
        super().__init__(
            bundle, f"Cannot find file_contexts file: {path!r}", code=FILE_CONTEXTS_NOT_FOUND
        )
        self.path = path


class InvalidPayloadTypeError(BundleError):
    """Raised when a bundle declares an unknown payload type."""

    def __init__(self, bundle: str, value: str) -> None:
        super().__init__(
            bundle,
            f'payload_type {value!r} is not one of "image", "zip", or "both"',
            code=INVALID_PAYLOAD_TYPE,
        )
        self.value = value


__all__ = [
    "FILE_CONTEXTS_NOT_FOUND",
    "INVALID_PAYLOAD_TYPE",
    "MISSING_KEY",
    "BundleError",
    "FileContextsNotFoundError",
    "InvalidPayloadTypeError",
    "MissingKeyError",
]
