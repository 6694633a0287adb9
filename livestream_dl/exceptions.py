"""
Defines custom exceptions for the application to allow for more specific error handling.

Per-segment failures (key, download, decryption) are reported and the capture
continues. Manifest, sequence-reset and write failures stop the capture.
"""


class LivestreamDLError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(LivestreamDLError):
    """Raised for issues related to configuration loading or validation."""


class ManifestFetchError(LivestreamDLError):
    """Raised when a playlist cannot be fetched over HTTP."""

    def __init__(
        self, message: str, status: int | None = None, retryable: bool = False
    ):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class StreamUnavailableError(ManifestFetchError):
    """Raised when a playlist stays unreachable after all poll attempts."""


class PlaylistGoneError(ManifestFetchError):
    """Raised when a previously available media playlist returns 404/410."""


class ManifestParseError(LivestreamDLError):
    """Raised when a playlist is not valid m3u8 syntax."""


class UnsupportedEncryptionError(ManifestParseError):
    """Raised for encryption methods other than AES-128 (e.g. SAMPLE-AES)."""


class SequenceResetError(LivestreamDLError):
    """
    Raised when a live playlist reports a lower maximum sequence number than
    previously observed, meaning the origin restarted the stream.
    """


class SelectionError(LivestreamDLError):
    """Raised when a requested rendition identifier does not exist."""


class KeyFetchError(LivestreamDLError):
    """Raised when an encryption key cannot be fetched or is not 16 bytes."""


class DownloadError(LivestreamDLError):
    """Base class for segment download failures."""

    retryable = False

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TransientDownloadError(DownloadError):
    """Timeouts, connection resets, 5xx and 429 responses. Retried with backoff."""

    retryable = True


class PermanentDownloadError(DownloadError):
    """4xx responses and malformed byte-range responses. Never retried."""


class DecryptionError(LivestreamDLError):
    """Raised when a segment payload cannot be decrypted (bad length or padding)."""


class WriteError(LivestreamDLError):
    """Raised when a segment cannot be persisted. Fatal to the capture."""
