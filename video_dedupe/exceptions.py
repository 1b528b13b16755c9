"""
Custom exception hierarchy for the video deduplicator.

Per-item errors (probe, frame, image) are meant to be caught at the
smallest scope and degrade a single file or sample. Precondition errors
stop a run early. Everything else propagates.
"""


class VideoDedupeError(Exception):
    """Base exception for all video deduplicator errors."""
    pass


class InvalidImageError(VideoDedupeError, ValueError):
    """Raised when an image buffer is empty or cannot be decoded."""
    pass


class ProbeError(VideoDedupeError):
    """Raised when no usable metadata can be read from a video file."""
    pass


class FrameExtractionError(VideoDedupeError):
    """Raised when a frame cannot be extracted at the requested timestamp."""
    pass


class DatabaseError(VideoDedupeError):
    """Raised when database operations fail."""
    pass


class QuarantineError(VideoDedupeError):
    """Raised when a file cannot be moved into quarantine."""
    pass


class PreconditionError(VideoDedupeError):
    """Raised when a run has nothing to work on."""
    pass


class NoEnabledRootsError(PreconditionError):
    """Raised when a scan is started without any enabled scan root."""
    pass


class NoCandidatesError(PreconditionError):
    """Raised when the catalog holds no file with complete attributes."""
    pass
