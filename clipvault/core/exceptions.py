"""Pipeline exceptions.

Each error carries the terminal flow state it leads to and a short message that
is safe to show to the end user. Errors on best-effort paths are not raised at
all; those paths return an ``Outcome`` instead.
"""

from typing import Optional

from clipvault.models.flow import FlowState


class PipelineError(Exception):
    """Base exception for download pipeline errors."""

    state: FlowState = FlowState.FETCH_FAILED
    user_message: str = "Something went wrong. Please try again later."

    def __init__(self, message: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ResolutionError(PipelineError):
    """Raised when the resource is unavailable or the link is invalid."""

    state = FlowState.RESOLUTION_FAILED
    user_message = "Could not analyse the link. The video may be unavailable or too long."


class NoUsableFormat(PipelineError):
    """Raised when no acceptable rendition remains after filtering."""

    state = FlowState.NO_USABLE_FORMAT
    user_message = "Available qualities are too low or missing."


class FormatNotOffered(NoUsableFormat):
    """Raised when a selection does not match any offered rendition."""

    user_message = "This quality is not available for the video. Send the link again."


class SessionExpired(PipelineError):
    """Raised when a selection refers to an unknown or expired session."""

    state = FlowState.SESSION_EXPIRED
    user_message = "The link has expired. Send the video again."


class QueueCapacityExceeded(PipelineError):
    """Raised when the admission queue cannot accept another waiting task."""

    state = FlowState.QUEUE_REJECTED
    user_message = "The download queue is full. Try again later."


class FetchFailure(PipelineError):
    """Raised when the media fetcher exits non-zero or cannot be spawned."""

    state = FlowState.FETCH_FAILED
    user_message = "Download failed."


class ArchiveFailure(PipelineError):
    """Raised when the artifact could not be archived nor delivered directly."""

    state = FlowState.UPLOAD_FAILED
    user_message = "Upload failed. Try again later."


class DeliveryFailure(PipelineError):
    """Raised when the final delivery to the requester fails."""

    state = FlowState.UPLOAD_FAILED
    user_message = "Could not send the file. Try again later."


class CacheWriteFailure(PipelineError):
    """Raised by cache repositories when persisting an entry fails.

    The orchestrator only ever logs it; it never reaches the user.
    """

    state = FlowState.DELIVERED
