"""
Domain errors raised by the review store and the top-songs aggregator.

Routes let these propagate; `main.py` renders them with the same
`{"detail": {"error": ..., "message": ...}}` shape used for HTTPException.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ReviewError(Exception):
    """Base class for errors surfaced verbatim to API callers."""

    code = "server_error"
    status_code = 500
    message = "Internal server error."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class Unauthorized(ReviewError):
    code = "unauthorized"
    status_code = 401
    message = "Not authenticated."


class InvalidItemType(ReviewError):
    code = "invalid_type"
    status_code = 400
    message = "Item type must be one of: song, album, artist."


class InvalidItemId(ReviewError):
    code = "invalid_oid"
    status_code = 400
    message = "Item id must be a non-empty string."


class TextTooLong(ReviewError):
    code = "text_too_long"
    status_code = 400

    def __init__(self, max_words: int) -> None:
        self.max_words = max_words
        super().__init__(f"Review text is limited to {max_words} words.")

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["maxWords"] = self.max_words
        return detail


class EmptyReview(ReviewError):
    code = "empty_review"
    status_code = 400
    message = "A review needs a rating between 0.5 and 5 or non-empty text."


class InvalidArtistId(ReviewError):
    code = "invalid_artist"
    status_code = 400
    message = "Artist id must be a non-empty string."


class ReviewStoreError(ReviewError):
    """Write could not be completed, e.g. a repeated insert collision."""
