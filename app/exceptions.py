"""
Error taxonomy for the face embedding service.

Every error carries the HTTP status the API layer answers with, so the
request handlers only need a single exception handler.
"""


class FaceRecognitionError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @property
    def error_type(self) -> str:
        return type(self).__name__


class DecodeError(FaceRecognitionError):
    """Input image could not be decoded (bad base64, bad format, zero area)."""

    status_code = 400


# Preprocessing failures are decode failures from the caller's point of view
ImageError = DecodeError


class InferenceError(FaceRecognitionError):
    """The embedding model failed or produced an unusable vector."""

    status_code = 500


class DimensionMismatch(FaceRecognitionError):
    """Embedding length disagrees with the store's dimensionality."""

    status_code = 500

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding has {actual} dimensions, store expects {expected}"
        )
        self.expected = expected
        self.actual = actual


class DurabilityError(FaceRecognitionError):
    """Reading from or writing to the persistent backend failed."""

    status_code = 503


class InvalidQuery(FaceRecognitionError):
    """Search parameters are malformed (non-positive limit, NaN threshold)."""

    status_code = 400


class SearchCancelled(FaceRecognitionError):
    """The caller went away before the scan finished."""

    status_code = 499
