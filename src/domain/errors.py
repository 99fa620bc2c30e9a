"""Error taxonomy for variant resolution.

Each error carries the HTTP status and the generic message that the
orchestrator returns to the caller. The exception text itself may hold
internal detail and is only ever logged.
"""
from __future__ import annotations


class VariantError(Exception):
    status_code: int = 500
    public_message: str = "Internal error"


class AuthorizationError(VariantError):
    status_code = 403
    public_message = "Request unauthorized"


class MethodNotAllowedError(VariantError):
    status_code = 400
    public_message = "Only GET method is supported"


class UnsupportedSizeError(VariantError):
    status_code = 404
    public_message = "Do not support this output size"


class NotFoundError(VariantError):
    status_code = 500
    public_message = "Error downloading original image"


class StoreReadError(VariantError):
    status_code = 500
    public_message = "Error downloading original image"


class StoreWriteError(VariantError):
    status_code = 500
    public_message = "Could not store transformed image"


class TransformError(VariantError):
    status_code = 500
    public_message = "Error transforming image"

    def __init__(self, message: str, stage: str) -> None:
        super().__init__(message)
        self.stage = stage  # "input" (decode) or "output" (encode)


class DecodeError(TransformError):
    def __init__(self, message: str) -> None:
        super().__init__(message, stage="input")


class EncodeError(TransformError):
    def __init__(self, message: str) -> None:
        super().__init__(message, stage="output")


class ImageTooLargeError(VariantError):
    status_code = 403
    public_message = "Requested transformed image is too big"
