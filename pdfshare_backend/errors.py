"""Error taxonomy for the share gateway.

Upload errors carry a message meant for the caller. Access errors are kept
distinct internally but every one of them is answered with the same opaque
404 on the wire.
"""
from __future__ import annotations


class GatewayError(Exception):
    status_code = 500
    public_message = "Internal error"


class UploadError(GatewayError):
    status_code = 400


class MissingPayload(UploadError):
    public_message = "No file uploaded"


class UnsupportedType(UploadError):
    public_message = "Only PDF allowed"


class PayloadTooLarge(UploadError):
    status_code = 413
    public_message = "File too large"


class StorageFailure(GatewayError):
    public_message = "Storage failure"


class AccessDenied(GatewayError):
    status_code = 404
    public_message = "Not found or expired"


class NotFound(AccessDenied):
    pass


class Expired(AccessDenied):
    pass


class FileMissing(AccessDenied):
    """A record exists but its bytes are gone: registry/store inconsistency."""
