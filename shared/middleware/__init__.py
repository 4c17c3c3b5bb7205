from shared.middleware.request_id import request_id_middleware
from shared.middleware.error_handler import build_error_envelope_middleware

__all__ = [
    "build_error_envelope_middleware",
    "request_id_middleware",
]
