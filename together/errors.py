from __future__ import annotations

UNAUTHENTICATED = "unauthenticated"
INVALID_ARGUMENT = "invalid-argument"
NOT_FOUND = "not-found"
PERMISSION_DENIED = "permission-denied"
FAILED_PRECONDITION = "failed-precondition"
INTERNAL = "internal"

HTTP_STATUS = {
    UNAUTHENTICATED: 401,
    INVALID_ARGUMENT: 400,
    NOT_FOUND: 404,
    PERMISSION_DENIED: 403,
    FAILED_PRECONDITION: 400,
    INTERNAL: 500,
}


class CallableError(Exception):
    """An error kind a client is allowed to see.

    Everything else raised inside a handler is logged and reported to the
    client as ``internal``.
    """

    def __init__(self, code: str, message: str):
        if code not in HTTP_STATUS:
            raise ValueError(f"Unknown error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def to_payload(self) -> dict:
        return {
            "error": {
                "status": self.code.replace("-", "_").upper(),
                "code": self.code,
                "message": self.message,
            }
        }

    def __repr__(self) -> str:
        return f"CallableError({self.code!r}, {self.message!r})"
