from typing import Any, Dict, Optional


class RelayError(Exception):
    """Recoverable, user-visible failure of a relay operation."""

    code = "ERROR"
    http_status = 400

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.code
        super().__init__(self.detail)

    def to_payload(self) -> Dict[str, Any]:
        return {"code": self.code, "detail": self.detail}


class EmailTaken(RelayError):
    code = "EmailTaken"


class InvalidCredentials(RelayError):
    code = "InvalidCredentials"


class InvalidToken(RelayError):
    code = "InvalidToken"
    http_status = 401


class NotFound(RelayError):
    code = "NotFound"
    http_status = 404


class NotAuthorized(RelayError):
    code = "NotAuthorized"
    http_status = 403


class EmptyContent(RelayError):
    code = "EmptyContent"


class InvalidRequest(RelayError):
    code = "InvalidRequest"
