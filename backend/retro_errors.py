# retro_errors.py — Domain error taxonomy for the retro session engine
# Codes follow RETRO-{KIND}-{NUMBER}. Every error here is an expected,
# caller-recoverable condition; store failures are never wrapped in one.
from typing import Iterable, Optional, Union

ERROR_CATALOGUE = {
    "RETRO-NOTFOUND-001": {"kind": "not_found", "message": "Resource not found", "http_status": 404},
    "RETRO-AUTH-001": {"kind": "forbidden", "message": "Not allowed", "http_status": 403},
    "RETRO-PHASE-001": {"kind": "invalid_phase", "message": "Action not allowed in the current phase", "http_status": 409},
    "RETRO-PHASE-002": {"kind": "invalid_transition", "message": "Illegal phase transition", "http_status": 409},
    "RETRO-VOTE-001": {"kind": "already_voted", "message": "Already voted for this card", "http_status": 409},
    "RETRO-VOTE-002": {"kind": "not_voted", "message": "No vote to remove", "http_status": 409},
    "RETRO-VOTE-003": {"kind": "quota_exceeded", "message": "Vote quota exhausted", "http_status": 409},
    "RETRO-INPUT-001": {"kind": "validation_error", "message": "Invalid input", "http_status": 422},
}


class RetroError(Exception):
    """Base class for every domain error raised by the engine"""
    code = "RETRO-INPUT-001"

    def __init__(self, message: Optional[str] = None):
        entry = ERROR_CATALOGUE[self.code]
        self.message = message or entry["message"]
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return ERROR_CATALOGUE[self.code]["kind"]

    @property
    def http_status(self) -> int:
        return ERROR_CATALOGUE[self.code]["http_status"]

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "kind": self.kind}


class NotFound(RetroError):
    code = "RETRO-NOTFOUND-001"

    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


class Forbidden(RetroError):
    code = "RETRO-AUTH-001"


class InvalidPhase(RetroError):
    code = "RETRO-PHASE-001"

    def __init__(self, required: Union[str, Iterable[str]], current: Optional[str] = None, action: str = "This action"):
        if isinstance(required, str):
            required = [required]
        self.required = [getattr(p, "value", p) for p in required]
        self.current = getattr(current, "value", current)
        phases = " or ".join(f"'{p}'" for p in self.required)
        message = f"{action} is only allowed while the retro is {phases}"
        if self.current:
            message += f" (currently '{self.current}')"
        super().__init__(message)


class InvalidTransition(RetroError):
    code = "RETRO-PHASE-002"

    def __init__(self, current, target):
        self.current = getattr(current, "value", current)
        self.target = getattr(target, "value", target)
        super().__init__(f"Cannot move retro from '{self.current}' to '{self.target}'")


class AlreadyVoted(RetroError):
    code = "RETRO-VOTE-001"


class NotVoted(RetroError):
    code = "RETRO-VOTE-002"


class QuotaExceeded(RetroError):
    code = "RETRO-VOTE-003"

    def __init__(self, quota: int):
        self.quota = quota
        if quota == 1:
            super().__init__("You have already used your vote for this retro")
        else:
            super().__init__(f"You have used all {quota} votes for this retro")


class ValidationError(RetroError):
    code = "RETRO-INPUT-001"
