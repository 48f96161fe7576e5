from .entity import (
    CHALLENGE_COMPLETED,
    CHALLENGE_CREATED,
    CHALLENGE_DELETED,
    CHALLENGE_RESPONSES_SUBMITTED,
    CHALLENGE_STATUS_CHANGED,
    Challenge,
    ChallengeStatus,
)
from .repository import ChallengeRepository

__all__ = [
    "Challenge",
    "ChallengeStatus",
    "ChallengeRepository",
    "CHALLENGE_CREATED",
    "CHALLENGE_STATUS_CHANGED",
    "CHALLENGE_RESPONSES_SUBMITTED",
    "CHALLENGE_COMPLETED",
    "CHALLENGE_DELETED",
]
