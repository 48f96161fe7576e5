from enum import Enum
from typing import Any, ClassVar

from pydantic import ConfigDict, Field

from ...domain import Entity
from ...repositories.casing import keys_to_camel

CHALLENGE_CREATED = "CHALLENGE_CREATED"
CHALLENGE_STATUS_CHANGED = "CHALLENGE_STATUS_CHANGED"
CHALLENGE_RESPONSES_SUBMITTED = "CHALLENGE_RESPONSES_SUBMITTED"
CHALLENGE_COMPLETED = "CHALLENGE_COMPLETED"
CHALLENGE_DELETED = "CHALLENGE_DELETED"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    EVALUATED = "evaluated"
    COMPLETED = "completed"


class Challenge(Entity):
    """A challenge issued to a user, optionally within a focus area.

    Status changes are recorded as CHALLENGE_STATUS_CHANGED. Submitting
    responses and completing the challenge queue their own events in
    addition to the status change.
    """

    model_config = ConfigDict(use_enum_values=True)

    entity_type: ClassVar[str] = "challenge"

    user_id: str = Field(min_length=1)
    focus_area_id: str | None = None
    name: str = Field(min_length=1)
    description: str = ""
    challenge_type: str | None = None
    status: ChallengeStatus = Field(default=ChallengeStatus.PENDING, validate_default=True)
    responses: list[dict[str, Any]] = Field(default_factory=list)
    evaluation: dict[str, Any] | None = None
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, **data: Any) -> "Challenge":
        challenge = cls(**data)
        challenge.add_domain_event(
            CHALLENGE_CREATED,
            keys_to_camel(
                {
                    "challenge_id": challenge.id,
                    "user_id": challenge.user_id,
                    "focus_area_id": challenge.focus_area_id,
                }
            ),
        )
        return challenge

    @property
    def is_completed(self) -> bool:
        return self.status in (ChallengeStatus.EVALUATED, ChallengeStatus.COMPLETED)

    def update_status(self, new_status: ChallengeStatus | str) -> None:
        """Move to `new_status`. Setting the current status is a no-op."""
        new_status = ChallengeStatus(new_status)
        if self.status == new_status:
            return
        previous_status = self.status
        self.status = new_status.value
        self.touch()
        self.add_domain_event(
            CHALLENGE_STATUS_CHANGED,
            keys_to_camel(
                {
                    "challenge_id": self.id,
                    "previous_status": previous_status,
                    "new_status": new_status.value,
                }
            ),
        )

    def submit_responses(self, responses: list[dict[str, Any]] | dict[str, Any]) -> None:
        if isinstance(responses, dict):
            responses = [responses]
        self.responses = [*self.responses, *responses]
        self.update_status(ChallengeStatus.SUBMITTED)
        self.add_domain_event(
            CHALLENGE_RESPONSES_SUBMITTED,
            keys_to_camel({"challenge_id": self.id, "response_count": len(self.responses)}),
        )

    def complete(self, evaluation: dict[str, Any]) -> None:
        """Record the evaluation and mark the challenge evaluated."""
        self.evaluation = dict(evaluation)
        self.score = evaluation.get("score") or 0
        self.update_status(ChallengeStatus.EVALUATED)
        self.add_domain_event(
            CHALLENGE_COMPLETED,
            keys_to_camel({"challenge_id": self.id, "score": self.score}),
        )
