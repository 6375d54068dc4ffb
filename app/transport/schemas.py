# app/transport/schemas.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.core.confirmation.domain import ChannelOutcome, DispatchResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfirmIn(_CamelModel):
    # Optional so a missing id maps to the documented 400, not a 422
    job_id: str | None = None


class ChannelOutcomeOut(_CamelModel):
    channel: str
    succeeded: bool
    provider_reference: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
    timestamp: datetime

    @classmethod
    def from_outcome(cls, outcome: ChannelOutcome) -> "ChannelOutcomeOut":
        return cls(
            channel=outcome.channel.value,
            succeeded=outcome.succeeded,
            provider_reference=outcome.provider_reference,
            error_kind=outcome.error_kind.value if outcome.error_kind else None,
            error_message=outcome.error_message,
            timestamp=outcome.timestamp,
        )


class DispatchOut(_CamelModel):
    job_id: str
    overall_succeeded: bool
    created_at: datetime
    outcomes: list[ChannelOutcomeOut]

    @classmethod
    def from_result(cls, result: DispatchResult) -> "DispatchOut":
        return cls(
            job_id=result.job_id,
            overall_succeeded=result.overall_succeeded,
            created_at=result.created_at,
            outcomes=[ChannelOutcomeOut.from_outcome(o) for o in result.outcomes],
        )


class ConfirmOut(_CamelModel):
    success: bool = True
    message: str = "Confirmations sent"
    dispatch: DispatchOut
