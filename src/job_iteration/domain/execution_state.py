"""Execution state carried between invocations of an iteration job."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from job_iteration.domain.cursors import Cursor, decode, encode

METADATA_KEY = "job_iteration"


@dataclass(slots=True)
class ExecutionState:
    """Progress of one logical job across all of its invocations."""

    executions: int = 0
    cursor_position: Cursor = None
    times_interrupted: int = 0
    total_time: float = 0.0


class IterationMetadata(BaseModel):
    """Wire shape stored under the metadata key of the trailing argument."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    executions: int = Field(ge=1)
    cursor_position: Any = Field(default=None, alias="cursorPosition")
    times_interrupted: int = Field(default=0, ge=0, alias="timesInterrupted")
    total_time: float = Field(default=0.0, ge=0, alias="totalTime")

    @field_validator("cursor_position", mode="before")
    @classmethod
    def decode_cursor(cls, value: object) -> Any:
        """Restore tuples and timestamps from their serialized form."""

        return decode(value)

    @field_serializer("cursor_position")
    def encode_cursor(self, value: Any) -> Any:
        return encode(value)

    @classmethod
    def from_state(cls, state: ExecutionState) -> IterationMetadata:
        return cls(
            executions=max(state.executions, 1),
            cursor_position=state.cursor_position,
            times_interrupted=state.times_interrupted,
            total_time=state.total_time,
        )

    def to_state(self) -> ExecutionState:
        return ExecutionState(
            executions=self.executions,
            cursor_position=self.cursor_position,
            times_interrupted=self.times_interrupted,
            total_time=self.total_time,
        )


def extract_execution_state(arguments: Sequence[Any]) -> tuple[list[Any], ExecutionState]:
    """Split job arguments into user arguments and the previous execution state.

    Only the metadata key is removed; a trailing dict that carried other keys
    is handed back to the job untouched.
    """

    remaining = list(arguments)
    if not remaining or not _carries_metadata(remaining[-1]):
        return remaining, ExecutionState()

    trailing = dict(remaining.pop())
    metadata = IterationMetadata.model_validate(trailing.pop(METADATA_KEY))
    if trailing:
        remaining.append(trailing)
    return remaining, metadata.to_state()


def inject_execution_state(arguments: Sequence[Any], state: ExecutionState) -> list[Any]:
    """Return job arguments with the execution state appended or overwritten."""

    payload = IterationMetadata.from_state(state).model_dump(by_alias=True, mode="json")
    injected = list(arguments)
    if injected and _carries_metadata(injected[-1]):
        trailing = dict(injected[-1])
        trailing[METADATA_KEY] = payload
        injected[-1] = trailing
    else:
        injected.append({METADATA_KEY: payload})
    return injected


def read_execution_state(arguments: Sequence[Any]) -> ExecutionState | None:
    """Return the embedded execution state without altering the arguments."""

    if not arguments or not _carries_metadata(arguments[-1]):
        return None
    return IterationMetadata.model_validate(arguments[-1][METADATA_KEY]).to_state()


def _carries_metadata(value: object) -> bool:
    return isinstance(value, dict) and METADATA_KEY in value


__all__ = [
    "METADATA_KEY",
    "ExecutionState",
    "IterationMetadata",
    "extract_execution_state",
    "inject_execution_state",
    "read_execution_state",
]
