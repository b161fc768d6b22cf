# src/nudge_companion/errors.py

"""
Error taxonomy shared by tools, the orchestration loop and the LLM client.

- ValidationError / NotFoundError never reach the end user: the tool registry turns
  them into structured tool results so the agent can recover within the same turn.
- TransportError aborts an orchestration pass; the user gets a static apology.
"""

from __future__ import annotations

from typing import Any


class NudgeError(Exception):
    """Base class for all application errors."""

    kind = "error"

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.kind, "message": str(self)}


class ValidationError(NudgeError):
    """A tool argument is missing, malformed or not allowed in the current state."""

    kind = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.kind, "field": self.field, "message": self.message}


class NotFoundError(NudgeError):
    """A referenced task/routine/tool does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, ident: str) -> None:
        super().__init__(f"{entity} with id {ident!r} not found")
        self.entity = entity
        self.ident = ident

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.kind, "entity": self.entity, "id": self.ident, "message": str(self)}


class TransportError(NudgeError):
    """The completion service could not be reached or broke mid-stream."""

    kind = "transport_error"
