"""
Durable Actors — API Models

Request dataclasses for the API server.
No FastAPI dependency; shared by the server and the pumps.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from actors.types import ReviewOp


@dataclass
class AgentCall:
    """POST /agents/{type}/{id}/{method}."""
    agent_type: str
    agent_id: str
    method: str
    payload: Any = field(default_factory=dict)

    def validate(self) -> list[str]:
        """Return list of validation errors (empty = valid)."""
        errors = []
        if not self.agent_id or not self.agent_id.strip():
            errors.append("agent id is required")
        if not self.method or self.method.startswith("_"):
            errors.append("method is required")
        if not isinstance(self.payload, dict):
            errors.append("request body must be a JSON object")
        return errors


@dataclass
class InterventionDecision:
    """POST /v1/interventions/{agent_id} body."""
    token: str
    op: str
    agent_type: str = "review"
    new_data: Any = None
    has_new_data: bool = False

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> InterventionDecision:
        return cls(
            token=body.get("token", ""),
            op=body.get("op", ""),
            agent_type=body.get("agentType", "review"),
            new_data=body.get("newData"),
            has_new_data="newData" in body,
        )

    def validate(self) -> list[str]:
        errors = []
        if not self.token or not isinstance(self.token, str):
            errors.append("token is required and must be a string")
        if not isinstance(self.agent_type, str) or not self.agent_type:
            errors.append("agentType must be a non-empty string")
        if not isinstance(self.op, str) or self.op not in {op.value for op in ReviewOp}:
            errors.append("op must be one of proceed, override, abort")
        if self.op == ReviewOp.OVERRIDE.value and not self.has_new_data:
            errors.append("override requires newData")
        return errors


@dataclass
class PumpStats:
    """Counters reported by scheduler pumps."""
    ticks: int = 0
    fired: int = 0
    failed: int = 0
    last_tick_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
