"""Push gate - integrity policy and lease orchestration for pushes."""

from .config import Settings
from .errors import GateError, InfrastructureError, MalformedInput, PolicyViolation, ResourceBusy
from .policy import DenyReason, PolicyDecision, evaluate_update, validate_updates
from .push_gate import GateResult, PushGate, RejectReason
from .updates import UpdateTuple, parse_updates

__all__ = [
    "DenyReason",
    "GateError",
    "GateResult",
    "InfrastructureError",
    "MalformedInput",
    "PolicyDecision",
    "PolicyViolation",
    "PushGate",
    "RejectReason",
    "ResourceBusy",
    "Settings",
    "UpdateTuple",
    "evaluate_update",
    "parse_updates",
    "validate_updates",
]
