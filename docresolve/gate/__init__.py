"""Approval gate."""

from .approval import DEFAULT_THRESHOLDS, ApprovalGate, GateCheck, GateDecision, GateOutcome, ReviewMode

__all__ = ["ApprovalGate", "DEFAULT_THRESHOLDS", "GateCheck", "GateDecision", "GateOutcome", "ReviewMode"]
