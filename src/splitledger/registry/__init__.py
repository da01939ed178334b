"""Participant registry."""

from splitledger.registry.participants import ParticipantRegistry

__all__ = ["ParticipantRegistry"]
