"""Domain error taxonomy for the pipeline.

Validation and lookup errors are raised before any mutation. Store errors
are wrapped so scheduled loops can log them and carry on at the next tick.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(PipelineError, ValueError):
    """Bad input: malformed date keys, non-positive durations, empty batches."""


class NotFoundError(PipelineError, LookupError):
    """Unknown challenge or user."""


class TransientStoreError(PipelineError):
    """I/O failure while syncing or settling. Retried on the next scheduled tick."""


class SettlementRaceError(PipelineError):
    """A reward for this (challenge, rank) was already written by another sweep."""

    def __init__(self, challenge_id: int, rank: int) -> None:
        super().__init__(f"Reward for challenge {challenge_id} rank {rank} already exists")
        self.challenge_id = challenge_id
        self.rank = rank
