"""
Error kinds raised by the progression services.

Services raise these and never HTTPException; ``progression.main`` maps each
kind onto a status code so every failure reaches the caller as a rejected
operation instead of a crash.
"""
from dataclasses import dataclass, field
from typing import Dict, List


class ProgressionError(Exception):
    """Base class for every error the engine reports to its callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ProgressionError):
    """Malformed screening test definition (no questions, bad option index...)."""

    status_code = 422


class TransientIOError(ProgressionError):
    """Network or storage failure; recovered only by a user-initiated retry."""

    status_code = 503


class IllegalTransition(ProgressionError):
    """A workflow change that is not legal from the registration's current state."""

    status_code = 409


class NotFound(ProgressionError):
    status_code = 404


class InvalidFieldValue(ProgressionError):
    status_code = 400


@dataclass
class BatchResult:
    """Tally for an admin bulk operation; failures never roll back successes."""

    succeeded: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def completed_with_warnings(self) -> bool:
        return bool(self.failed)

    def as_dict(self) -> dict:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "succeeded": list(self.succeeded),
            "failed": {str(k): v for k, v in self.failed.items()},
            "completed_with_warnings": self.completed_with_warnings,
        }
