"""Audit trail collected during one extraction run."""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class AuditEntry:
    """One human-readable step of the merge / resolution narrative."""

    stage: str
    message: str
    level: int = logging.INFO

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


@dataclass
class AuditLog:
    """Injectable audit trail.

    Every entry is kept for the caller (returned as ``mergeLog``) and also
    forwarded to a logger so operators see the same narrative.
    """

    logger: Optional[logging.Logger] = None
    entries: List[AuditEntry] = field(default_factory=list)

    def add(self, stage: str, message: str, level: int = logging.INFO) -> None:
        entry = AuditEntry(stage=stage, message=message, level=level)
        self.entries.append(entry)
        (self.logger or LOGGER).log(level, str(entry))

    def info(self, stage: str, message: str) -> None:
        self.add(stage, message, logging.INFO)

    def warning(self, stage: str, message: str) -> None:
        self.add(stage, message, logging.WARNING)

    def messages(self, stage: Optional[str] = None) -> List[str]:
        """Return entry messages, optionally restricted to one stage."""
        return [e.message for e in self.entries if stage is None or e.stage == stage]

    def as_lines(self) -> List[str]:
        return [str(e) for e in self.entries]

    def extend(self, other: "AuditLog") -> None:
        self.entries.extend(other.entries)
