"""
Diagnostics collected during generation.

Stages never abort the whole generation because of one feature, triangle or
point. They record what went wrong here and carry on; the caller decides how
to show it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger()


class DiagnosticKind(str, Enum):
    INSUFFICIENT_INPUT = "insufficient_input"
    GEOMETRIC_DEGENERACY = "geometric_degeneracy"
    PLACEMENT_FAILURE = "placement_failure"


class InsufficientInputError(ValueError):
    """Raised inside a sub-pipeline that cannot run with the input it got."""


@dataclass
class Diagnostic:
    kind: DiagnosticKind
    stage: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


@dataclass
class Diagnostics:
    """Ordered list of diagnostics with logging on insert."""

    items: List[Diagnostic] = field(default_factory=list)

    def add(self, kind: DiagnosticKind, stage: str, message: str, **context) -> Diagnostic:
        diagnostic = Diagnostic(kind=kind, stage=stage, message=message, context=context)
        self.items.append(diagnostic)
        logger.warning(message, stage=stage, kind=kind.value, **context)
        return diagnostic

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.items if d.kind == kind]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    def format(self) -> str:
        return "\n".join(str(d) for d in self.items)
