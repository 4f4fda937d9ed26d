# sake/core/result.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(Enum):
    """
    How an operation notice should be shown.

    SOURCE marks raw task-file text (e.g. a task printed before it is
    uninstalled) that is echoed verbatim without a prefix.
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SOURCE = "source"

    def prefix(self) -> str:
        if self is Severity.SOURCE:
            return ""
        if self in (Severity.WARNING, Severity.ERROR):
            return "!! "
        return "=> "


@dataclass
class OperationResult:
    name: str
    success: bool = True
    changed: bool = False
    messages: list[tuple[Severity, str]] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def note(self, severity: Severity, message: str) -> None:
        self.messages.append((severity, message))

    def notices(self, severity: Severity) -> list[str]:
        return [msg for sev, msg in self.messages if sev is severity]

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "changed": self.changed,
            "messages": [(sev.value, msg) for sev, msg in self.messages],
            "details": self.details,
        }

    def __str__(self) -> str:
        status = "ok" if self.success else "failed"
        last = self.messages[-1][1] if self.messages else "no notices"
        return f"[{status}] {self.name}: {last}"
