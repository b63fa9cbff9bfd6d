"""
Per-request audit trail.

Every provenance and confidence decision taken while answering one request
is recorded as a structured event {stage, decision, **fields} and mirrored
to the logger, so a result can be explained without scraping text logs.
"""

import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class AnalysisTrace:
    def __init__(self, operation: str, asset: str, log: logging.Logger | None = None):
        self.operation = operation
        self.asset = asset
        self.status: str = "ok"          # "ok" or "degraded"
        self.events: list[dict[str, Any]] = []
        self.warnings: list[str] = []
        self._log = log or logger

    def event(self, stage: str, decision: str, **fields: Any) -> None:
        entry = {
            "at": datetime.now(timezone.utc).isoformat(),
            "stage": stage,
            "decision": decision,
            **fields,
        }
        self.events.append(entry)
        detail = " ".join(f"{k}={v}" for k, v in fields.items())
        self._log.info("[%s][%s] %s %s %s", self.operation, stage, self.asset, decision, detail)

    def warn(self, stage: str, message: str) -> None:
        self.warnings.append(message)
        self.event(stage, "warning", message=message)

    def degrade(self, stage: str, reason: str) -> None:
        self.status = "degraded"
        self.event(stage, "degraded", reason=reason)

    def decisions(self, stage: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["stage"] == stage]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "asset": self.asset,
            "status": self.status,
            "events": list(self.events),
            "warnings": list(self.warnings),
        }
