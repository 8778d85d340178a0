from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class SanityCheckResult:
    """Outcome of one startup check; ``warning`` marks a passing check with degraded features."""

    name: str
    ok: bool
    detail: str = ""
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    warning: bool = False

    @property
    def log_level(self) -> str:
        if not self.ok:
            return "ERROR"
        return "WARNING" if self.warning else "INFO"

    def to_log_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"name": self.name, "ok": self.ok, "detail": self.detail}
        if self.warning:
            params["warning"] = True
        if self.data is not None:
            params["data"] = self.data
        if self.error:
            params["error"] = self.error
        return params
