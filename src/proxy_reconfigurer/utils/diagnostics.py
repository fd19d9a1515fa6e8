"""Error types that carry an operator-facing explanation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class DiagnosticError(RuntimeError):
    """Base error with a stable code and a message meant for whoever runs the proxy."""

    code: str
    message: str
    detail: str | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}" if not self.detail else f"{self.code}: {self.message} ({self.detail})"

    def to_extra(self) -> dict[str, Any]:
        """Return a dict suitable for log enrichment."""

        data = {"code": self.code, "summary": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class CredentialMissingError(DiagnosticError):
    """Raised at startup when no platform API credential is configured."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            "PlatformCredentialMissing",
            "The proxy has no access to the platform API. Give this service an API role "
            "(DOCKERCLOUD_AUTH / TUTUM_AUTH) for automatic backend reconfiguration.",
            detail,
        )


class PlatformQueryError(DiagnosticError):
    """The orchestration platform's REST API could not be queried."""


class RenderError(DiagnosticError):
    """The proxy configuration template failed to render."""


__all__ = ["DiagnosticError", "CredentialMissingError", "PlatformQueryError", "RenderError"]
