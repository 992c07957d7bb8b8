"""Error taxonomy shared by the clients, the page agent bridge and the coordinator."""

from __future__ import annotations

from typing import Optional


class CoordinatorError(Exception):
    """Base class for failures that end a workflow with a short, user-facing reason."""


class ConfigurationMissing(CoordinatorError):
    """No target repository / content site has been configured."""

    def __init__(self, message: str = "Extension not configured: set the repository and content site") -> None:
        super().__init__(message)


class NoTargetPage(CoordinatorError):
    """No ordinary content page is open to install the page agent into."""

    def __init__(self, message: str = "No valid web page tab found") -> None:
        super().__init__(message)


class RemoteCallFailed(CoordinatorError):
    """A remote endpoint answered non-2xx, reported failure, or was unreachable."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class InjectionFailed(CoordinatorError):
    """The host rejected installing the page agent's style or script."""


class CaptureFailed(CoordinatorError):
    """Screenshot capture or the in-page crop step failed."""
