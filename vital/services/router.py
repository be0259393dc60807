"""
Router boundary.

The gates only need to ask the host shell for the current path and to
request one redirect.  ``Redirect`` is the value the route policy hands
back when navigation must change.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field


@runtime_checkable
class Router(Protocol):
    """Navigation surface implemented by the host shell."""

    def redirect(self, path: str, query: Optional[dict[str, str]] = None) -> None:
        ...

    def current_path(self) -> str:
        ...


class Redirect(BaseModel):
    """A navigation target with its query parameters."""

    path: str
    query: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def apply(self, router: Router) -> None:
        router.redirect(self.path, dict(self.query) or None)
