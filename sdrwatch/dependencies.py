"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from sdrwatch.config import Settings, get_settings
from sdrwatch.intraday.coordinator import SyncCoordinator


def get_coordinator(request: Request) -> SyncCoordinator:
    """Return the coordinator built by ``create_app`` for this application."""
    return request.app.state.coordinator


# Annotated shortcuts for route signatures
Coordinator = Annotated[SyncCoordinator, Depends(get_coordinator)]
AppSettings = Annotated[Settings, Depends(get_settings)]
