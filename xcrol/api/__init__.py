"""API router registry used by the app factory.

This keeps route module imports and inclusion order in one place so
`xcrol.main` stays focused on startup wiring.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import connected_apps, developer_apps, health

API_PREFIX = "/api/v1"

API_ROUTERS: tuple[APIRouter, ...] = (
    health.router,
    developer_apps.router,
    connected_apps.router,
)

__all__ = ["API_PREFIX", "API_ROUTERS"]
