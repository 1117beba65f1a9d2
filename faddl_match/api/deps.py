"""
Faddl Match — API dependencies

Routes reach services through the per-process ``ServiceContainer`` stored on
``app.state`` by the lifespan handler.
"""

from __future__ import annotations

from fastapi import Request

from faddl_match.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
