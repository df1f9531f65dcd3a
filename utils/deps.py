"""Dependency providers for shared application state."""

from __future__ import annotations

from fastapi import Request
from fastapi.templating import Jinja2Templates

from modules.visitor_lifecycle import VisitorLifecycle


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_lifecycle(request: Request) -> VisitorLifecycle:
    return request.app.state.lifecycle
