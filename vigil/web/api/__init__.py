from fastapi import Request

from ...core.engine import Orchestrator


def get_engine(request: Request) -> Orchestrator:
    """Orchestrator dependency"""
    return request.app.state.orchestrator
