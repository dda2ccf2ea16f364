"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

require_session() runs the AuthGate for the current request and yields the
request's SessionContext to the route handler. Because it is a generator
dependency, the gate's cleanup runs after the handler finishes -- including
when the handler raises -- so the session is always cleared.

Rejections become HTTP 401 with the gate's message and a
WWW-Authenticate: Bearer challenge.

Layer rule: auth/dependencies.py may import from fastapi (Request,
HTTPException) because it is part of the dependency injection system. It
reads the gate from request.app.state, which api/main.py populates.
"""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import HTTPException, Request

from auth.context import SessionContext
from auth.gate import AuthGate, AuthRejected


def require_session(request: Request) -> Iterator[SessionContext]:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: SessionContext = Depends(require_session)): ...
    """
    gate: AuthGate = request.app.state.auth_gate
    try:
        with gate.guard(request.method, request.headers.get("Authorization")) as session:
            yield session
    except AuthRejected as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail={"code": "unauthorized", "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
