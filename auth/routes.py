"""
auth/routes.py -- Native engine endpoints mounted at /api/auth/*.

Every request under the prefix is handed to AuthEngine.handle() untouched and
the engine's status, JSON body and headers (Set-Cookie included) are returned
as-is. The gateway's /auth/* endpoints are the public contract; these exist
for clients that speak the engine's own protocol.

Routes:
  POST /api/auth/sign-up/email
  POST /api/auth/sign-in/email
  POST /api/auth/sign-out
  GET  /api/auth/get-session
  POST /api/auth/forget-password
  POST /api/auth/reset-password

Layer rule: no imports from api/ or profiles/. Wired into the app by asgi.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from auth.engine import AuthEngine, to_json_body

router = APIRouter(prefix="/api/auth")


@router.api_route("/{path:path}", methods=["GET", "POST"], include_in_schema=False)
async def native_auth(request: Request, path: str) -> JSONResponse:
    """Forward the raw request to the engine and mirror its response."""
    engine: AuthEngine = request.app.state.auth_engine
    body = await request.body()
    # bcrypt and DB calls are blocking; keep them off the event loop.
    result = await run_in_threadpool(
        engine.handle,
        request.method,
        path,
        request.headers,
        body,
        client_host=request.client.host if request.client else None,
    )
    resp = JSONResponse(status_code=result.status, content=to_json_body(result.body))
    for name, value in result.headers:
        resp.headers.append(name, value)
    return resp
