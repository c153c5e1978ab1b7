"""
asgi.py -- Application assembly for the auth gateway.

This is the ONLY file that joins the gateway (api/) with the engine's native
router (auth/routes.py). api/main.py knows nothing about the native
endpoints; auth/ knows nothing about api/.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app
from auth.routes import router as native_auth_router

# Native engine endpoints under /api/auth/*; they share the engine built in
# api.main's lifespan via app.state.auth_engine.
app.include_router(native_auth_router, tags=["Auth engine"])
