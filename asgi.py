"""
asgi.py -- Application assembly for utilhub.

This is the ONLY file that imports from both api/ and web/. It joins the JSON
API and the browser redirect routes into a single ASGI app without coupling
them to each other.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

# OAuth start/callback and form logout live at the site root (/login/..., /logout).
app.include_router(web_router, tags=["Web"])
