"""
asgi.py -- Application assembly for MemberGate.

This is the ONLY file that imports from both api/ and web/. It joins the two
layers into a single ASGI app without coupling them to each other.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app
from web.routes import router as web_router

# Included last: web_router ends with the catch-all 404 route, which would
# shadow anything registered after it.
app.include_router(web_router, tags=["Web UI"])
