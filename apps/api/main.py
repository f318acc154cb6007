"""Uvicorn entrypoint for the santachat API.

Run with: uvicorn main:app --reload

The app instance is built here rather than in santachat.app so that tests can
import create_app without configuring the environment first.
"""

from santachat.app import add_request_id_middleware, create_app

app = create_app()
# Added LAST so it runs FIRST (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
