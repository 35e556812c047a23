"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the redline package.
Run with: uvicorn main:app --reload

The app instance is created here rather than in redline.app so tests can
import create_app without configuring JWKS, Redis, or storage.
"""

from redline.app import add_request_id_middleware, create_app

app = create_app()
# Added last so it wraps everything, including auth failures
add_request_id_middleware(app)

__all__ = ["app"]
