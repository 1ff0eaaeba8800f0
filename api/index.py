"""
Vercel Python entrypoint.

`vercel.json` maps /(.*) -> api/index.py so every request reaches the same
FastAPI app; `handler` serves runtimes that expect a Lambda-style callable.
"""

from fastapi import FastAPI
from mangum import Mangum

from main import app  # FastAPI instance


def build_handler(asgi_app: FastAPI) -> Mangum:
    # No ASGI lifespan per invocation: the shared upstream HTTP client lives as long as the container.
    return Mangum(asgi_app, lifespan="off")


handler = build_handler(app)
