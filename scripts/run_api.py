#!/usr/bin/env python3
"""
API server runner for Tiered RAG.

This script starts the FastAPI application with settings loaded from the
environment.
"""

import uvicorn

from tiered_rag.api import create_app
from tiered_rag.config import load_settings


def main():
    """Run the API server."""
    settings = load_settings()
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.value.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
