#!/usr/bin/env python3
"""
Main entry point for the sessionauth server.
"""

import uvicorn
from dotenv import load_dotenv

from sessionauth.core import get_settings

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    settings = get_settings()

    print(f"🚀 Starting sessionauth server on {settings.server.host}:{settings.server.port}")
    print(f"🔧 Session storage: {settings.session.storage.type}")

    uvicorn.run(
        "sessionauth.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload,
        workers=settings.server.workers if not settings.server.reload else 1,
        log_level=settings.logging.level.lower(),
        access_log=False,  # We handle logging ourselves
    )
