"""
Dashboard API Entry Point

Allows execution via: python -m services.api
"""

import uvicorn

from utils.config import settings
from utils.logging import setup_logging

if __name__ == "__main__":
    setup_logging()
    uvicorn.run(
        "services.api.app:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_config=None,
    )
