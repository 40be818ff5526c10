"""API server entry point for python -m vizprompts.api"""
import logging

import uvicorn
from vizprompts.config import settings

if __name__ == "__main__":
    logging.basicConfig(
        level=settings.logging.level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "vizprompts.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
