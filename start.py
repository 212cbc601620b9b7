#!/usr/bin/env python3
"""
Model Importer Startup Script
Runs the importer API with settings taken from the environment
"""

import uvicorn

from model_importer.config import get_settings
from model_importer.main import create_app

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower()
    )
