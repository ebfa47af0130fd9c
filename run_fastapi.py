#!/usr/bin/env python3
"""
Run the health API locally with auto-reload.
"""

import os

import uvicorn

if __name__ == "__main__":
    os.environ.setdefault("ENVIRONMENT", "development")
    os.environ.setdefault("DATABASE_HOST", "postgresql://localhost:5432")
    os.environ.setdefault("DATABASE_NAME", "cloudsync")

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("API_PORT", "8001")), reload=True, log_level="info")
