#!/usr/bin/env python3
# backend/run.py
"""
Development API server.

Creates any missing tables in the configured database, then serves the API
with auto-reload. Not used in production deployments.
"""
import os
from pathlib import Path
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")

import uvicorn

from lessonbook.init_db import init_db

if __name__ == "__main__":
    init_db()
    print("🚗 Starting lessonbook development server")
    print("🌐 Access at: http://localhost:8000")
    print("📚 API Docs: http://localhost:8000/docs")

    uvicorn.run("lessonbook.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
