#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Serves the API with auto-reload. HOST, PORT and RELOAD override the
defaults; production runs uvicorn or gunicorn directly.
"""
import os
import sys
from pathlib import Path

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "true").lower() in ("1", "true", "yes")

    print(f"Starting carshare API at http://localhost:{port}")
    print(f"API docs: http://localhost:{port}/docs")

    uvicorn.run("carshare.main:app", host=host, port=port, reload=reload, log_level="info")
