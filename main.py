#!/usr/bin/env python3
import uvicorn
import os
import sys

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from FileServer.config import Settings


def main():
    settings = Settings.from_env()
    print(f"[*] Starting FileDash on {settings.host}:{settings.port} (root: {settings.storage_root})")
    uvicorn.run("FileServer.main:create_app", factory=True, host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
