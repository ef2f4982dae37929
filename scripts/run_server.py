#!/usr/bin/env python3
"""Start the bus finder API server (uvicorn) with the OCR access-log filter."""

import argparse
import os

import uvicorn
from dotenv import load_dotenv

from api.logging_config import configure_uvicorn_logging


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Bus finder API server")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Bind address")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")), help="Port")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"), help="Log level")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    uvicorn.run(
        "api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=configure_uvicorn_logging(args.log_level),
    )


if __name__ == "__main__":
    main()
