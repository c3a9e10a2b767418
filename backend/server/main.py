"""
Token server entry point.

    python backend/server/main.py        (from the repo root, after pip install -e .)
    uvicorn server.asgi:app              (equivalent)
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig


def main() -> None:
    load_dotenv()
    config = AppConfig.load_from_env()

    uvicorn.run(
        "server.asgi:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        reload=config.env == "dev",
    )


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

if __name__ == "__main__":
    main()
