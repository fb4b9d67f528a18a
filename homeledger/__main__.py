from __future__ import annotations

import uvicorn

from homeledger.app import create_app
from homeledger.config import load_settings


def main():
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
