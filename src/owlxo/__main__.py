"""Entry point for running OwlXO via ``python -m owlxo``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    """Start the FastAPI-powered OwlXO service."""

    level = os.environ.get("OWLXO_LOG_LEVEL", "info").lower()
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("OWLXO_HOST", "0.0.0.0")
    port = int(os.environ.get("OWLXO_PORT", "8000"))
    uvicorn.run("owlxo.ui:app", host=host, port=port, reload=False, log_level=level)


if __name__ == "__main__":
    main()
