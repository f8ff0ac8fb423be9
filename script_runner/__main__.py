"""Run the API with uvicorn: ``python -m script_runner``."""

from __future__ import annotations

import uvicorn

from script_runner.config import settings
from script_runner.utils.logging import setup_logging


def main() -> None:
    setup_logging()
    uvicorn.run(
        "script_runner.main:app",
        host=settings.runner_host,
        port=settings.runner_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
