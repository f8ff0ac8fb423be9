"""structlog configuration and logger factory.

Events are dotted names with keyword context::

    log = get_logger(__name__)
    log.info("executor.started", command_id=7, pid=4242)
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

from script_runner.config import Settings, settings

_configured = False


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    cfg: Settings | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and stdlib logging once per process."""
    global _configured

    if _configured and not force:
        return

    _cfg = cfg or settings
    log_level = (level or _cfg.runner_log_level).upper()
    log_format = (fmt or _cfg.runner_log_format).lower()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level, logging.INFO),
        force=True,
    )
    # SQL statement logging stays opt-in
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
