"""
Structured logging setup.

JSON lines in production, coloured console output everywhere else. Standard
library loggers (uvicorn, sqlalchemy) are routed through the same processors.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from cockpit.config import settings

_configured = False


def configure_logging() -> None:
  global _configured
  if _configured:
    return

  shared_processors: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
  ]

  production = settings.environment == "production"
  renderer: Any = structlog.processors.JSONRenderer() if production else structlog.dev.ConsoleRenderer()

  processors = list(shared_processors)
  if production:
    processors.append(structlog.processors.format_exc_info)
  processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

  structlog.configure(
    processors=processors,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
  )

  formatter = structlog.stdlib.ProcessorFormatter(
    foreign_pre_chain=shared_processors,
    processors=[
      structlog.stdlib.ProcessorFormatter.remove_processors_meta,
      renderer,
    ],
  )

  handler = logging.StreamHandler(sys.stdout)
  handler.setFormatter(formatter)

  root_logger = logging.getLogger()
  root_logger.addHandler(handler)
  root_logger.setLevel(settings.log_level.upper())
  _configured = True
