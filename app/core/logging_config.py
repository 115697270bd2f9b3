"""Logging setup and log-safe formatting helpers."""

import logging
import sys

from app.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once for the process."""
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    if any(getattr(h, "_paname", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler._paname = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # SQL echo is too noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def mask_email(email: str | None) -> str:
    """Mask an e-mail for logs: ``jean.dupont@x.fr`` -> ``j***t@x.fr``."""
    if not email:
        return "unknown_email"
    local, _, domain = email.partition("@")
    if not local or not domain:
        return "invalid_email"
    if len(local) <= 2:
        masked = local[0] + "*"
    else:
        masked = f"{local[0]}***{local[-1]}"
    return f"{masked}@{domain}"
