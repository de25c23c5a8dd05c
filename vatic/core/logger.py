import sys
import traceback
from pathlib import Path

from loguru import logger

from vatic.config.schema import VaticSettings
from vatic.config.secrets import SecretsResolver

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def redacting_patcher(secrets: SecretsResolver):
    """Build a loguru patcher that masks secret values in every record."""

    def patch(record):
        record["message"] = secrets.redact(record["message"])

    return patch


def redacting_format(secrets: SecretsResolver):
    """
    Build a loguru format callable that renders tracebacks itself.

    loguru appends ``{exception}`` unredacted, so the traceback is formatted
    here, masked, and passed through ``extra``.
    """

    def fmt(record) -> str:
        if record["exception"] is None:
            return LOG_FORMAT + "\n"
        type_, value, tb = record["exception"]
        text = "".join(traceback.format_exception(type_, value, tb))
        record["extra"]["redacted_traceback"] = secrets.redact(text)
        return LOG_FORMAT + "\n{extra[redacted_traceback]}"

    return fmt


def configure_logger(settings: VaticSettings, secrets: SecretsResolver | None = None):
    """Configure loguru logger based on settings."""
    logger.remove()  # Remove default handler

    secrets = secrets or SecretsResolver()
    logger.configure(patcher=redacting_patcher(secrets))
    fmt = redacting_format(secrets)

    # Console (stderr); frame variables are never dumped
    logger.add(sys.stderr, level=settings.logging.level, format=fmt, backtrace=False, diagnose=False)

    # File
    if settings.logging.file_enabled:
        path = Path(settings.data_dir).expanduser() / settings.logging.file_name
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                path,
                format=fmt,
                rotation=settings.logging.rotation,
                retention=settings.logging.retention,
                level=settings.logging.level,
                backtrace=False,
                diagnose=False,
                enqueue=True,  # Async safe
            )
        except (OSError, PermissionError) as e:
            logger.warning(f"File logging disabled, cannot write {path}: {e}")
