import logging
import sys

import structlog


def configure_logging(log_level: str = "INFO") -> None:
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            timestamper,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_live_context(*, room_code: str, participant_id: str | None, is_host: bool) -> None:
    """Tags every log line of the current task with the live room it serves."""
    structlog.contextvars.bind_contextvars(
        room_code=room_code,
        participant_id=participant_id,
        role="host" if is_host else "player",
    )


def clear_live_context() -> None:
    structlog.contextvars.unbind_contextvars("room_code", "participant_id", "role")
