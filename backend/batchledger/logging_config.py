# backend/batchledger/logging_config.py
"""Application-wide logging configuration."""

import logging

from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """Install a single rich console handler on the root logger."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    rich_handler = RichHandler(
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        tracebacks_word_wrap=True,
        tracebacks_suppress=[
            logging,
        ],
    )

    # Replace rather than stack handlers when create_app() runs more than once
    root_logger.handlers = [rich_handler]

    # Suppress verbose logging from libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
