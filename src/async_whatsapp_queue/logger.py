"""Logging utilities for the WhatsApp delivery queue.

Modules only fetch named loggers here. Level, handlers and format are set
once by the entry point with ``logging.basicConfig()`` so that no duplicate
handlers get attached.

Example:
    Typical usage in a module::

        from async_whatsapp_queue.logger import get_logger

        logger = get_logger("Dispatcher")
        logger.info("Batch dispatched")
"""

import logging

DEFAULT_LOGGER_NAME = "AsyncWhatsAppQueue"


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """Return the standard library logger registered under ``name``.

    No handlers or formatters are configured here; that is left to the
    application entry point.

    Args:
        name: The logger name. Defaults to "AsyncWhatsAppQueue".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)
