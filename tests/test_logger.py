import logging

from async_whatsapp_queue.logger import DEFAULT_LOGGER_NAME, get_logger


def test_get_logger_reuses_existing_logger():
    logger = get_logger("TestLogger")
    handler_count = len(logger.handlers)

    same_logger = get_logger("TestLogger")
    assert logger is same_logger
    assert len(same_logger.handlers) == handler_count


def test_default_logger_has_no_handlers_of_its_own():
    logger = get_logger()
    assert logger.name == DEFAULT_LOGGER_NAME
    assert logger is logging.getLogger(DEFAULT_LOGGER_NAME)
    assert logger.handlers == []
