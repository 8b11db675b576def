import logging

import pytest


@pytest.fixture(autouse=True)
def reset_package_logger():
    """The CLI turns propagation off on the package logger; put it back for caplog."""
    yield
    logger = logging.getLogger("l0merge")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
