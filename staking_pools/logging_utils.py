import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%d-%b-%Y %H:%M:%S"

_handler: logging.Handler | None = None


def _root_handler() -> logging.Handler:
    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root = logging.getLogger("staking_pools")
        root.addHandler(_handler)
        root.setLevel(logging.INFO)
        root.propagate = False
    return _handler


def get_logger(name: str) -> logging.Logger:
    _root_handler()
    return logging.getLogger(name)


def set_log_level(level: str) -> None:
    _root_handler()
    logging.getLogger("staking_pools").setLevel(level)
