"""Root logger setup, the Qt message bridge and the in-memory log tank.

The tank keeps the most recent formatted records so a headless session, or a test, can
inspect what happened without reading stdout. Records at ERROR and above are also announced
through :attr:`FinTrack.core.signals.Signals.errorLogged`.
"""
import collections
import logging
import sys
from typing import Deque, List, Optional, Tuple, Union

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..core.signals import signals

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

TANK_CAPACITY: int = 5000

# Third-party loggers that are too chatty below WARNING
QUIET_LOGGERS: Tuple[str, ...] = (
    'googleapiclient.discovery',
    'googleapiclient.discovery_cache',
    'google_auth_oauthlib.flow',
    'urllib3',
)

LEVELS: Tuple[int, ...] = (
    logging.DEBUG,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
    logging.CRITICAL,
)


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        value = logging.getLevelName(level.strip().upper())
        if not isinstance(value, int):
            raise ValueError(f'Unknown logging level name "{level}".')
        level = value
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValueError('Logging level must be an integer or a level name.')
    if level not in LEVELS:
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')
    return level


def set_logging_level(level: Union[int, str]) -> None:
    """
    Sets the level of the root logger and of every handler installed by :func:`setup_logging`.

    Args:
        level (int | str): A standard logging level, or its name, e.g. ``'INFO'``.

    Raises:
        ValueError: If the level is not one of the standard levels.
    """
    level = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """
    Converts Qt messages to standard Python logging.
    """
    logger = logging.getLogger('Qt')

    message = message.strip()

    if mode == QtMsgType.QtDebugMsg:
        logger.debug(message)
    elif mode == QtMsgType.QtInfoMsg:
        logger.info(message)
    elif mode == QtMsgType.QtWarningMsg:
        logger.warning(message)
    elif mode == QtMsgType.QtCriticalMsg:
        logger.error(message)
    elif mode == QtMsgType.QtFatalMsg:
        logger.critical(message)
        sys.exit(1)


def setup_logging(enable_stream_handler: bool = True, enable_qt_handler: bool = True,
                  log_level: Union[int, str] = LOG_LEVEL, tank_capacity: int = TANK_CAPACITY) -> None:
    """
    Configures the root logger with a stream handler, the log tank and the Qt message bridge.

    Args:
        enable_stream_handler (bool): Log to stdout.
        enable_qt_handler (bool): Route Qt's own messages through Python logging.
        log_level (int | str): Level applied to the root logger and its handlers.
        tank_capacity (int): Number of records the tank keeps.
    """
    root_logger = logging.getLogger()

    # Clear all handlers to avoid formatting conflicts
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if enable_stream_handler:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    tank_handler = TankHandler(capacity=tank_capacity)
    tank_handler.setFormatter(formatter)
    root_logger.addHandler(tank_handler)

    set_logging_level(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


def get_tank() -> Optional['TankHandler']:
    """
    Returns the TankHandler installed on the root logger, if any.
    """
    return next(
        (h for h in logging.getLogger().handlers if isinstance(h, TankHandler)),
        None
    )


class TankHandler(logging.Handler):
    """
    Logging handler that keeps the most recent formatted records in memory.

    Attributes:
        tank (collections.deque[tuple[int, str]]): Log level and formatted message of each
            stored record, oldest first. The oldest records are dropped once the capacity
            is reached.
    """

    def __init__(self, capacity: int = TANK_CAPACITY):
        super().__init__()
        self.tank: Deque[Tuple[int, str]] = collections.deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self.tank.maxlen

    def emit(self, record):
        """
        Formats the record, stores it and announces errors.

        Args:
            record (logging.LogRecord): The log record to be processed.
        """
        try:
            message = self.format(record)
            self.tank.append((record.levelno, message))
            if record.levelno >= logging.ERROR:
                signals.errorLogged.emit(message)
        except (Exception, KeyboardInterrupt):
            self.handleError(record)

    def get_logs(self, level: int = logging.NOTSET, contains: Optional[str] = None) -> List[str]:
        """
        Returns the stored messages at or above ``level``.

        Args:
            level (int, optional): The minimum logging level. Defaults to logging.NOTSET.
            contains (str, optional): Only return messages containing this text,
                case-insensitive.

        Returns:
            list[str]: The matching formatted messages, oldest first.
        """
        needle = contains.lower() if contains else None
        return [
            msg for lvl, msg in self.tank
            if lvl >= level and (needle is None or needle in msg.lower())
        ]

    def count(self, level: int = logging.NOTSET) -> int:
        return sum(1 for lvl, _ in self.tank if lvl >= level)

    def clear_logs(self):
        """
        Clears all the stored log messages from the tank.
        """
        self.tank.clear()
