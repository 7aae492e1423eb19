#!/usr/bin/env python
#
# Copyright (c) 2024-2025, Ryan Galloway (ryan@rsgalloway.com)
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
#  - Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
#  - Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  - Neither the name of the software nor the names of its contributors
#    may be used to endorse or promote products derived from this software
#    without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.
#

__doc__ = """
Contains logging functions and classes.

The package logger carries only a NullHandler until setup_logging() is
called by the command line interface. Library code takes a logger as an
argument and falls back to a child of the package logger.
"""

import os
import logging
import socket
from logging.handlers import RotatingFileHandler

from s3mirror import config

log = logging.getLogger(config.LOG_NAME)

# fix for ValueErrors raised by python's logging module
LOG_LEVEL_MAP = {
    0: "NOTSET",
    10: "DEBUG",
    20: "INFO",
    30: "WARNING",
    40: "ERROR",
    50: "CRITICAL",
}
VALID_LOG_LEVELS = LOG_LEVEL_MAP.values()

# handler names used to find and replace previously installed handlers
STREAM_HANDLER_NAME = f"{config.LOG_NAME}.stream"
FILE_HANDLER_NAME = f"{config.LOG_NAME}.file"


def normalize_level(level) -> str:
    """Returns a valid log level name for level, which may be an int, a
    numeric string or a level name.

    :param level: log level.
    :return: log level name.
    """
    if isinstance(level, int):
        return LOG_LEVEL_MAP.get(level, config.LOG_LEVEL_DEFAULT)
    elif isinstance(level, str) and level.isdigit():
        return LOG_LEVEL_MAP.get(int(level), config.LOG_LEVEL_DEFAULT)
    elif isinstance(level, str) and level.upper() in VALID_LOG_LEVELS:
        return level.upper()
    return config.LOG_LEVEL_DEFAULT


LOG_LEVEL = normalize_level(config.LOG_LEVEL)

log.setLevel(LOG_LEVEL)
log.addHandler(logging.NullHandler())


class HostFilter(logging.Filter):
    """Adds the hostname to the log record."""

    def __init__(self):
        super().__init__()
        self.hostname = socket.gethostname()

    def filter(self, record: logging.LogRecord):
        """Add the hostname to the log record.

        :param record: log record.
        :return: always True.
        """
        record.hostname = self.hostname
        return True


class HostRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that adds the hostname to the log record."""

    def __init__(
        self,
        filename: str,
        mode: str = "a",
        maxBytes: int = 0,
        backupCount: int = 0,
        encoding: str = None,
        delay: bool = False,
    ):
        """Initialize the rotating file handler.

        :param filename: name of the log file.
        :param mode: file open mode.
        :param maxBytes: max bytes per file.
        :param backupCount: number of backup files.
        :param encoding: file encoding.
        :param delay: delay flag.
        """
        super().__init__(filename, mode, maxBytes, backupCount, encoding, delay)
        self.addFilter(HostFilter())


def get_logger(name: str = None) -> logging.Logger:
    """Returns the package logger, or a named child of it.

    :param name: optional child logger name, e.g. "syncer".
    :return: logger.
    """
    return log.getChild(name) if name else log


def _remove_handler(name: str) -> None:
    """Removes the handler previously installed under name."""
    for h in list(log.handlers):
        if h.get_name() == name:
            log.removeHandler(h)
            h.close()


def setup_stream_handler(level: str = LOG_LEVEL) -> logging.Handler:
    """Adds a new stderr stream handler.

    :param level: log level.
    :return: handler.
    """
    _remove_handler(STREAM_HANDLER_NAME)

    handler = logging.StreamHandler()
    handler.set_name(STREAM_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )

    log.addHandler(handler)
    return handler


def setup_file_handler(
    maxBytes: int = config.LOG_MAX_BYTES,
    backupCount: int = config.LOG_BACKUP_COUNT,
    level: str = LOG_LEVEL,
    logdir: str = config.LOG_DIR,
) -> logging.Handler:
    """Adds a new rotating file handler.

    :param maxBytes: max bytes per file.
    :param backupCount: number of backup files.
    :param level: log level.
    :param logdir: directory to store the log files.
    :return: handler.
    """
    _remove_handler(FILE_HANDLER_NAME)

    os.makedirs(logdir, exist_ok=True)
    log_file = os.path.join(logdir, config.LOG_FILE)

    handler = HostRotatingFileHandler(
        log_file, maxBytes=maxBytes, backupCount=backupCount
    )
    handler.set_name(FILE_HANDLER_NAME)
    handler.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(hostname)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    log.addHandler(handler)
    return handler


def setup_logging(verbose: bool = False, logfile: bool = True) -> None:
    """Setup log handlers.

    :param verbose: log debug messages.
    :param logfile: also log to a rotating file under LOG_DIR.
    """
    level = "DEBUG" if verbose else LOG_LEVEL
    log.setLevel(level)
    setup_stream_handler(level)

    if logfile:
        try:
            setup_file_handler(level=level)
        except Exception as err:
            print("Error: %s" % str(err))
