"""
    Copyright 2024 Inmanta

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        http://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

    Contact: code@inmanta.com
"""

import logging
import sys
from typing import Optional

import colorlog
from colorlog.formatter import LogColors

# Verbosity on the command line (number of -v flags) to python log level
log_levels = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}

ROOT_LOGGER_NAME = "nutanix_deploy"


def _is_on_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def convert_verbosity(verbosity: int) -> int:
    """
    Convert the number of -v flags to a python log level. The console never shows less than warnings.
    """
    return log_levels[max(0, min(verbosity, max(log_levels)))]


class MultiLineFormatter(colorlog.ColoredFormatter):
    """
    Formatter for multi-line log records.

    Lines after the first one are indented to the length of the header, so multi-line messages and tracebacks stay
    readable.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        *,
        log_colors: Optional[LogColors] = None,
        reset: bool = True,
        no_color: bool = False,
        keep_logger_names: bool = True,
    ):
        """
        :param fmt: Optional string specifying the log record format.
        :param log_colors: Optional `LogColors` object mapping log level names to color codes.
        :param reset: Boolean indicating whether to reset terminal colors at the end of each log record.
        :param no_color: Boolean indicating whether to disable colors in the output.
        :param keep_logger_names: Display the name of the logger that created the log message, instead of a short name
                                  for the part of nutanix-deploy that created it.
        """
        super().__init__(fmt, log_colors=log_colors, reset=reset, no_color=no_color)
        self.fmt = fmt
        self._keep_logger_names = keep_logger_names

    def get_header_length(self, record: logging.LogRecord) -> int:
        """
        Get the header length of a given log record, without color codes.
        """
        formatter = colorlog.ColoredFormatter(
            fmt=self.fmt,
            log_colors=self.log_colors,
            reset=False,
            no_color=True,
        )
        header = formatter.format(
            logging.LogRecord(
                record.name,
                record.levelno,
                record.pathname,
                record.lineno,
                "",
                (),
                None,
            )
        )
        return len(header)

    def format(self, record: logging.LogRecord) -> str:
        if not self._keep_logger_names:
            record = self._wrap_record(record)
        indent: str = " " * self.get_header_length(record)
        head, *tail = super().format(record).splitlines(True)
        return head + "".join(indent + line for line in tail)

    def _wrap_record(self, record: logging.LogRecord) -> logging.LogRecord:
        old_name = record.name
        new_name = self.get_logger_name_for(old_name)
        if old_name == new_name:
            return record
        attributes = dict(record.__dict__)
        attributes["name"] = new_name
        return logging.makeLogRecord(attributes)

    @staticmethod
    def get_logger_name_for(logger_name: str) -> str:
        """
        Returns the short name to display for a logger: ``nutanix`` for the provider, ``cli`` for the command line and
        ``deploy`` for everything else of nutanix-deploy. Loggers of other libraries keep their name.
        """
        if logger_name != ROOT_LOGGER_NAME and not logger_name.startswith(ROOT_LOGGER_NAME + "."):
            return logger_name
        if logger_name.startswith(ROOT_LOGGER_NAME + ".provider"):
            return "nutanix"
        if logger_name == ROOT_LOGGER_NAME + ".app":
            return "cli"
        return "deploy"


def get_console_formatter(keep_logger_names: bool = False, timed: bool = False) -> MultiLineFormatter:
    # Short names need less padding
    space_padding_after_logger_name = 25 if keep_logger_names else 10
    log_format = "%(asctime)s " if timed else ""
    if _is_on_tty():
        log_format += f"%(log_color)s%(name)-{space_padding_after_logger_name}s%(levelname)-8s%(reset)s%(blue)s%(message)s"
        log_colors = {"DEBUG": "cyan", "INFO": "green", "WARNING": "yellow", "ERROR": "red", "CRITICAL": "red"}
    else:
        log_format += f"%(name)-{space_padding_after_logger_name}s%(levelname)-8s%(message)s"
        log_colors = None

    return MultiLineFormatter(
        log_format,
        log_colors=log_colors,
        reset=_is_on_tty(),
        no_color=not _is_on_tty(),
        keep_logger_names=keep_logger_names,
    )


def setup_logging(
    verbosity: int = 0, log_file: Optional[str] = None, timed: bool = False, keep_logger_names: bool = False
) -> None:
    """
    Configure the root logger: colored output on stderr at the level selected by the verbosity and, when a log file is
    given, everything from DEBUG up in plain text to that file.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_nutanix_deploy", False):
            root.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(stream=sys.stderr)
    console.setFormatter(get_console_formatter(keep_logger_names=keep_logger_names, timed=timed))
    console.setLevel(convert_verbosity(verbosity))
    console._nutanix_deploy = True  # type: ignore[attr-defined]
    root.addHandler(console)
    level = console.level

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(name)-30s %(levelname)-8s %(message)s"))
        file_handler.setLevel(logging.DEBUG)
        file_handler._nutanix_deploy = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)
        level = logging.DEBUG

    root.setLevel(level)
    # tornado is chatty at debug level
    logging.getLogger("tornado").setLevel(max(level, logging.INFO))
