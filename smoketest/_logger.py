"""Framework logger: progress lines go to the pytest terminal, everything goes to the scenario log file"""

import logging
from pathlib import Path
import sys

from _pytest.terminal import TerminalReporter


STDOUT_LEVEL = 100

# third party loggers that would flood tests.log with one line per HTTP call
_NOISY_LOGGERS = ("requests", "urllib3", "docker")


def get_log_formatter() -> logging.Formatter:
    return logging.Formatter("%(asctime)s.%(msecs)03d %(levelname)-8s %(message)s", "%H:%M:%S")


class Logger(logging.Logger):
    # set by pytest_sessionstart
    terminal: TerminalReporter | None = None

    def stdout(self, message: str, *args) -> None:  # noqa: ANN002
        if not self.isEnabledFor(STDOUT_LEVEL):
            return

        # Yes, logger takes its '*args' as 'args'.
        self._log(STDOUT_LEVEL, message, args)  # pylint: disable=protected-access

        line = message % args if args else message
        if self.terminal is None:
            # before the session start, or outside pytest
            print(line)  # noqa: T201
        else:
            self.terminal.write_line(line)
            self.terminal.flush()

    def section(self, title: str) -> None:
        if self.terminal is None:
            self.stdout(f"===== {title} =====")
        else:
            self.terminal.write_sep("=", title, bold=True)

    def add_file_handler(self, path: str | Path) -> logging.FileHandler:
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(get_log_formatter())
        self.addHandler(handler)
        return handler


logging.setLoggerClass(Logger)
logging.addLevelName(STDOUT_LEVEL, "STDOUT")
for _name in _NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)


def get_logger(name: str = "smoketest", *, use_stdout: bool = False) -> Logger:
    result: Logger = logging.getLogger(name)  # type: ignore[assignment]

    if use_stdout:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(logging.DEBUG)
        stdout_handler.setFormatter(get_log_formatter())
        result.addHandler(stdout_handler)

    result.setLevel(logging.DEBUG)

    return result


logger = get_logger()
