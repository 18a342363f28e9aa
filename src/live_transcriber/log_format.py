import logging
import re

RESET = "\033[0m"
DIM = "\033[2m"
BOLD = "\033[1m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
CYAN = "\033[36m"
MAGENTA = "\033[35m"

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.INFO: GREEN,
    logging.WARNING: YELLOW,
    logging.ERROR: RED,
    logging.CRITICAL: RED + BOLD,
}

# First matching rule wins.
MESSAGE_STYLES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^State: \w+ -> \w+"), BOLD + CYAN),
    (re.compile(r"^Transcript\b"), CYAN),
    (re.compile(r"^Deepgram (dis)?connected"), BOLD + MAGENTA),
    (re.compile(r"^Session teardown complete"), BOLD + GREEN),
)


class ColoredFormatter(logging.Formatter):
    """Single-line console format: time, level, short logger name, message.

    With ``color=False`` the same layout is produced without ANSI codes, which
    is what the console uses when stderr is not a terminal.
    """

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, color: bool = True) -> None:
        super().__init__(fmt, datefmt)
        self.color = color

    def _paint(self, text: str, style: str) -> str:
        if not self.color or not style:
            return text
        return f"{style}{text}{RESET}"

    def _message_style(self, record: logging.LogRecord, msg: str) -> str:
        for pattern, style in MESSAGE_STYLES:
            if pattern.search(msg):
                return style
        if record.levelno == logging.DEBUG:
            return DIM
        if record.levelno >= logging.WARNING:
            return LEVEL_COLORS.get(record.levelno, "")
        return ""

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        parts = [
            self._paint(self.formatTime(record, self.datefmt), DIM),
            self._paint(f"{record.levelname:<5}", LEVEL_COLORS.get(record.levelno, "")),
            self._paint(f"{record.name.rsplit('.', 1)[-1]:<16}", DIM),
            self._paint(msg, self._message_style(record, msg)),
        ]
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
