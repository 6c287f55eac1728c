from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pool_sniper.config import Settings

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp", "asyncio", "websockets")


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours lifecycle events so a busy log stays scannable."""

    GREY = "\x1b[90m"
    GREEN = "\x1b[92m"
    CYAN = "\x1b[96m"
    RED = "\x1b[91m"
    MAGENTA = "\x1b[95m"
    YELLOW = "\x1b[93m"
    RESET = "\x1b[0m"

    # First matching keyword wins over the level colour
    KEYWORDS = (
        (("BUY", "OPENED"), GREEN),
        (("NEW POOL",), CYAN),
        (("SELL", "EXIT", "CLOSED"), MAGENTA),
        (("REJECT", "SKIP"), GREY),
    )

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(name)s %(message)s", datefmt="%H:%M:%S")

    def color_for(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            return self.RED
        msg = str(record.msg)
        for words, color in self.KEYWORDS:
            if any(word in msg for word in words):
                return color
        return self.YELLOW if record.levelno >= logging.WARNING else self.GREY

    def format(self, record: logging.LogRecord) -> str:
        return f"{self.color_for(record)}{super().format(record)}{self.RESET}"


def setup_logging(settings: Settings) -> None:
    """Plain-text <LOG_DIR>/bot.log plus a coloured console, at LOG_LEVEL."""
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_dir / "bot.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter())

    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL)
    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
