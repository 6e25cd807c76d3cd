import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", log_file: str | None = "app.log") -> None:
    handlers: list[logging.Handler] = [
        # Log to console
        logging.StreamHandler(sys.stdout),
    ]
    if log_file:
        # Log to file
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def get_logger(name: str):
    return logging.getLogger(name)


logger = get_logger("attendance_kiosk")
