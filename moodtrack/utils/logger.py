import logging
import os
import sys

# Constants
LOG_DIR = "logs"
LOG_FILE_NAME = "moodtrack.log"
LOG_FORMAT = "[%(asctime)s] | %(levelname)-8s | %(name)-15s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(name: str = "moodtrack", level: int = logging.INFO,
                 log_dir: str = LOG_DIR, to_file: bool = True) -> logging.Logger:
    """
    Configures and returns the application logger.

    Features:
    - Console output on stderr (stdout is reserved for JSON reports)
    - File output overwritten on each run
    - Standardized formatting

    Args:
        name: Logger name; child loggers (`moodtrack.*`) inherit the handlers.
        level: Minimum level.
        log_dir: Directory of the log file.
        to_file: Disable to log to the console only.

    Returns:
        Configured Logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers if setup is called multiple times
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if to_file:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, LOG_FILE_NAME), mode='w', encoding='utf-8')
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger
