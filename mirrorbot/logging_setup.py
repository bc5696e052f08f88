import sys
from pathlib import Path
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = "<level>{level}</level>: {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Setup loguru logging for the CLI.

    Configures:
    - Console output: WARNING+ (DEBUG+ when verbose)
    - File output: DEBUG+ if a log file is given
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=CONSOLE_FORMAT,
        colorize=True,
    )

    if log_file is not None:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="30 days",
            compression="gz",
        )
        logger.debug(f"File logging enabled: {log_path}")
