"""
Logging setup shared by the CLI and the server.
"""

import logging
import os
from typing import Optional, Union


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(
    log_path: Optional[str] = None,
    level: Union[int, str] = logging.INFO,
    filename: str = 'agriecho.log',
    logger: Optional[logging.Logger] = None,
) -> logging.Logger:
    """
    Attach console and file handlers.

    Args:
        log_path: Directory for the log file. No file handler when None
        level: Log level name or number
        filename: Log file name inside log_path
        logger: Logger to configure (default: the root logger)

    Returns:
        The configured logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    target = logger if logger is not None else logging.getLogger()
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, '_agriecho', False) for h in target.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._agriecho = True
        target.addHandler(console)

        if log_path:
            # Log path not writable (dev environment): console only
            try:
                os.makedirs(log_path, exist_ok=True)
                file_handler = logging.FileHandler(os.path.join(log_path, filename))
                file_handler.setFormatter(formatter)
                file_handler._agriecho = True
                target.addHandler(file_handler)
            except (OSError, PermissionError):
                pass

    target.setLevel(level)
    return target
