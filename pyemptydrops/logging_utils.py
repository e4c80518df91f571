"""Logging setup for command-line runs. Library modules only create loggers."""

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure the root logger for a run.

    Parameters
    ----------
    verbose : bool
        Log at DEBUG instead of INFO.
    log_file : str or Path, optional
        Also write the log to this file.

    Returns
    -------
    logging.Logger
        The package logger.
    """
    handlers = [logging.StreamHandler()]
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # numba's compiler logs are noise at DEBUG
    logging.getLogger('numba').setLevel(logging.WARNING)
    return logging.getLogger('pyemptydrops')
