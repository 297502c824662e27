# utils.py
"""
Utility functions for the simulation framework.

This module provides helpers that are used across different parts of the
application but do not belong to a specific domain like physics, transport
or rendering: the error hierarchy, logging setup and configuration loading.
"""
import logging
import logging.handlers
import json
import os
from typing import Dict, Any

# --- Data Contracts ---
#
# setup_logging(config: Dict[str, Any], rank: int = 0) -> None:
#   - Inputs:
#     - config: A dictionary containing a "logging" key with "level",
#       "format", and "log_file" sub-keys.
#     - rank: The transport rank of the calling process.
#   - Outputs: None
#   - Side Effects: Configures the root Python logger. Creates a log
#     directory if it doesn't exist. Sets up a console handler and a
#     rotating file handler. Ranks other than 0 log to their own file.
#   - Invariants: After this function runs, the logging system is
#     initialized and ready for use throughout the application.
#
# load_config(path: str) -> Dict[str, Any]:
#   - Raises ConfigurationError if the file is missing, unreadable or is
#     not a JSON object.


class ConfigurationError(ValueError):
    """Raised when the run is configured in a way the engine cannot honour."""


class TransportError(RuntimeError):
    """Raised when a collective operation fails. Always fatal."""


class SinkError(RuntimeError):
    """Raised when the window or renderer cannot be created."""


DEFAULT_LOG_FORMAT = '%(asctime)s - rank %(rank)s - %(levelname)s - %(message)s'
THREAD_RANK_PREFIX = 'rank-'


class _RankFilter(logging.Filter):
    """Stamps every record with the rank so the format string can use it."""

    def __init__(self, rank: int):
        super().__init__()
        self.rank = rank

    def filter(self, record: logging.LogRecord) -> bool:
        # Thread ranks share one process and one log file; their threads
        # are named "rank-K".
        thread_name = record.threadName or ""
        if thread_name.startswith(THREAD_RANK_PREFIX):
            record.rank = thread_name[len(THREAD_RANK_PREFIX):]
        else:
            record.rank = self.rank
        return True


def rank_log_path(log_file_path: str, rank: int) -> str:
    """Returns the log file used by `rank`; rank 0 keeps the configured name."""
    if rank == 0:
        return log_file_path
    root, ext = os.path.splitext(log_file_path)
    return f"{root}.rank{rank}{ext}"


def setup_logging(config: Dict[str, Any], rank: int = 0) -> None:
    """
    Configures the logging system from a configuration dictionary.

    Sets up logging to both the console and a rotating file.
    """
    log_config = config.get('logging', {})
    log_level = log_config.get('level', 'INFO').upper()
    log_format = log_config.get('format', DEFAULT_LOG_FORMAT)
    log_file_path = rank_log_path(log_config.get('log_file', 'logs/simulation.log'), rank)

    # Ensure the log directory exists
    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # Get the root logger
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(log_format)
    rank_filter = _RankFilter(rank)

    # Console Handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(rank_filter)
    logger.addHandler(console_handler)

    # Rotating File Handler
    # Rotates when the log reaches 1MB, keeps 5 backup logs.
    file_handler = logging.handlers.RotatingFileHandler(
        log_file_path, maxBytes=1024*1024, backupCount=5
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(rank_filter)
    logger.addHandler(file_handler)

    logging.info("Logging system initialized.")
    logging.debug(f"Log level set to {log_level}.")
    logging.debug(f"Log file path: {log_file_path}")


def load_config(path: str) -> Dict[str, Any]:
    """Loads a JSON configuration file."""
    logging.info(f"Loading configuration from {path}...")
    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except FileNotFoundError as e:
        logging.error(f"Configuration file not found at {path}.")
        raise ConfigurationError(f"Configuration file not found: {path}") from e
    except json.JSONDecodeError as e:
        logging.error(f"Error decoding JSON from {path}.")
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a JSON object.")
    logging.info("Configuration loaded successfully.")
    return config


def get_section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Returns a configuration section, rejecting anything but an object."""
    section = config.get(name, {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a JSON object.")
    return section
