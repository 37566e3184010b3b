"""
=============================================================================
Configuration for the Dental Field Records Client
=============================================================================

Settings are read from environment variables, optionally seeded from a
.env file:

    DENTAL_REMOTE_URL            Web app endpoint of the remote sheet
    DENTAL_STORE_NAME            Local store namespace (default DentalOfflineDB)
    DENTAL_STORE_VERSION         Expected local schema version (default 1)
    DENTAL_DATA_DIR              Directory holding the SQLite file
    DENTAL_REQUEST_TIMEOUT       Seconds before a remote call is abandoned
    DENTAL_STARTUP_SYNC_DELAY    Seconds before the first sync pass
    DENTAL_RECONNECT_SYNC_DELAY  Seconds between going online and syncing
    DENTAL_LOG_FILE              Optional log file path
    DENTAL_LOG_LEVEL             Console log level (default INFO)
    DENTAL_REMOTE_TIMEZONE       Zone of the remote sheet's dates, e.g. +08:00
                                 or Asia/Manila (default: device zone)

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


DEFAULT_STORE_NAME = 'DentalOfflineDB'
DEFAULT_STORE_VERSION = 1


@dataclass
class Settings:
    """Runtime settings for one client instance"""
    remote_url: str = ''
    store_name: str = DEFAULT_STORE_NAME
    store_version: int = DEFAULT_STORE_VERSION
    data_dir: str = 'data'
    request_timeout: float = 30.0
    startup_sync_delay: float = 3.0
    reconnect_sync_delay: float = 2.0
    log_file: Optional[str] = None
    log_level: str = 'INFO'
    remote_timezone: str = ''

    @property
    def db_path(self) -> str:
        """SQLite file backing the local store"""
        return os.path.join(self.data_dir, f"{self.store_name}.db")

    @property
    def backup_dir(self) -> str:
        """Where pre-upgrade exports of unsynced records are written"""
        return os.path.join(self.data_dir, 'backups')


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build settings from the environment.

    Args:
        env_file: Optional .env file to load first (existing variables win)

    Returns:
        Settings instance
    """
    load_dotenv(env_file)

    return Settings(
        remote_url=os.getenv('DENTAL_REMOTE_URL', ''),
        store_name=os.getenv('DENTAL_STORE_NAME', DEFAULT_STORE_NAME),
        store_version=int(os.getenv('DENTAL_STORE_VERSION', DEFAULT_STORE_VERSION)),
        data_dir=os.getenv('DENTAL_DATA_DIR', 'data'),
        request_timeout=float(os.getenv('DENTAL_REQUEST_TIMEOUT', '30')),
        startup_sync_delay=float(os.getenv('DENTAL_STARTUP_SYNC_DELAY', '3')),
        reconnect_sync_delay=float(os.getenv('DENTAL_RECONNECT_SYNC_DELAY', '2')),
        log_file=os.getenv('DENTAL_LOG_FILE') or None,
        log_level=os.getenv('DENTAL_LOG_LEVEL', 'INFO').upper(),
        remote_timezone=os.getenv('DENTAL_REMOTE_TIMEZONE', ''),
    )


def setup_logging(log_file: Optional[str] = None, level: str = 'INFO') -> None:
    """
    Configure logging for the client components.

    Console output follows the configured level; the optional log file
    always receives DEBUG detail.

    Args:
        log_file: Path of the log file, or None for console only
        level: Console log level name
    """
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level, logging.INFO))
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
