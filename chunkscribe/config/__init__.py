"""YAML configuration loader for chunkscribe."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


DEFAULTS: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/chunkscribe.log",
        "console_output": True,
    },
    "audio": {
        "sample_rate": 16000,
        "channels": 1,
        "frames_per_buffer": 1024,
        "chunk_seconds": 10.0,
        "max_session_seconds": 3600,
    },
    "upload": {
        "max_pending": 64,
        "delivery_timeout_seconds": 30.0,
        "drain_timeout_seconds": 120.0,
    },
    "client": {
        "base_url": "http://127.0.0.1:8080",
        "owner_id": "local",
        "request_timeout_seconds": 60.0,
        # finalize waits for every part to be transcribed; None sizes it from
        # server.max_parts and transcription.request_timeout_seconds
        "finalize_timeout_seconds": None,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8080,
        "owner_header": "X-Owner-Id",
        "max_parts": 180,
        "max_part_bytes": 25 * 1024 * 1024,
        "partial_max_parts": 3,
        "retired_capacity": 4096,
    },
    "storage": {
        "backend": "filesystem",
        "directory": "data/sessions",
    },
    "transcription": {
        "backend": "openai",
        "language": "en",
        "request_timeout_seconds": 60.0,
        "max_concurrent_calls": 4,
        "finalize_workers": 2,
        "google": {
            "credentials_path": None,
            "language_code": "en-US",
            "use_enhanced_model": True,
            "enable_automatic_punctuation": True,
        },
        "openai": {
            "api_key": None,
            "model": "whisper-1",
            "base_url": "https://api.openai.com/v1",
        },
    },
    "entitlements": {
        "mode": "allow_all",
        "subscribers": [],
        "free_sessions": 3,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ChunkscribeConfig:
    """chunkscribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults are used
                        and relative paths resolve against the working directory.
        """
        self.config_file = Path(config_path) if config_path else None

        if self.config_file is None:
            logger.info("No configuration file given, using defaults")
            self.config = copy.deepcopy(DEFAULTS)
            self._apply_environment(self.config)
            return

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        config = _merge(DEFAULTS, loaded)
        self._resolve_paths(config)
        self._apply_environment(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        google = config['transcription']['google']
        if google.get('credentials_path') and not os.path.isabs(google['credentials_path']):
            google['credentials_path'] = str(config_dir / google['credentials_path'])

        storage_dir = config['storage']['directory']
        if not os.path.isabs(storage_dir):
            config['storage']['directory'] = str(config_dir / storage_dir)

        log_path = config['logging']['file_path']
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def _apply_environment(self, config: Dict[str, Any]) -> None:
        """Fill provider credentials from the environment when the file leaves them empty."""
        openai = config['transcription']['openai']
        if not openai.get('api_key'):
            openai['api_key'] = os.environ.get('OPENAI_API_KEY') or None

        google = config['transcription']['google']
        if not google.get('credentials_path'):
            google['credentials_path'] = os.environ.get('GOOGLE_APPLICATION_CREDENTIALS') or None

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'server.max_parts').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'transcription.backend')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_storage_directory(self) -> str:
        """Get part storage directory path."""
        return str(Path(self.get('storage.directory', 'data/sessions')).absolute())
