"""
eepdesk Configuration Management
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any
from urllib.parse import urlparse

from dotenv import load_dotenv

from eepdesk.exceptions import ConfigurationError


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class DeskConfig:
    """Configuration for the eepdesk client"""

    # API settings
    api_base_url: str = "http://127.0.0.1:8000/api"
    timeout: float = 30.0
    refresh_timeout: Optional[float] = 30.0

    # Session settings
    refresh_buffer_seconds: int = 60  # renew this long before the access token expires

    # Mock backend (offline mode)
    use_mock_backend: bool = False
    mock_data_file: str = "mock_data.json"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    json_logs: bool = False
    verbose: bool = False

    # Paths
    config_dir: str = field(default_factory=lambda: str(Path.home() / ".eepdesk"))
    credentials_file: str = "credentials.json"
    history_file: str = ".eepdesk_history"

    def __post_init__(self):
        """Initialize paths and directories"""
        Path(self.config_dir).mkdir(parents=True, exist_ok=True)
        self._resolve_paths()

    def _resolve_paths(self) -> None:
        for attr in ("credentials_file", "history_file", "mock_data_file"):
            value = getattr(self, attr)
            if value and not os.path.isabs(value):
                setattr(self, attr, str(Path(self.config_dir) / value))

    @property
    def api_origin(self) -> str:
        """Scheme and host of the API, used to absolutize media paths"""
        parsed = urlparse(self.api_base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ConfigurationError(f"Invalid API base URL: {self.api_base_url!r}", field="api_base_url")
        return f"{parsed.scheme}://{parsed.netloc}"

    def load_from_file(self, config_path: str) -> None:
        """Load configuration from JSON file"""
        path = Path(config_path)
        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Could not parse {path}: {e}") from e
            for key, value in data.items():
                if hasattr(self, key):
                    setattr(self, key, value)
            self._resolve_paths()

    def save_to_file(self, config_path: Optional[str] = None) -> None:
        """Save configuration to JSON file"""
        path = Path(config_path or (Path(self.config_dir) / "config.json"))
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def load_default(cls, config_path: Optional[str] = None) -> "DeskConfig":
        """Load configuration from the user config directory, .env and environment"""
        load_dotenv()

        config_dir = os.environ.get("EEPDESK_CONFIG_DIR")
        config = cls(config_dir=config_dir) if config_dir else cls()

        path = config_path or str(Path(config.config_dir) / "config.json")
        config.load_from_file(path)

        # Environment wins over the config file
        config._load_from_env()

        return config

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        env_mappings = {
            "EEPDESK_API_URL": "api_base_url",
            "EEPDESK_TIMEOUT": ("timeout", float),
            "EEPDESK_REFRESH_TIMEOUT": ("refresh_timeout", float),
            "EEPDESK_MOCK": ("use_mock_backend", _as_bool),
            "EEPDESK_MOCK_DATA": "mock_data_file",
            "EEPDESK_LOG_LEVEL": "log_level",
            "EEPDESK_LOG_FILE": "log_file",
            "EEPDESK_JSON_LOGS": ("json_logs", _as_bool),
            "EEPDESK_VERBOSE": ("verbose", _as_bool),
        }

        for env_var, mapping in env_mappings.items():
            value = os.environ.get(env_var)
            if value:
                if isinstance(mapping, tuple):
                    attr, converter = mapping
                    try:
                        setattr(self, attr, converter(value))
                    except ValueError as e:
                        raise ConfigurationError(f"Invalid value for {env_var}: {value!r}", field=attr) from e
                else:
                    setattr(self, mapping, value)

        self._resolve_paths()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary"""
        return asdict(self)
