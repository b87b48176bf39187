"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    """Shared store configuration (read and write capability)"""
    read_url: str = "sqlite:///sanctions_store.db"
    write_url: str = "sqlite:///sanctions_store.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass
class SourceEndpoint:
    """A single watchlist source"""
    name: str
    url: str


@dataclass
class SourcesConfig:
    """Source fetcher configuration"""
    endpoints: List[SourceEndpoint] = field(default_factory=list)
    timeout_seconds: int = 120
    max_retry_attempts: int = 3
    user_agent: str = "sanctions-sync/1.0"

    @property
    def names(self) -> List[str]:
        return [e.name for e in self.endpoints]


@dataclass
class MatchingConfig:
    """Matching configuration parameters"""
    unresolved_country_policy: str = "ignore"  # ignore, reject
    country_aliases: Dict[str, str] = field(default_factory=lambda: {
        'uk': 'gb',
        'great britain': 'gb',
        'england': 'gb',
        'usa': 'us',
        'united states of america': 'us',
        'russia': 'ru',
        'iran': 'ir',
        'syria': 'sy',
        'north korea': 'kp',
        'south korea': 'kr',
    })


@dataclass
class InputValidationConfig:
    """Input validation configuration for user-provided data"""
    name_max_length: int = 200
    blocked_characters: str = "<>{}[]|\\;`$"


@dataclass
class RefreshConfig:
    """Refresh cycle configuration"""
    staleness_warning_hours: int = 48


@dataclass
class ExportConfig:
    """Snapshot export configuration"""
    output_directory: str = "exports"
    format: str = "json"  # json, yaml


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = ""
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


UNRESOLVED_COUNTRY_POLICIES = ('ignore', 'reject')
EXPORT_FORMATS = ('json', 'yaml')


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.store: StoreConfig = StoreConfig()
        self.sources: SourcesConfig = SourcesConfig()
        self.matching: MatchingConfig = MatchingConfig()
        self.input_validation: InputValidationConfig = InputValidationConfig()
        self.refresh: RefreshConfig = RefreshConfig()
        self.export: ExportConfig = ExportConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
        self._apply_env_overrides()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_store()
        self._parse_sources()
        self._parse_matching()
        self._parse_input_validation()
        self._parse_refresh()
        self._parse_export()
        self._parse_logging()
        self._validate()

    def _apply_env_overrides(self) -> None:
        """Environment variables win over the config file for store URLs"""
        read_url = os.getenv("SANCTIONS_STORE_READ_URL")
        write_url = os.getenv("SANCTIONS_STORE_WRITE_URL")
        if read_url is not None:
            self.store.read_url = read_url
        if write_url is not None:
            self.store.write_url = write_url

    def _parse_store(self) -> None:
        """Parse store configuration"""
        cfg = self._raw_config.get('store', {})
        self.store = StoreConfig(
            read_url=cfg.get('read_url', self.store.read_url) or '',
            write_url=cfg.get('write_url', self.store.write_url) or '',
            echo=cfg.get('echo', False),
            pool_size=cfg.get('pool_size', 5),
            max_overflow=cfg.get('max_overflow', 10),
            pool_timeout=cfg.get('pool_timeout', 30),
            pool_recycle=cfg.get('pool_recycle', 1800)
        )

    def _parse_sources(self) -> None:
        """Parse source list configuration"""
        cfg = self._raw_config.get('sources', {})
        endpoints = []
        for item in cfg.get('lists', []):
            if not isinstance(item, dict) or not item.get('name') or not item.get('url'):
                raise ConfigurationError(f"Each source needs 'name' and 'url': {item!r}")
            endpoints.append(SourceEndpoint(name=str(item['name']), url=str(item['url'])))

        self.sources = SourcesConfig(
            endpoints=endpoints,
            timeout_seconds=cfg.get('timeout_seconds', 120),
            max_retry_attempts=cfg.get('max_retry_attempts', 3),
            user_agent=cfg.get('user_agent', self.sources.user_agent)
        )

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._raw_config.get('matching', {})
        aliases = dict(self.matching.country_aliases)
        for name, code in (cfg.get('country_aliases') or {}).items():
            aliases[str(name).strip().lower()] = str(code).strip().lower()

        self.matching = MatchingConfig(
            unresolved_country_policy=cfg.get('unresolved_country_policy', 'ignore'),
            country_aliases=aliases
        )

    def _parse_input_validation(self) -> None:
        """Parse input validation configuration"""
        cfg = self._raw_config.get('input_validation', {})
        self.input_validation = InputValidationConfig(
            name_max_length=cfg.get('name_max_length', 200),
            blocked_characters=cfg.get('blocked_characters', "<>{}[]|\\;`$")
        )

    def _parse_refresh(self) -> None:
        """Parse refresh configuration"""
        cfg = self._raw_config.get('refresh', {})
        self.refresh = RefreshConfig(
            staleness_warning_hours=cfg.get('staleness_warning_hours', 48)
        )

    def _parse_export(self) -> None:
        """Parse export configuration"""
        cfg = self._raw_config.get('export', {})
        self.export = ExportConfig(
            output_directory=cfg.get('output_directory', 'exports'),
            format=str(cfg.get('format', 'json')).lower()
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', ''),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        return {
            'store': {
                'read_url': self.store.read_url,
                'write_url': self.store.write_url,
                'echo': self.store.echo
            },
            'sources': {
                'lists': [{'name': e.name, 'url': e.url} for e in self.sources.endpoints],
                'timeout_seconds': self.sources.timeout_seconds,
                'max_retry_attempts': self.sources.max_retry_attempts
            },
            'matching': {
                'unresolved_country_policy': self.matching.unresolved_country_policy,
                'country_aliases': self.matching.country_aliases
            },
            'input_validation': {
                'name_max_length': self.input_validation.name_max_length,
                'blocked_characters': self.input_validation.blocked_characters
            },
            'refresh': {
                'staleness_warning_hours': self.refresh.staleness_warning_hours
            },
            'export': {
                'output_directory': self.export.output_directory,
                'format': self.export.format
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        errors = []

        if self.matching.unresolved_country_policy not in UNRESOLVED_COUNTRY_POLICIES:
            errors.append(
                f"matching.unresolved_country_policy must be one of {UNRESOLVED_COUNTRY_POLICIES}, "
                f"got '{self.matching.unresolved_country_policy}'"
            )

        if self.export.format not in EXPORT_FORMATS:
            errors.append(f"export.format must be one of {EXPORT_FORMATS}, got '{self.export.format}'")

        names = self.sources.names
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            errors.append(f"Duplicate source names: {duplicates}")

        if self.input_validation.name_max_length <= 0:
            errors.append("input_validation.name_max_length must be positive")

        if self.sources.timeout_seconds <= 0:
            errors.append("sources.timeout_seconds must be positive")

        if self.sources.max_retry_attempts < 1:
            errors.append("sources.max_retry_attempts must be at least 1")

        if self.refresh.staleness_warning_hours <= 0:
            errors.append("refresh.staleness_warning_hours must be positive")

        if errors:
            raise ConfigurationError("; ".join(errors))


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
