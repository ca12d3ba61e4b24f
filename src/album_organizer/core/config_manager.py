"""
Centralized Configuration Management

Manages all configuration sources:
- Default settings
- Project config (config/default.json)
- User settings (~/.config/album-organizer/)
- Explicit config file
- CLI overrides
"""

import json
import logging
import os
import platform
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .constants import (
    DEFAULT_CATALOG_EXCLUSION_PATTERNS,
    DEFAULT_CLEANUP_MAX_LEVELS,
    DEFAULT_MANUAL_REVIEW_THRESHOLD,
    DEFAULT_NOISE_ARTIST_VALUES,
    DEFAULT_QUALITY_TIER_NAMES,
    DEFAULT_STATE_DB,
    DEFAULT_TITLE_MAX_LENGTH,
    ENRICHMENT_CACHE_TTL_HOURS,
    ENRICHMENT_MIN_CONFIDENCE,
    ENRICHMENT_RATE_LIMIT_PER_MINUTE,
    MAX_WORKER_THREADS,
    SINCE_DATE_FORMAT,
    STORE_BASE_DELAY,
    STORE_BUSY_TIMEOUT,
    STORE_MAX_ATTEMPTS,
    STORE_MAX_DELAY,
)
from .exceptions import ConfigurationInvalid
from .models import OrganizationMode, QualityTier


def parse_since_date(value: Optional[str]) -> Optional[float]:
    """Local midnight of a YYYY-MM-DD date as a timestamp"""
    if value is None:
        return None
    return datetime.strptime(value, SINCE_DATE_FORMAT).timestamp()


@dataclass
class PathsConfig:
    """Source, destination and state database locations"""
    source_root: str = ""
    destination_root: str = ""
    state_db: str = DEFAULT_STATE_DB


@dataclass
class ProcessingConfig:
    """Worker pool and album selection configuration"""
    max_workers: int = 0  # 0 = derive from available cores
    incremental: bool = False  # skip directories unchanged since their last outcome
    since: Optional[str] = None  # YYYY-MM-DD; skip directories modified before it

    def resolved_workers(self) -> int:
        if self.max_workers and self.max_workers > 0:
            return self.max_workers
        return max(1, min(MAX_WORKER_THREADS, os.cpu_count() or 1))


@dataclass
class ClassificationConfig:
    """Classifier and alias resolver configuration"""
    manual_review_threshold: int = DEFAULT_MANUAL_REVIEW_THRESHOLD
    alias_groups: List[List[str]] = field(default_factory=list)
    catalog_exclusion_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_CATALOG_EXCLUSION_PATTERNS)
    )
    noise_artist_values: List[str] = field(
        default_factory=lambda: list(DEFAULT_NOISE_ARTIST_VALUES)
    )


@dataclass
class OrganizationConfig:
    """Destination layout configuration"""
    mode: str = OrganizationMode.ARTIST.value
    quality_tier_names: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_QUALITY_TIER_NAMES)
    )
    title_max_length: int = DEFAULT_TITLE_MAX_LENGTH
    cleanup_max_levels: int = DEFAULT_CLEANUP_MAX_LEVELS


@dataclass
class StoreConfig:
    """State store retry policy"""
    max_attempts: int = STORE_MAX_ATTEMPTS
    base_delay: float = STORE_BASE_DELAY
    max_delay: float = STORE_MAX_DELAY
    busy_timeout: float = STORE_BUSY_TIMEOUT


@dataclass
class EnrichmentConfig:
    """Discogs enrichment configuration"""
    enabled: bool = False
    token: str = ""
    rate_limit_per_minute: int = ENRICHMENT_RATE_LIMIT_PER_MINUTE
    cache_ttl_hours: int = ENRICHMENT_CACHE_TTL_HOURS
    min_confidence: float = ENRICHMENT_MIN_CONFIDENCE
    timeout: int = 10


@dataclass
class UIConfig:
    """User interface configuration"""
    log_level: str = "WARNING"
    log_file: Optional[str] = None


@dataclass
class OrganizerConfig:
    """Complete configuration for Album Organizer"""
    paths: PathsConfig = None
    processing: ProcessingConfig = None
    classification: ClassificationConfig = None
    organization: OrganizationConfig = None
    store: StoreConfig = None
    enrichment: EnrichmentConfig = None
    ui: UIConfig = None

    # Runtime settings
    dry_run: bool = False

    def __post_init__(self):
        if self.paths is None:
            self.paths = PathsConfig()
        if self.processing is None:
            self.processing = ProcessingConfig()
        if self.classification is None:
            self.classification = ClassificationConfig()
        if self.organization is None:
            self.organization = OrganizationConfig()
        if self.store is None:
            self.store = StoreConfig()
        if self.enrichment is None:
            self.enrichment = EnrichmentConfig()
        if self.ui is None:
            self.ui = UIConfig()


_SECTIONS = {
    'paths': PathsConfig,
    'processing': ProcessingConfig,
    'classification': ClassificationConfig,
    'organization': OrganizationConfig,
    'store': StoreConfig,
    'enrichment': EnrichmentConfig,
    'ui': UIConfig,
}


class ConfigManager:
    """
    Centralized configuration manager with hierarchical loading:
    1. Default settings
    2. Project config (config/default.json)
    3. User settings (~/.config/album-organizer/settings.json)
    4. Explicit config file
    5. CLI arguments
    """

    def __init__(self, project_root: Optional[Path] = None,
                 user_config_dir: Optional[Path] = None):
        self.logger = logging.getLogger(__name__)

        if project_root is None:
            # Find project root by looking for pyproject.toml
            current = Path(__file__).parent
            while current != current.parent:
                if (current / "pyproject.toml").exists():
                    project_root = current
                    break
                current = current.parent
            else:
                project_root = Path.cwd()

        self.project_root = Path(project_root)
        self.config_dir = self.project_root / "config"
        self.user_config_dir = Path(user_config_dir) if user_config_dir else self._get_user_config_dir()

        self._config: Optional[OrganizerConfig] = None

        self.logger.debug(f"ConfigManager initialized (project root: {self.project_root})")

    def _get_user_config_dir(self) -> Path:
        """Get platform-appropriate user config directory"""
        system = platform.system()

        if system == "Windows":
            base = Path(os.environ.get("APPDATA", "~"))
        elif system == "Darwin":  # macOS
            base = Path("~/Library/Application Support")
        else:  # Linux and others
            base = Path(os.environ.get("XDG_CONFIG_HOME", "~/.config"))

        return (base / "album-organizer").expanduser()

    def load_config(self,
                    config_file: Optional[str] = None,
                    cli_overrides: Optional[Dict] = None) -> OrganizerConfig:
        """
        Load configuration from all sources with proper precedence.

        Args:
            config_file: Explicit JSON config file; unreadable files are fatal
            cli_overrides: Command-line argument overrides (None values ignored)

        Returns:
            Complete configuration object
        """
        config_dict = asdict(OrganizerConfig())

        project_config_path = self.config_dir / "default.json"
        if project_config_path.exists():
            config_dict = self._merge_configs(config_dict, self._load_json_config(project_config_path))
            self.logger.info(f"Loaded project config: {project_config_path}")

        user_config_path = self.user_config_dir / "settings.json"
        if user_config_path.exists():
            config_dict = self._merge_configs(config_dict, self._load_json_config(user_config_path))
            self.logger.info(f"Loaded user config: {user_config_path}")

        if config_file:
            config_dict = self._merge_configs(config_dict, self._load_json_config(Path(config_file)))
            self.logger.info(f"Loaded config file: {config_file}")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, self._drop_none(cli_overrides))
            self.logger.debug("Applied CLI overrides")

        self._config = self._dict_to_config(config_dict)
        return self._config

    def load_validated(self,
                       config_file: Optional[str] = None,
                       cli_overrides: Optional[Dict] = None) -> OrganizerConfig:
        """Load configuration and raise ConfigurationInvalid on any issue"""
        config = self.load_config(config_file=config_file, cli_overrides=cli_overrides)
        issues = self.validate_config(config)
        if issues:
            for issue in issues:
                self.logger.error(f"Configuration issue: {issue}")
            raise ConfigurationInvalid(issues)
        return config

    def _load_json_config(self, config_path: Path) -> Dict[str, Any]:
        """Load JSON configuration file"""
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationInvalid([f"Cannot read config {config_path}: {e}"]) from e

        if not isinstance(data, dict):
            raise ConfigurationInvalid([f"Config {config_path} must contain a JSON object"])
        return data

    def _merge_configs(self, base: Dict, override: Dict) -> Dict:
        """Deep merge configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _drop_none(self, overrides: Dict) -> Dict:
        """CLI flags that were not given must not override lower layers"""
        cleaned = {}
        for key, value in overrides.items():
            if isinstance(value, dict):
                value = self._drop_none(value)
                if not value:
                    continue
            elif value is None:
                continue
            cleaned[key] = value
        return cleaned

    def _dict_to_config(self, config_dict: Dict) -> OrganizerConfig:
        """Convert dictionary to config dataclass"""
        sections = {}
        unknown = []
        for name, section_cls in _SECTIONS.items():
            values = config_dict.get(name) or {}
            if not isinstance(values, dict):
                raise ConfigurationInvalid([f"Section '{name}' must be an object"])
            known = section_cls.__dataclass_fields__
            unknown.extend(f"{name}.{key}" for key in values if key not in known)
            sections[name] = section_cls(**{k: v for k, v in values.items() if k in known})

        unknown.extend(
            key for key in config_dict
            if key not in _SECTIONS and key != 'dry_run'
        )
        if unknown:
            raise ConfigurationInvalid([f"Unknown configuration keys: {', '.join(sorted(unknown))}"])

        return OrganizerConfig(dry_run=bool(config_dict.get('dry_run', False)), **sections)

    def validate_config(self, config: OrganizerConfig) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []

        # Paths
        source = config.paths.source_root
        destination = config.paths.destination_root
        if not source:
            issues.append("source_root is required")
        elif not Path(source).is_dir():
            issues.append(f"Source root is not a directory: {source}")
        if not destination:
            issues.append("destination_root is required")
        if source and destination:
            source_path = Path(source).expanduser().resolve()
            destination_path = Path(destination).expanduser().resolve()
            if source_path == destination_path:
                issues.append("source_root and destination_root must differ")
            elif source_path in destination_path.parents or destination_path in source_path.parents:
                issues.append("source_root and destination_root must not contain each other")

        # Processing
        if not isinstance(config.processing.max_workers, int) or config.processing.max_workers < 0:
            issues.append("max_workers must be a non-negative integer")
        if not isinstance(config.processing.incremental, bool):
            issues.append("incremental must be true or false")
        if config.processing.since is not None:
            try:
                parse_since_date(config.processing.since)
            except (TypeError, ValueError):
                issues.append(f"Invalid since date (expected YYYY-MM-DD): {config.processing.since}")

        # Classification
        threshold = config.classification.manual_review_threshold
        if not isinstance(threshold, (int, float)) or not 0 <= threshold <= 100:
            issues.append("manual_review_threshold must be between 0 and 100")

        for pattern in config.classification.catalog_exclusion_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                issues.append(f"Invalid catalog exclusion pattern {pattern!r}: {e}")

        issues.extend(self._validate_alias_groups(config.classification.alias_groups))

        # Organization
        valid_modes = [mode.value for mode in OrganizationMode]
        if config.organization.mode not in valid_modes:
            issues.append(f"mode must be one of {valid_modes}")

        tier_names = config.organization.quality_tier_names
        missing = [tier.value for tier in QualityTier if not tier_names.get(tier.value)]
        if missing:
            issues.append(f"quality_tier_names missing entries for: {', '.join(missing)}")
        elif len(set(tier_names[tier.value] for tier in QualityTier)) != len(QualityTier):
            issues.append("quality_tier_names must be distinct")

        if config.organization.title_max_length < 10:
            issues.append("title_max_length must be at least 10")
        if config.organization.cleanup_max_levels < 0:
            issues.append("cleanup_max_levels must not be negative")

        # Store
        if config.store.max_attempts < 1:
            issues.append("store max_attempts must be at least 1")
        if config.store.base_delay <= 0 or config.store.max_delay < config.store.base_delay:
            issues.append("store delays must be positive and max_delay >= base_delay")

        # Enrichment
        if config.enrichment.enabled and not config.enrichment.token:
            issues.append("enrichment requires a token when enabled")
        if not 0 <= config.enrichment.min_confidence <= 1:
            issues.append("enrichment min_confidence must be between 0 and 1")

        # UI
        if config.ui.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            issues.append(f"Invalid log level: {config.ui.log_level}")

        return issues

    def _validate_alias_groups(self, alias_groups: List[List[str]]) -> List[str]:
        """A raw name may map to exactly one canonical artist"""
        from ..metadata.alias_resolver import normalize_artist

        issues = []
        owners: Dict[str, int] = {}
        for index, group in enumerate(alias_groups):
            if not isinstance(group, (list, tuple)) or not group:
                issues.append(f"alias group {index} must be a non-empty list")
                continue
            for name in group:
                key = normalize_artist(str(name))
                if not key:
                    issues.append(f"alias group {index} contains an empty name")
                    continue
                if owners.get(key, index) != index:
                    issues.append(
                        f"alias {name!r} appears in groups {owners[key]} and {index}"
                    )
                owners.setdefault(key, index)
        return issues

    def get_config(self) -> OrganizerConfig:
        """Get current configuration (load if not already loaded)"""
        if self._config is None:
            self._config = self.load_config()
        return self._config


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get global config manager instance"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
