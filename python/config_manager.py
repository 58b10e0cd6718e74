"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import re
import yaml
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "dedup_user"
    password: str = "dedup_password"
    name: str = "case_database"


@dataclass
class MatchingConfig:
    """Scoring weights and the name similarity threshold.

    Weights must keep the order national_id > phone > name; the name
    weight is scaled by the similarity value (0-1) before flooring.
    """
    national_id_weight: int = 100
    phone_weight: int = 80
    name_weight: int = 60
    name_threshold: float = 0.6


@dataclass
class RetrievalConfig:
    """Candidate retrieval configuration"""
    candidate_cap: int = 50
    prefilter: str = "auto"  # auto, containment, trigram
    trigram_threshold: float = 0.6


@dataclass
class NormalizationConfig:
    """Normalization policy for raw search input"""
    phone_digits_only: bool = False
    phone_min_digits: int = 0
    national_id_pattern: Optional[str] = None


@dataclass
class InputValidationConfig:
    """Input validation configuration for user-provided data"""
    name_max_length: int = 200
    phone_max_length: int = 30
    national_id_max_length: int = 50
    rationale_max_length: int = 2000
    blocked_characters: str = "<>{}[]|\\;`$"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class PerformanceConfig:
    """Performance configuration"""
    concurrent_scoring: bool = False
    max_threads: int = 4


@dataclass
class AlgorithmConfig:
    """Algorithm version information"""
    version: str = "1.0.0"
    name: str = "Levenshtein Duplicate Scorer"


VALID_PREFILTERS = ("auto", "containment", "trigram")


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


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
        self.matching: MatchingConfig = MatchingConfig()
        self.retrieval: RetrievalConfig = RetrievalConfig()
        self.normalization: NormalizationConfig = NormalizationConfig()
        self.input_validation: InputValidationConfig = InputValidationConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.performance: PerformanceConfig = PerformanceConfig()
        self.algorithm: AlgorithmConfig = AlgorithmConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

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

        self._parse_matching()
        self._parse_retrieval()
        self._parse_normalization()
        self._parse_input_validation()
        self._parse_logging()
        self._parse_performance()
        self._parse_algorithm()
        self._parse_database()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._raw_config.get('matching', {})
        weights = cfg.get('weights', {})
        self.matching = MatchingConfig(
            national_id_weight=weights.get('national_id', 100),
            phone_weight=weights.get('phone', 80),
            name_weight=weights.get('name', 60),
            name_threshold=cfg.get('name_threshold', 0.6)
        )

    def _parse_retrieval(self) -> None:
        """Parse retrieval configuration"""
        cfg = self._raw_config.get('retrieval', {})
        self.retrieval = RetrievalConfig(
            candidate_cap=cfg.get('candidate_cap', 50),
            prefilter=cfg.get('prefilter', 'auto'),
            trigram_threshold=cfg.get('trigram_threshold', 0.6)
        )

    def _parse_normalization(self) -> None:
        """Parse normalization policy"""
        cfg = self._raw_config.get('normalization', {})
        self.normalization = NormalizationConfig(
            phone_digits_only=cfg.get('phone_digits_only', False),
            phone_min_digits=cfg.get('phone_min_digits', 0),
            national_id_pattern=cfg.get('national_id_pattern')
        )

    def _parse_input_validation(self) -> None:
        """Parse input validation configuration"""
        cfg = self._raw_config.get('input_validation', {})
        self.input_validation = InputValidationConfig(
            name_max_length=cfg.get('name_max_length', 200),
            phone_max_length=cfg.get('phone_max_length', 30),
            national_id_max_length=cfg.get('national_id_max_length', 50),
            rationale_max_length=cfg.get('rationale_max_length', 2000),
            blocked_characters=cfg.get('blocked_characters', "<>{}[]|\\;`$")
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_performance(self) -> None:
        """Parse performance configuration"""
        cfg = self._raw_config.get('performance', {})
        self.performance = PerformanceConfig(
            concurrent_scoring=cfg.get('concurrent_scoring', False),
            max_threads=cfg.get('max_threads', 4)
        )

    def _parse_algorithm(self) -> None:
        """Parse algorithm configuration"""
        cfg = self._raw_config.get('algorithm', {})
        self.algorithm = AlgorithmConfig(
            version=cfg.get('version', '1.0.0'),
            name=cfg.get('name', 'Levenshtein Duplicate Scorer')
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
        """Export configuration as dictionary (database password omitted)"""
        return {
            'matching': {
                'weights': {
                    'national_id': self.matching.national_id_weight,
                    'phone': self.matching.phone_weight,
                    'name': self.matching.name_weight,
                },
                'name_threshold': self.matching.name_threshold
            },
            'retrieval': {
                'candidate_cap': self.retrieval.candidate_cap,
                'prefilter': self.retrieval.prefilter,
                'trigram_threshold': self.retrieval.trigram_threshold
            },
            'normalization': {
                'phone_digits_only': self.normalization.phone_digits_only,
                'phone_min_digits': self.normalization.phone_min_digits,
                'national_id_pattern': self.normalization.national_id_pattern
            },
            'performance': {
                'concurrent_scoring': self.performance.concurrent_scoring,
                'max_threads': self.performance.max_threads
            },
            'algorithm': {
                'version': self.algorithm.version,
                'name': self.algorithm.name
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        validate_matching_config(self.matching)

        if self.retrieval.candidate_cap < 1:
            raise ConfigurationError("retrieval.candidate_cap must be at least 1")
        if self.retrieval.prefilter not in VALID_PREFILTERS:
            raise ConfigurationError(
                f"retrieval.prefilter must be one of {VALID_PREFILTERS}, "
                f"got '{self.retrieval.prefilter}'"
            )
        if not 0.0 <= self.retrieval.trigram_threshold <= 1.0:
            raise ConfigurationError("retrieval.trigram_threshold must be between 0 and 1")

        if self.normalization.phone_min_digits < 0:
            raise ConfigurationError("normalization.phone_min_digits must not be negative")
        if self.normalization.national_id_pattern:
            try:
                re.compile(self.normalization.national_id_pattern)
            except re.error as e:
                raise ConfigurationError(f"normalization.national_id_pattern is not a valid regex: {e}")

        if self.performance.max_threads < 1:
            raise ConfigurationError("performance.max_threads must be at least 1")


def validate_matching_config(matching: MatchingConfig) -> None:
    """Check that the weights keep their relative order and the threshold is a ratio.

    Raises:
        ConfigurationError: If a value is out of range
    """
    if not (matching.national_id_weight > matching.phone_weight > matching.name_weight > 0):
        raise ConfigurationError(
            "matching weights must satisfy national_id > phone > name > 0 "
            f"(got {matching.national_id_weight}, {matching.phone_weight}, {matching.name_weight})"
        )
    if not 0.0 <= matching.name_threshold <= 1.0:
        raise ConfigurationError(
            f"matching.name_threshold must be between 0 and 1, got {matching.name_threshold}"
        )


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
