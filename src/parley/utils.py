import os
import re
import time
import logging
from pathlib import Path

import yaml

from .logger import get_parley_home

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    return get_parley_home() / "config.yaml"


class ConfigManager:
    """Manages application configuration settings."""
    _instance = None

    def __init__(self):
        """Initialize the ConfigManager instance."""
        self.config = None
        self.schema = None

    @classmethod
    def initialize(cls, schema_path=None, config_path=None):
        """Initialize the ConfigManager with the given schema path."""
        if cls._instance is not None:
            raise Exception("This class is a singleton!")
        else:
            cls._instance = cls()
            cls._instance.schema = cls._instance.load_config_schema(schema_path)
            cls._instance.config = cls._instance.load_default_config()
            cls._instance.load_user_config(config_path)

    @classmethod
    def reset(cls):
        """Forget the singleton (used by tests and by the CLI --config flag)."""
        cls._instance = None

    @classmethod
    def get_instance(cls) -> 'ConfigManager':
        if cls._instance is None:
            cls.initialize()
        if cls._instance.config is None:  # type: ignore
            cls._instance.config = {}  # type: ignore
        return cls._instance  # type: ignore

    @classmethod
    def get_config_section(cls, *keys):
        """Get a specific section of the configuration."""
        instance = cls.get_instance()

        section = instance.config
        if not section:
            return {}
        for key in keys:
            if isinstance(section, dict) and key in section:
                section = section[key]
            else:
                return {}
        return section

    @classmethod
    def get_config_value(cls, *keys):
        """Get a specific configuration value using nested keys."""
        instance = cls.get_instance()

        value = instance.config
        if not value:
            return None
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    @classmethod
    def set_config_value(cls, value, *keys):
        """Set a specific configuration value using nested keys."""
        instance = cls.get_instance()

        config: dict = instance.config
        if not config:
            instance.config = {}
            config = instance.config

        for key in keys[:-1]:
            if key not in config or not isinstance(config[key], dict):
                config[key] = {}
            config = config[key]  # type: ignore
        config[keys[-1]] = value  # type: ignore

    @staticmethod
    def load_config_schema(schema_path=None):
        """Load the configuration schema from a YAML file."""
        if schema_path is None:
            base_dir = os.path.dirname(os.path.abspath(__file__))
            schema_path = os.path.join(base_dir, 'config_schema.yaml')

        with open(schema_path, 'r', encoding='utf-8') as file:
            schema = yaml.safe_load(file)
        return schema

    def load_default_config(self):
        """Load default configuration values from the schema."""
        def extract_value(item):
            if isinstance(item, dict):
                if 'value' in item:
                    return item['value']
                else:
                    return {k: extract_value(v) for k, v in item.items()}
            return item

        config = {}
        for category, settings in self.schema.items():
            config[category] = extract_value(settings)
        return config

    def _validate_config_value(self, value, schema_item, path):
        """Validate a config value against its schema definition."""
        if not isinstance(schema_item, dict) or 'type' not in schema_item:
            # Not a leaf node, skip validation
            return True

        expected_type = schema_item['type']
        type_map = {
            'str': str,
            'int': int,
            'float': (int, float),
            'bool': bool,
            'dict': dict,
        }

        # Allow None for optional values
        if value is None:
            return True

        # Check type
        if expected_type in type_map:
            expected_python_type = type_map[expected_type]
            # bool is an int subclass, so it never counts as a number here
            if isinstance(value, bool) and expected_type in ('int', 'float'):
                logger.warning(f"Config validation: '{path}' should be {expected_type}, got bool. Using default.")
                return False
            if not isinstance(value, expected_python_type):
                logger.warning(f"Config validation: '{path}' should be {expected_type}, got {type(value).__name__}. Using default.")
                return False

        # Check if value is in allowed options
        if 'options' in schema_item and value not in schema_item['options']:
            logger.warning(f"Config validation: '{path}' value '{value}' not in allowed options {schema_item['options']}. Using default.")
            return False

        return True

    def _validate_config_section(self, user_section, schema_section, path=""):
        """Recursively validate a config section against schema."""
        if not isinstance(schema_section, dict) or not isinstance(user_section, dict):
            return

        for key, schema_value in schema_section.items():
            current_path = f"{path}.{key}" if path else key

            if key not in user_section:
                continue

            user_value = user_section[key]

            # If schema_value has 'type', it's a leaf node - validate it
            if isinstance(schema_value, dict) and 'type' in schema_value:
                if not self._validate_config_value(user_value, schema_value, current_path):
                    # Reset to default value
                    user_section[key] = schema_value.get('value')
            elif isinstance(schema_value, dict) and isinstance(user_value, dict):
                # Recurse into nested sections
                self._validate_config_section(user_value, schema_value, current_path)

    @staticmethod
    def deep_update(source, overrides):
        """Merge overrides into source, descending into nested dicts."""
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(source.get(key), dict):
                ConfigManager.deep_update(source[key], value)
            else:
                source[key] = value
        return source

    def load_user_config(self, config_path=None):
        """Load user configuration and merge with default config."""
        if config_path is None:
            config_path = default_config_path()

        if config_path and os.path.isfile(config_path):
            try:
                with open(config_path, 'r', encoding='utf-8') as file:
                    user_config = yaml.safe_load(file) or {}
                    # Validate before merging
                    self._validate_config_section(user_config, self.schema)
                    self.deep_update(self.config, user_config)
            except yaml.YAMLError as e:
                logger.warning(f"Error in configuration file {config_path}: {e}. Using default configuration.")

    @classmethod
    def save_config(cls, config_path=None):
        """Save the current configuration to a YAML file (atomic write with retries)."""
        instance = cls.get_instance()
        filepath = Path(config_path) if config_path else default_config_path()
        filepath.parent.mkdir(parents=True, exist_ok=True)
        temp_path = filepath.with_suffix('.tmp')

        # Write to temp file first
        with open(temp_path, 'w', encoding='utf-8') as file:
            yaml.dump(instance.config, file, default_flow_style=False)
            file.flush()
            os.fsync(file.fileno())  # Ensure it's on disk

        # Try to replace the original file, with retries for Windows file locks
        max_retries = 3
        retry_delay = 0.1
        for attempt in range(max_retries):
            try:
                temp_path.replace(filepath)  # Atomic rename
                break
            except PermissionError as e:
                if attempt < max_retries - 1:
                    time.sleep(retry_delay)
                    retry_delay *= 2  # Exponential backoff
                else:
                    temp_path.unlink(missing_ok=True)
                    raise RuntimeError(f"Failed to save config due to file lock: {e}")

    @classmethod
    def reload_config(cls, config_path=None):
        """
        Reload the configuration from the file.
        """
        instance = cls.get_instance()
        instance.config = instance.load_default_config()
        instance.load_user_config(config_path)


class TextProcessor:
    """Cleans transcribed text before it reaches the transcript."""

    FILLERS = [
        r'\bum+\b', r'\buh+\b', r'\bah+\b', r'\beh+\b',
        r'\bhmm+\b', r'\bmm+\b', r'\bhm+\b',
    ]

    def __init__(self, vocabulary=None, remove_fillers: bool = False):
        # wrong spelling -> correct spelling
        self.vocabulary = dict(vocabulary or {})
        self.remove_fillers = remove_fillers

    @classmethod
    def from_config(cls) -> 'TextProcessor':
        section = ConfigManager.get_config_section('post_processing')
        return cls(
            vocabulary=section.get('vocabulary') or {},
            remove_fillers=bool(section.get('remove_filler_words', False)),
        )

    def apply_vocabulary(self, text):
        """Apply configured spelling corrections (case-insensitive, whole words)."""
        for wrong, correct in self.vocabulary.items():
            pattern = r'\b' + re.escape(wrong) + r'\b'
            text = re.sub(pattern, correct, text, flags=re.IGNORECASE)
        return text

    @classmethod
    def remove_filler_words(cls, text):
        """Remove common filler words."""
        for filler in cls.FILLERS:
            text = re.sub(filler, '', text, flags=re.IGNORECASE)

        # Clean up resulting issues
        text = re.sub(r'\s+', ' ', text)  # Multiple spaces to single
        text = re.sub(r'\s+([,.?!])', r'\1', text)  # Space before punctuation
        text = re.sub(r'([,.?!])\s*\1+', r'\1', text)  # Duplicate punctuation
        text = re.sub(r'^\s*,\s*', '', text)  # Leading comma
        return text.strip()

    def process(self, text):
        """Apply all post-processing steps. Returns "" for blank input."""
        if not text or not text.strip():
            return ""

        text = text.strip()
        if self.remove_fillers:
            text = self.remove_filler_words(text)
        text = self.apply_vocabulary(text)
        return text.strip()
