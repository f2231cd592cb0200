import os
import re

import yaml


class ConfigManager:

    @staticmethod
    def load_yaml_file(path: str) -> dict:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def parse_env_var_with_default(value: str) -> bool | int | float | str | None:
        match = re.match(r"\$\{(\w+)(?::-([^\}]*))?\}", value)  # Match ${VAR_NAME:-default} or ${VAR_NAME}
        if not match:
            return value

        var_name = match.group(1)
        default_value = match.group(2)

        resolved_value = os.getenv(var_name) or default_value
        if resolved_value is not None:
            return ConfigManager._parse_value_by_type(resolved_value)
        return None

    @staticmethod
    def resolve_env_vars(obj):
        """Recursively parse environment variables in config"""
        if isinstance(obj, dict):
            return {k: ConfigManager.resolve_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [ConfigManager.resolve_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            return ConfigManager.parse_env_var_with_default(obj)
        else:
            return obj

    @staticmethod
    def load_yaml_with_env(path: str) -> dict:
        return ConfigManager.resolve_env_vars(ConfigManager.load_yaml_file(path))

    @staticmethod
    def _parse_value_by_type(value: str) -> bool | int | float | str:
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            return value
