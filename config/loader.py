import os
import re
import yaml
from typing import Any, Dict, IO

from utils.errors import ConfigError

# ${VAR} or ${VAR:-fallback}
ENV_VAR_MATCHER = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _substitute(match: re.Match) -> str:
    env_var, fallback = match.group(1), match.group(2)
    replacement = os.getenv(env_var)
    if replacement is None:
        if fallback is None:
            raise ConfigError(f"Environment variable '{env_var}' not found for substitution in config.")
        return fallback
    return replacement


def _env_var_constructor(loader: yaml.SafeLoader, node: yaml.ScalarNode) -> str:
    """
    Substitutes environment variables inside a scalar, e.g. `token: ${GITHUB_TOKEN}`
    or `api_url: ${GITHUB_API_URL:-https://api.github.com}`.
    """
    value = loader.construct_scalar(node)
    return ENV_VAR_MATCHER.sub(_substitute, value)


class EnvVarLoader(yaml.SafeLoader):
    """SafeLoader that expands ${VAR} references. Subclassed so SafeLoader itself is untouched."""


EnvVarLoader.add_constructor("!env", _env_var_constructor)
EnvVarLoader.add_implicit_resolver("!env", ENV_VAR_MATCHER, None)


def load_config(config_file: IO[str]) -> Dict[str, Any]:
    """
    Loads a YAML configuration file.

    Args:
        config_file: A file-like object representing the YAML configuration.

    Returns:
        A dictionary containing the configuration.

    Raises:
        ConfigError: If the file cannot be parsed or is not a mapping.
    """
    try:
        config = yaml.load(config_file, Loader=EnvVarLoader)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}") from e
    if not config:
        return {}
    if not isinstance(config, dict):
        raise ConfigError("Configuration root must be a mapping.")
    return config
