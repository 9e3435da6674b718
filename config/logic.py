import collections.abc
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from config.loader import load_config
from config.models import Config
from utils.errors import ConfigError
from utils.logger import logger

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"
USER_CONFIG_DIR = Path.home() / ".aireview"
USER_CONFIG_PATH = USER_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_FILENAME = ".aireview.yaml"

# provider -> action input carrying its API key
PROVIDER_KEY_INPUTS = {
    "openai": "openai-api-key",
    "anthropic": "anthropic-api-key",
    "openrouter": "openrouter-api-key",
}

STRING_INPUTS = {
    "github-token": ("github", "token"),
    "ai-provider": ("model", "provider"),
    "model": ("model", "name"),
    "review-level": ("review", "review_level"),
    "language-hints": ("review", "language_hints"),
}

_TRUE_VALUES = ("true", "True", "TRUE")
_FALSE_VALUES = ("false", "False", "FALSE")


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merges two dictionaries.
    Arrays are replaced, not merged.
    """
    for key, value in source.items():
        if isinstance(value, collections.abc.Mapping) and key in target and isinstance(target[key], collections.abc.Mapping):
            target[key] = deep_merge(dict(target[key]), value)
        else:
            target[key] = value
    return target


def find_project_root(start_dir: Path = Path(".")) -> Optional[Path]:
    """
    Finds the project root by searching upwards for a .git directory or pyproject.toml.
    """
    d = start_dir.resolve()
    while d != d.parent:
        if (d / ".git").is_dir() or (d / "pyproject.toml").is_file():
            return d
        d = d.parent
    return None


def find_project_config() -> Optional[Path]:
    """
    Finds the project-specific configuration file (.aireview.yaml) in the project root.
    """
    project_root = find_project_root()
    if project_root:
        project_config_path = project_root / PROJECT_CONFIG_FILENAME
        if project_config_path.is_file():
            return project_config_path
    return None


def get_input(name: str, environ: Mapping[str, str]) -> str:
    """
    Reads a GitHub Action input. The runner exposes `max-files` as `INPUT_MAX-FILES`;
    `INPUT_MAX_FILES` is accepted too for shells that cannot export hyphenated names.
    """
    key = f"INPUT_{name.replace(' ', '_').upper()}"
    value = environ.get(key)
    if value is None:
        value = environ.get(key.replace("-", "_"), "")
    return value.strip()


def _get_boolean_input(name: str, environ: Mapping[str, str]) -> Optional[bool]:
    value = get_input(name, environ)
    if not value:
        return None
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"Input '{name}' must be one of: true, True, TRUE, false, False, FALSE")


def load_action_inputs(
    environ: Optional[Mapping[str, str]] = None,
    provider: Optional[str] = None,
    provider_override: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Translates GitHub Action inputs (INPUT_* environment variables) into a partial
    config dictionary. Unset inputs are omitted so lower layers keep their values.

    Args:
        environ: Environment to read from, defaults to os.environ.
        provider: Provider chosen by the lower config layers, used to pick the API key
            input when `ai-provider` is not given.
        provider_override: Provider forced from the command line; beats `ai-provider`
            when picking the API key input.
    """
    environ = os.environ if environ is None else environ
    sections: Dict[str, Dict[str, Any]] = {"model": {}, "review": {}, "github": {}}

    # plain string inputs: input name -> (section, key)
    for name, (section, key) in STRING_INPUTS.items():
        value = get_input(name, environ)
        if value:
            sections[section][key] = value

    model, review = sections["model"], sections["review"]
    selected = provider_override or model.get("provider") or provider or "openai"
    key_input = PROVIDER_KEY_INPUTS.get(selected)
    api_key = get_input(key_input, environ) if key_input else ""
    if api_key:
        model["api_key"] = api_key
    base_url = get_input("openrouter-base-url", environ)
    if selected == "openrouter" and base_url:
        model["base_url"] = base_url

    max_files = get_input("max-files", environ)
    if max_files:
        try:
            review["max_files"] = int(max_files)
        except ValueError as e:
            raise ConfigError(f"Max files must be an integer, got '{max_files}'") from e

    patterns = [p.strip() for p in get_input("exclude-patterns", environ).split(",") if p.strip()]
    if patterns:
        review["exclude_patterns"] = patterns

    custom_prompts = get_input("custom-prompts", environ)
    if custom_prompts:
        try:
            parsed = json.loads(custom_prompts)
        except json.JSONDecodeError as e:
            raise ConfigError("Custom prompts must be valid JSON") from e
        if not isinstance(parsed, dict):
            raise ConfigError("Custom prompts must be a JSON object")
        review["custom_prompts"] = parsed

    for name in ("enable-security-review", "enable-performance-review", "enable-best-practices"):
        flag = _get_boolean_input(name, environ)
        if flag is not None:
            review[name.replace("-", "_")] = flag

    return {section: values for section, values in sections.items() if values}


def load_and_merge_configs(
    custom_config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """
    Loads all configurations (default, user, project, action inputs, CLI flags) and
    merges them. A custom config path replaces the file layers; action inputs and CLI
    flags still apply on top, in that order.
    """
    config_paths: List[Path] = []

    # 1. Default config
    if DEFAULT_CONFIG_PATH.is_file():
        config_paths.append(DEFAULT_CONFIG_PATH)
    else:
        raise ConfigError("Default configuration file not found.")

    # 2. User config
    if USER_CONFIG_PATH.is_file():
        config_paths.append(USER_CONFIG_PATH)

    # 3. Project config
    project_config_path = find_project_config()
    if project_config_path:
        config_paths.append(project_config_path)

    # If a custom config path is provided via CLI, it has the highest precedence among files.
    if custom_config_path:
        path = Path(custom_config_path)
        if not path.is_file():
            raise ConfigError(f"Custom config file not found at: {custom_config_path}")
        config_paths = [path]  # It overrides all others
        logger.info(f"Using custom configuration from: {custom_config_path}")

    merged_config: Dict[str, Any] = {}
    for path in config_paths:
        logger.info(f"Loading configuration from: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                merged_config = deep_merge(merged_config, load_config(f))
        except (OSError, ConfigError) as e:
            logger.warning(f"Could not load or parse config at {path}: {e}")

    cli_overrides = cli_overrides or {}
    cli_provider = cli_overrides.get("model", {}).get("provider")

    # 4. GitHub Action inputs
    provider = merged_config.get("model", {}).get("provider")
    merged_config = deep_merge(
        merged_config,
        load_action_inputs(environ, provider=provider, provider_override=cli_provider),
    )

    # 5. CLI flags
    merged_config = deep_merge(merged_config, cli_overrides)

    try:
        final_config = Config(**merged_config)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e

    logger.debug(f"Final merged config: {final_config.model_dump_json(indent=2, exclude={'model': {'api_key'}, 'github': {'token'}})}")
    return final_config
