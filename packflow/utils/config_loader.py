import json
import os
import re
from typing import Any, Dict

import yaml

from packflow.utils.logging import logger

# Pattern to match ${VAR} or ${env:VAR}
ENV_PATTERN = re.compile(r"\$\{(?:env:)?([A-Za-z0-9_]+)\}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override dictionary into base dictionary.

    Dicts are merged recursively, the ``mods`` list is appended, everything
    else is overwritten by the override.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        elif key == "mods" and isinstance(value, list) and isinstance(result.get(key), list):
            logger.debug("Appending mods list", existing_count=len(result[key]), new_count=len(value))
            result[key] = result[key] + value
        else:
            if key in result:
                logger.debug("Overwriting key during merge", key=key)
            result[key] = value
    return result


def substitute_env(content: str, source: str = "<string>") -> str:
    """Replace ``${VAR}`` references with environment values.

    Raises:
        ValueError: If a referenced variable is not set
    """

    def replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            logger.error("Missing required environment variable", variable=var_name, file=source)
            raise ValueError(f"Missing environment variable: {var_name}")
        logger.debug("Environment variable substituted", variable=var_name, length=len(value))
        return value

    return ENV_PATTERN.sub(replace_env, content)


def load_yaml_with_env(path: str) -> Dict[str, Any]:
    """Load a YAML file with environment variable substitution and imports.

    Supports:
    - ${VAR_NAME} substitution
    - 'imports' list of paths relative to the importing file

    Args:
        path: Path to YAML file

    Returns:
        Parsed dictionary (merged with imports)

    Raises:
        FileNotFoundError: If the file or an import does not exist
        ValueError: If an environment variable is missing
        yaml.YAMLError: If YAML parsing fails
    """
    logger.debug("Loading YAML configuration", path=path)

    if not os.path.exists(path):
        logger.error("Configuration file not found", path=path)
        raise FileNotFoundError(f"YAML file not found: {path}")

    abs_path = os.path.abspath(path)
    base_dir = os.path.dirname(abs_path)

    with open(abs_path, "r", encoding="utf-8") as f:
        content = substitute_env(f.read(), source=abs_path)

    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.error("YAML parsing failed", path=abs_path, error=str(e))
        raise

    imports = data.pop("imports", [])
    if isinstance(imports, str):
        imports = [imports]

    for import_path in imports:
        full_import_path = (
            import_path if os.path.isabs(import_path) else os.path.join(base_dir, import_path)
        )
        if not os.path.exists(full_import_path):
            raise FileNotFoundError(f"Imported YAML file not found: {full_import_path}")

        logger.debug("Merging imported configuration", import_path=full_import_path)
        data = _deep_merge(data, load_yaml_with_env(full_import_path))

    return data


def load_document(path: str) -> Dict[str, Any]:
    """Load a JSON or YAML document, chosen by file extension."""
    if path.lower().endswith((".yaml", ".yml")):
        return load_yaml_with_env(path)

    if not os.path.exists(path):
        raise FileNotFoundError(f"Document not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
