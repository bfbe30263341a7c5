import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

# Regex to match ${VAR:-default} or ${VAR}
INTERPOLATION_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

DEFAULT_COMPOSE_FILE = "docker-compose.yml"


class ComposeDescriptorError(RuntimeError):
    """The compose descriptor exists but cannot be used."""


class ComposeLoader(yaml.SafeLoader):
    """SafeLoader that also accepts compose merge tags such as `!reset` and `!override`."""


def _construct_tagged(loader, tag_suffix, node):
    # The tag only changes how compose merges files; keep the plain value.
    if isinstance(node, yaml.MappingNode):
        return loader.construct_mapping(node, deep=True)
    if isinstance(node, yaml.SequenceNode):
        return loader.construct_sequence(node, deep=True)
    return loader.construct_scalar(node)


yaml.add_multi_constructor("!", _construct_tagged, Loader=ComposeLoader)


def interpolate_value(value: str, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Interpolates variables in a string from `env` (falls back to the process env).
    Supports ${VAR} and ${VAR:-default}.
    """
    if not isinstance(value, str):
        return value

    def replace_match(match):
        var_name = match.group(1)
        default_value = match.group(2)
        env_val = env.get(var_name) if env is not None else None
        if env_val is None:
            env_val = os.getenv(var_name)
        if env_val is not None:
            return env_val
        return default_value if default_value is not None else ""

    return INTERPOLATION_PATTERN.sub(replace_match, value)


def interpolate_dict(data: Any, env: Optional[Mapping[str, str]] = None) -> Any:
    """Recursively interpolates strings in a dictionary or list."""
    if isinstance(data, dict):
        return {k: interpolate_dict(v, env) for k, v in data.items()}
    elif isinstance(data, list):
        return [interpolate_dict(v, env) for v in data]
    elif isinstance(data, str):
        return interpolate_value(data, env)
    else:
        return data


def compose_descriptor_path(app_dir: Path, compose_file: str = DEFAULT_COMPOSE_FILE) -> Path:
    return app_dir / compose_file


def load_compose_descriptor(
    app_dir: Path,
    compose_file: str = DEFAULT_COMPOSE_FILE,
    env: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Parses the app's compose descriptor using PyYAML and interpolates variables.
    Raises FileNotFoundError when it is missing and ComposeDescriptorError when it
    is not a YAML mapping.
    """
    compose_path = compose_descriptor_path(app_dir, compose_file)
    if not compose_path.is_file():
        raise FileNotFoundError(f"{compose_file} not found in {app_dir}")

    try:
        with open(compose_path, "r") as f:
            raw_config = yaml.load(f, Loader=ComposeLoader)
    except yaml.YAMLError as e:
        raise ComposeDescriptorError(f"Failed to parse {compose_file}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ComposeDescriptorError(f"{compose_file} is not a mapping of compose keys")
    return interpolate_dict(raw_config, env)


def _services(compose_config: Dict[str, Any]) -> Dict[str, Any]:
    services = compose_config.get("services") or {}
    if not isinstance(services, dict):
        return {}
    return services


def get_service_names(compose_config: Dict[str, Any]) -> list[str]:
    return [str(name) for name in _services(compose_config)]


def get_images(compose_config: Dict[str, Any]) -> list[str]:
    """Images referenced by services; build-only services are skipped."""
    images: list[str] = []
    for service in _services(compose_config).values():
        if not isinstance(service, dict):
            continue
        image = str(service.get("image") or "").strip()
        if image:
            images.append(image)
    return images


def get_container_names(compose_config: Dict[str, Any]) -> list[str]:
    """Explicit `container_name` values, falling back to the service name."""
    names: list[str] = []
    for service_name, service in _services(compose_config).items():
        container_name = ""
        if isinstance(service, dict):
            container_name = str(service.get("container_name") or "").strip()
        names.append(container_name or str(service_name))
    return names
