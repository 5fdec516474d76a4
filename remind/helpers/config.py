"""
Application configuration, loaded once at import time.

Sources, the first one found wins:
1. The JSON document in the `CONFIG_JSON` env var
2. The YAML file at the path in the `CONFIG_PATH` env var
3. The nearest `config.yaml`, looked up from this package upwards

Single values can still be overridden with env vars, see `RootModel`.
"""

from os import environ

import yaml
from dotenv import find_dotenv
from pydantic import ValidationError

from remind.helpers.config_models.root import RootModel

_JSON_ENV = "CONFIG_JSON"
_PATH_ENV = "CONFIG_PATH"
_DEFAULT_FILE = "config.yaml"


def _config_file() -> str:
    explicit = environ.get(_PATH_ENV)
    if explicit:
        return explicit

    path = find_dotenv(filename=_DEFAULT_FILE)
    if not path:
        raise ValueError(
            f'Cannot find config file "{_DEFAULT_FILE}", set "{_JSON_ENV}" or "{_PATH_ENV}"'
        )
    return path


def load_config() -> RootModel:
    if _JSON_ENV in environ:
        config = RootModel.model_validate_json(environ[_JSON_ENV])
        print(f'Config loaded from env "{_JSON_ENV}"')  # noqa: T201
        return config

    path = _config_file()
    with open(
        encoding="utf-8",
        file=path,
    ) as f:
        # An empty file is valid, every section has defaults
        # Built through the constructor, so env vars override the file values
        config = RootModel(**(yaml.safe_load(f) or {}))
    print(f'Config loaded from file "{path}"')  # noqa: T201
    return config


def _explain(error: ValidationError) -> str:
    """
    One line per invalid value, with its dotted location.
    """
    lines = ["Config values are not valid:"]
    for i, detail in enumerate(error.errors(), start=1):
        location = ".".join(str(part) for part in detail["loc"])
        lines.append(
            f"{i}. At {location}: {detail['msg']} (input value: {detail['input']})"
        )
    return "\n".join(lines)


try:
    CONFIG = load_config()
except ValidationError as e:
    raise ValueError(_explain(e)) from e
