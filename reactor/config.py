from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Final, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .engine import DispatchSettings
from .exceptions import ConfigUnreadable
from .models import BusCredentials

__all__: Sequence[str] = ('ReactorConfig', 'load_config')
logger = logging.getLogger(__name__)

_LOG_LEVELS: Final = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
_RE_ENV_DEFAULT: Final[re.Pattern[str]] = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*):?-(.*?)\}')


def _interpolate_env(value: str) -> str:
    def _repl(match: re.Match[str]) -> str:
        var, default = (match.group(1), match.group(2))
        return os.getenv(var, default)

    before = value
    value = _RE_ENV_DEFAULT.sub(_repl, value)
    value = os.path.expandvars(value)

    if before != value:
        logger.debug("Env expand: '%s' → '%s'", before, value)
    elif '${' in before:
        logger.warning("Unresolved env var in '%s'", before)
    return value


def _expand_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: _expand_tree(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_expand_tree(v) for v in node]
    if isinstance(node, str):
        return _interpolate_env(node)
    return node


class ReactorConfig(BaseModel):
    bus: BusCredentials = Field(default_factory=BusCredentials, description='AMQP credentials of the build service bus')
    actions: Optional[Path] = Field(default=None, description='Path of the actions document')
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    log_level: str = Field(default='INFO', description='Root log level')

    model_config = ConfigDict(extra='forbid')

    @field_validator('log_level')
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log_level '{v}': expected one of {', '.join(_LOG_LEVELS)}")
        return level


def load_config(path: Optional[Path]=None, overrides: Optional[Dict[str, Any]]=None) -> ReactorConfig:
    """
    Build the reactor configuration from an optional YAML file.

    ``${VAR:-default}`` references in string values are resolved from the
    environment; ``overrides`` are merged over the top level of the file.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        try:
            loaded = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigUnreadable(f'Unable to read reactor configuration: {exc}', path=str(path)) from exc
        if not isinstance(loaded, dict):
            raise ConfigUnreadable('Reactor configuration must be a mapping', path=str(path))
        data = _expand_tree(loaded)
        logger.info('Loaded reactor configuration from %s', path)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        return ReactorConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigUnreadable(f'Invalid reactor configuration: {exc}', path=str(path) if path else None) from exc
