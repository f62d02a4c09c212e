# reactor/actions/base.py
from __future__ import annotations

import abc
import asyncio
import logging
import re
from typing import ClassVar, Dict, Mapping, Optional, Tuple

from ..exceptions import ActionEffectFailure, InvalidActionRecord
from ..models import ActionInfo, ActionType, Event

logger = logging.getLogger(__name__)

_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template: str, fields: Mapping[str, str]) -> str:
    """Replace ``{{ name }}`` placeholders; unknown names render empty."""
    return _PATTERN.sub(lambda m: fields.get(m.group(1), ""), template)


def compact_placeholders(template: str) -> str:
    """Rewrite ``{{ name }}`` as ``{{name}}`` so shell-style splitting keeps it whole."""
    return _PATTERN.sub(lambda m: "{{" + m.group(1) + "}}", template)


class BaseAction(abc.ABC):
    """
    Match-then-act handler bound to exactly one :class:`ActionInfo`.

    Subclasses declare their ``action_type`` and ``required_params`` and
    implement :meth:`perform`. Failures of the effect are reported by raising
    :class:`ActionEffectFailure`; :meth:`on_event` logs them and never lets
    them escape into the dispatch loop.
    """

    action_type: ClassVar[ActionType]
    required_params: ClassVar[Tuple[str, ...]] = ()

    def __init__(self) -> None:
        self._info: Optional[ActionInfo] = None

    # ------------------------------------------------------------------ #
    def load(self, info: ActionInfo) -> None:
        if self._info is not None:
            raise RuntimeError(f"{type(self).__name__} is already bound to project '{self._info.project}'")
        if info.type is not self.action_type:
            raise InvalidActionRecord(
                f"{type(self).__name__} cannot handle action type '{info.type.value}'",
                key_path=f"{info.project}.action.type",
                project=info.project,
            )
        for name in self.required_params:
            if not info.params.get(name):
                raise InvalidActionRecord(
                    f"'{info.type.value}' action requires parameter '{name}'",
                    key_path=f"{info.project}.action.{name}",
                    project=info.project,
                )
        self._configure(info)
        self._info = info

    def describe(self) -> ActionInfo:
        if self._info is None:
            raise RuntimeError(f"{type(self).__name__} has not been loaded")
        return self._info

    def matches(self, event: Event) -> bool:
        info = self.describe()
        criteria = (
            (info.project, event.project),
            (info.package, event.package),
            (info.status, event.status),
            (info.architecture, event.arch),
        )
        return all(not wanted or wanted == got for wanted, got in criteria)

    async def on_event(self, event: Event) -> bool:
        if not self.matches(event):
            return False

        info = self.describe()
        logger.info(
            "Action '%s' matched %s/%s [%s] status=%s",
            info.type.value, event.project, event.package, event.arch, event.status,
        )
        try:
            await self.perform(event)
        except ActionEffectFailure as exc:
            logger.error("Action '%s' for project '%s' failed: %s", info.type.value, info.project, exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Action '%s' for project '%s' raised: %s", info.type.value, info.project, exc)
        return True

    # ------------------------------------------------------------------ #
    def _configure(self, info: ActionInfo) -> None:
        """Hook for subclasses to precompute state from ``info.params``."""

    @abc.abstractmethod
    async def perform(self, event: Event) -> None: ...

    def __repr__(self) -> str:  # pragma: no cover
        if self._info is None:
            return f"{type(self).__name__}(unloaded)"
        return f"{type(self).__name__}(project={self._info.project!r})"


def prefixed_params(params: Mapping[str, str], prefix: str) -> Dict[str, str]:
    return {k[len(prefix):]: v for k, v in params.items() if k.startswith(prefix) and len(k) > len(prefix)}
