"""Action handlers and the registry that maps type tags onto them.

New action kinds subclass :class:`~reactor.actions.base.BaseAction`, add a
member to :class:`~reactor.models.ActionType` and register here.
"""
from __future__ import annotations

from typing import Dict, Optional, Type

from ..exceptions import UnknownActionType
from ..models import ActionInfo, ActionType
from .base import BaseAction, render_template
from .ci_call import CiCallAction
from .shell import ShellAction

ACTION_TYPES: Dict[ActionType, Type[BaseAction]] = {
    ActionType.CI_CALL: CiCallAction,
    ActionType.SHELL: ShellAction,
}


def resolve_action_type(tag: str, *, project: Optional[str] = None) -> ActionType:
    try:
        return ActionType(tag)
    except ValueError:
        raise UnknownActionType(tag, project=project) from None


def create_action(info: ActionInfo) -> BaseAction:
    """Instantiate and bind the handler registered for ``info.type``."""
    action_cls = ACTION_TYPES.get(info.type)
    if action_cls is None:
        raise UnknownActionType(info.type.value, project=info.project)
    action = action_cls()
    action.load(info)
    return action


__all__ = [
    "ACTION_TYPES",
    "BaseAction",
    "CiCallAction",
    "ShellAction",
    "create_action",
    "render_template",
    "resolve_action_type",
]
