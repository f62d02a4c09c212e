# reactor/loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from .actions import BaseAction, create_action, resolve_action_type
from .exceptions import ConfigUnreadable, InvalidActionRecord, UnknownActionType
from .models import ActionInfo, ProjectEntry

logger = logging.getLogger(__name__)


class ActionLoader:
    """
    Load an actions document: a YAML sequence of mappings keyed by project.

    ::

        - proj1:
            package: pkgA
            status: success
            arch: x86_64
            action:
              type: shell
              cmd: notify.sh {{ package }}
    """

    def __init__(self) -> None:
        self.loaded_actions: List[BaseAction] = []

    # ------------------------------------------------------------------ #
    def load_path(self, path: Path) -> List[BaseAction]:
        path = Path(path)
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise ConfigUnreadable(f"Unable to load actions: {exc}", path=str(path)) from exc

        logger.info("Loading actions from %s", path)
        return self.load_actions(self.load_document(content, source=str(path)))

    # ------------------------------------------------------------------ #
    def load_document(self, content: bytes | str, *, source: Optional[str] = None) -> List[ActionInfo]:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigUnreadable(f"Unable to read actions configuration: {exc}", path=source) from exc

        if data is None:
            logger.warning("Actions configuration %s is empty", source or "<document>")
            return []
        if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
            raise ConfigUnreadable("Actions configuration must be a sequence of mappings", path=source)

        records: List[ActionInfo] = []
        for index, entry in enumerate(data):
            for project, definition in entry.items():
                try:
                    records.append(self._parse_entry(project, definition))
                except InvalidActionRecord as exc:
                    logger.warning("Skipping entry #%d: %s", index, exc)
                except UnknownActionType as exc:
                    logger.error("Unknown action type: %s for action %s", exc.action_type, project)
        return records

    # ------------------------------------------------------------------ #
    def load_actions(self, records: Iterable[ActionInfo]) -> List[BaseAction]:
        loaded = 0
        for info in records:
            try:
                action = create_action(info)
            except InvalidActionRecord as exc:
                logger.warning("Skipping action on project '%s': %s", info.project, exc)
                continue
            except UnknownActionType as exc:
                logger.error("Unknown action type: %s for action %s", exc.action_type, info.project)
                continue

            self.loaded_actions.append(action)
            loaded += 1
            logger.debug("Loaded criteria %s matcher for project '%s'", info.type.value, info.project)

        logger.info("Loaded %d matchers", loaded)
        return list(self.loaded_actions)

    # ------------------------------------------------------------------ #
    @staticmethod
    def _parse_entry(project: Any, definition: Any) -> ActionInfo:
        if not isinstance(project, str) or not project:
            raise InvalidActionRecord("project name must be a non-empty string", key_path=repr(project))

        try:
            entry = ProjectEntry.model_validate(definition)
        except ValidationError as exc:
            err = exc.errors()[0]
            key_path = ".".join([project, *(str(part) for part in err["loc"])])
            raise InvalidActionRecord(err["msg"], key_path=key_path, project=project) from None

        if not entry.action.type:
            raise InvalidActionRecord(
                f"Action on project '{project}' with package '{entry.package}' does not have defined action type",
                key_path=f"{project}.action.type",
                project=project,
            )

        return ActionInfo(
            project=project,
            package=entry.package,
            status=entry.status,
            architecture=entry.arch,
            type=resolve_action_type(entry.action.type, project=project),
            params=entry.action.params,
        )
