# reactor/actions/shell.py
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
from typing import Dict, List, Optional

from ..exceptions import ActionEffectFailure, InvalidActionRecord
from ..models import ActionInfo, ActionType, Event
from .base import BaseAction, compact_placeholders, render_template

logger = logging.getLogger(__name__)

_ENV_FIELDS = ("project", "package", "status", "arch", "routing_key")
_STDERR_TAIL = 500


class ShellAction(BaseAction):
    """
    Runs a local command when an event matches.

    ``cmd`` is split into arguments first and each argument is rendered
    afterwards, so event values can never add or split arguments. The event
    fields are also exported as ``REACTOR_PROJECT``, ``REACTOR_PACKAGE`` and
    so on.
    """

    action_type = ActionType.SHELL
    required_params = ("cmd",)

    def __init__(self) -> None:
        super().__init__()
        self.argv: List[str] = []
        self.cwd: Optional[str] = None

    def _configure(self, info: ActionInfo) -> None:
        try:
            self.argv = shlex.split(compact_placeholders(info.params["cmd"]))
        except ValueError as exc:
            raise InvalidActionRecord(
                f"cmd cannot be parsed: {exc}",
                key_path=f"{info.project}.action.cmd",
                project=info.project,
            ) from None
        if not self.argv:
            raise InvalidActionRecord(
                "cmd is empty", key_path=f"{info.project}.action.cmd", project=info.project
            )
        self.cwd = info.params.get("cwd") or None

    def build_command(self, event: Event) -> List[str]:
        fields = event.template_fields()
        return [render_template(arg, fields) for arg in self.argv]

    @staticmethod
    def build_environment(event: Event) -> Dict[str, str]:
        fields = event.template_fields()
        env = dict(os.environ)
        env.update({f"REACTOR_{name.upper()}": fields[name] for name in _ENV_FIELDS})
        return env

    async def perform(self, event: Event) -> None:
        argv = self.build_command(event)
        logger.debug("Executing command: %s", " ".join(shlex.quote(a) for a in argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.cwd,
                env=self.build_environment(event),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ActionEffectFailure(f"Unable to start '{argv[0]}': {exc}") from exc

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
                logger.warning("Command '%s' (pid %d) killed on cancellation", argv[0], proc.pid)
            raise

        if stdout:
            logger.debug("'%s' stdout: %s", argv[0], stdout.decode("utf-8", errors="replace").strip())
        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip()[-_STDERR_TAIL:]
            raise ActionEffectFailure(f"Command '{argv[0]}' exited with status {proc.returncode}: {err}")
        logger.info("Command '%s' finished with status 0", argv[0])
