# reactor/actions/ci_call.py
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import quote

import httpx

from ..exceptions import ActionEffectFailure, InvalidActionRecord
from ..models import ActionInfo, ActionType, Event
from .base import BaseAction, prefixed_params, render_template

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0
_HEADER_PREFIX = "header."


class CiCallAction(BaseAction):
    """
    Calls a CI endpoint (e.g. a Jenkins ``buildWithParameters`` URL) when an
    event matches.

    Recognised params: ``url`` (required), ``method``, ``body``,
    ``content-type``, ``user`` and ``token`` for basic auth, ``timeout`` in
    seconds and ``header.<Name>`` for extra headers. ``{{ name }}``
    placeholders in the url, body and header values are filled from the
    event. Values substituted into the url are percent-encoded; the body
    and headers get them verbatim.
    """

    action_type = ActionType.CI_CALL
    required_params = ("url",)

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__()
        self._transport = transport
        self.url: str = ""
        self.method: str = "POST"
        self.body: Optional[str] = None
        self.timeout: float = _DEFAULT_TIMEOUT
        self.headers: Dict[str, str] = {}
        self.auth: Optional[Tuple[str, str]] = None

    def _configure(self, info: ActionInfo) -> None:
        params = info.params
        self.url = params["url"]
        self.method = params.get("method", "POST").upper()
        self.body = params.get("body")

        raw_timeout = params.get("timeout")
        if raw_timeout:
            try:
                self.timeout = float(raw_timeout)
            except ValueError:
                raise InvalidActionRecord(
                    f"timeout must be a number of seconds, got '{raw_timeout}'",
                    key_path=f"{info.project}.action.timeout",
                    project=info.project,
                ) from None
            if self.timeout <= 0:
                raise InvalidActionRecord(
                    "timeout must be positive",
                    key_path=f"{info.project}.action.timeout",
                    project=info.project,
                )

        self.headers = prefixed_params(params, _HEADER_PREFIX)
        if params.get("content-type"):
            self.headers["Content-Type"] = params["content-type"]

        if params.get("user"):
            self.auth = (params["user"], params.get("token", ""))

    async def perform(self, event: Event) -> None:
        fields = event.template_fields()
        url = render_template(self.url, _url_safe(fields))
        headers = {name: render_template(value, fields) for name, value in self.headers.items()}
        content = render_template(self.body, fields) if self.body is not None else None

        logger.debug("CI call %s %s (timeout=%.1fs)", self.method, url, self.timeout)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, auth=self.auth, transport=self._transport) as client:
                resp = await client.request(self.method, url, headers=headers, content=content)
        except httpx.TimeoutException as exc:
            raise ActionEffectFailure(f"{self.method} {url} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ActionEffectFailure(f"{self.method} {url} failed: {exc}") from exc

        if not resp.is_success:
            raise ActionEffectFailure(f"{self.method} {url} returned HTTP {resp.status_code}")
        logger.info("CI call %s %s returned HTTP %d", self.method, url, resp.status_code)


def _url_safe(fields: Mapping[str, str]) -> Dict[str, str]:
    return {name: quote(value, safe="") for name, value in fields.items()}
