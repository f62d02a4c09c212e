# FILE: tests/reactor/test_actions.py
import logging
import sys

import httpx
import pytest

from reactor.actions import ACTION_TYPES, CiCallAction, ShellAction, create_action, render_template, resolve_action_type
from reactor.exceptions import InvalidActionRecord, UnknownActionType
from reactor.models import ActionType


# --------------------------------------------------------------------- #
# Contract
# --------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_full_match_triggers_exactly_one_effect(recording_action, make_event):
    action = recording_action()
    assert await action.on_event(make_event()) is True
    assert len(action.performed) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [
    ("project", "proj2"),
    ("package", "pkgB"),
    ("status", "failed"),
    ("arch", "aarch64"),
])
async def test_any_differing_field_triggers_nothing(recording_action, make_event, field, value):
    action = recording_action()
    assert await action.on_event(make_event(**{field: value})) is False
    assert action.performed == []


@pytest.mark.asyncio
async def test_empty_criteria_match_anything(recording_action, make_event):
    action = recording_action(package="", status="", architecture="")
    assert await action.on_event(make_event(package="other", status="failed", arch="s390x")) is True
    assert await action.on_event(make_event(project="proj2")) is False


@pytest.mark.asyncio
async def test_non_matching_events_are_quiet(recording_action, make_event, caplog):
    action = recording_action()
    with caplog.at_level(logging.INFO):
        await action.on_event(make_event(project="elsewhere"))
    assert caplog.records == []


def test_load_binds_once(recording_action, make_info):
    action = recording_action()
    assert action.describe().project == "proj1"
    with pytest.raises(RuntimeError):
        action.load(make_info(project="proj2"))


def test_describe_before_load_fails():
    with pytest.raises(RuntimeError):
        ShellAction().describe()


def test_variant_rejects_foreign_type(make_info):
    with pytest.raises(InvalidActionRecord):
        ShellAction().load(make_info(type=ActionType.CI_CALL, params={"url": "https://ci"}))


def test_registry_covers_every_type(make_info):
    assert set(ACTION_TYPES) == set(ActionType)
    assert isinstance(create_action(make_info()), ShellAction)
    assert isinstance(create_action(make_info(type=ActionType.CI_CALL, params={"url": "https://ci"})), CiCallAction)


def test_unknown_tag_is_a_typed_error():
    with pytest.raises(UnknownActionType) as exc_info:
        resolve_action_type("webhook", project="proj1")
    assert exc_info.value.action_type == "webhook"
    assert exc_info.value.project == "proj1"


def test_render_template():
    fields = {"project": "devel:tools", "package": "make"}
    assert render_template("{{project}}/{{ package }}/{{ missing }}", fields) == "devel:tools/make/"


# --------------------------------------------------------------------- #
# CiCallAction
# --------------------------------------------------------------------- #
def _ci_action(make_info, transport, **params):
    action = CiCallAction(transport=transport)
    action.load(make_info(type=ActionType.CI_CALL, params=params))
    return action


@pytest.mark.asyncio
async def test_ci_call_sends_rendered_request(make_info, make_event):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    action = _ci_action(
        make_info, httpx.MockTransport(handler),
        url="https://ci.example.com/job/{{ package }}/buildWithParameters?ARCH={{ arch }}",
        body='{"project": "{{ project }}"}',
        **{"content-type": "application/json", "header.X-Source": "{{ routing_key }}",
           "user": "bot", "token": "secret"},
    )
    assert await action.on_event(make_event()) is True

    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://ci.example.com/job/pkgA/buildWithParameters?ARCH=x86_64"
    assert request.content == b'{"project": "proj1"}'
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Source"] == "opensuse.obs.package.build_success"
    assert request.headers["Authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_ci_call_encodes_event_values_in_url(make_info, make_event):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    action = CiCallAction(transport=httpx.MockTransport(handler))
    action.load(make_info(package="", type=ActionType.CI_CALL, params={
        "url": "https://ci.example.com/job/build?PKG={{ package }}&ARCH={{ arch }}",
        "body": "{{ package }}",
    }))
    assert await action.on_event(make_event(package="libstdc++ &ARCH=evil")) is True

    request = seen[0]
    assert request.url.params["PKG"] == "libstdc++ &ARCH=evil"
    assert request.url.params.get_list("ARCH") == ["x86_64"]
    assert request.content == b"libstdc++ &ARCH=evil"


@pytest.mark.asyncio
async def test_ci_call_failure_is_logged_not_raised(make_info, make_event, caplog):
    action = _ci_action(make_info, httpx.MockTransport(lambda request: httpx.Response(500)),
                        url="https://ci.example.com/hook", method="put")
    with caplog.at_level(logging.ERROR):
        assert await action.on_event(make_event()) is True
    assert "PUT https://ci.example.com/hook returned HTTP 500" in caplog.text


@pytest.mark.asyncio
async def test_ci_call_transport_error_is_logged(make_info, make_event, caplog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    action = _ci_action(make_info, httpx.MockTransport(handler), url="https://ci.example.com/hook")
    with caplog.at_level(logging.ERROR):
        await action.on_event(make_event())
    assert "connection refused" in caplog.text


@pytest.mark.parametrize("timeout", ["soon", "-1"])
def test_ci_call_rejects_bad_timeout(make_info, timeout):
    with pytest.raises(InvalidActionRecord) as exc_info:
        _ci_action(make_info, None, url="https://ci", timeout=timeout)
    assert exc_info.value.key_path == "proj1.action.timeout"


# --------------------------------------------------------------------- #
# ShellAction
# --------------------------------------------------------------------- #
def _shell_action(make_info, **params):
    action = ShellAction()
    action.load(make_info(params=params))
    return action


def test_shell_arguments_are_rendered_after_splitting(make_info, make_event):
    action = _shell_action(make_info, cmd="notify.sh --pkg '{{ package }}' {{ project }}")
    event = make_event(package="evil; rm -rf /", project="proj1", status="success")
    action_for_evil = _shell_action(make_info, cmd="notify.sh --pkg '{{ package }}'")

    assert action.build_command(make_event()) == ["notify.sh", "--pkg", "pkgA", "proj1"]
    assert action_for_evil.build_command(event) == ["notify.sh", "--pkg", "evil; rm -rf /"]


def test_shell_environment_exports_event_fields(make_event):
    env = ShellAction.build_environment(make_event())
    assert env["REACTOR_PROJECT"] == "proj1"
    assert env["REACTOR_PACKAGE"] == "pkgA"
    assert env["REACTOR_STATUS"] == "success"
    assert env["REACTOR_ARCH"] == "x86_64"


@pytest.mark.parametrize("cmd", ["", "notify.sh 'unbalanced"])
def test_shell_rejects_unusable_cmd(make_info, cmd):
    with pytest.raises(InvalidActionRecord):
        _shell_action(make_info, cmd=cmd)


@pytest.mark.asyncio
async def test_shell_runs_command(make_info, make_event, tmp_path):
    marker = tmp_path / "marker"
    script = "import os, sys; open(sys.argv[1], 'w').write(os.environ['REACTOR_PACKAGE'] + ':' + sys.argv[2])"
    action = _shell_action(make_info, cmd=f"'{sys.executable}' -c \"{script}\" '{marker}' '{{{{ status }}}}'")

    assert await action.on_event(make_event()) is True
    assert marker.read_text() == "pkgA:success"


@pytest.mark.asyncio
async def test_shell_non_zero_exit_is_logged(make_info, make_event, caplog):
    action = _shell_action(make_info, cmd=f"'{sys.executable}' -c 'import sys; sys.exit(3)'")
    with caplog.at_level(logging.ERROR):
        assert await action.on_event(make_event()) is True
    assert "exited with status 3" in caplog.text


@pytest.mark.asyncio
async def test_shell_missing_executable_is_logged(make_info, make_event, caplog):
    action = _shell_action(make_info, cmd="/nonexistent/reactor-notify")
    with caplog.at_level(logging.ERROR):
        await action.on_event(make_event())
    assert "Unable to start '/nonexistent/reactor-notify'" in caplog.text
