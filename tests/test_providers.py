import io
import json
import subprocess
import sys
from unittest import mock

import pytest

from draftkit import providers
from draftkit.providers import (
    CommandError,
    ProviderError,
    SetUpCmd,
    az_acr_exists,
    az_aks_exists,
    az_app_exists,
    check_az_cli_installed,
    get_az_cli_version,
    get_current_az_subscription_id,
    has_gh_cli,
    initiate_azure_oidc_flow,
    is_logged_in_to_az,
    is_logged_in_to_gh,
    is_subscription_id_valid,
    log_in_to_gh,
)


class FakeCli:
    """Stands in for subprocess.run, answering each command through a handler."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def __call__(self, args, **kwargs):
        args = list(args)
        self.calls.append(args)
        result = self.handler(args)
        if isinstance(result, BaseException):
            raise result
        code, out = result
        return subprocess.CompletedProcess(args, code, stdout=out.encode("utf-8"))


@pytest.fixture
def cli(monkeypatch):
    def install(handler):
        fake = FakeCli(handler)
        monkeypatch.setattr(subprocess, "run", fake)
        return fake

    return install


class RecordingSpinner:
    def __init__(self):
        self.events = []

    def start(self):
        self.events.append("start")

    def stop(self):
        self.events.append("stop")


def test_logged_in_to_az_false_when_logged_out(cli):
    cli(lambda args: (1, "Please run 'az login'"))
    assert is_logged_in_to_az() is False


def test_logged_in_to_az_false_when_az_missing(cli):
    cli(lambda args: FileNotFoundError("az"))
    assert is_logged_in_to_az() is False


def test_logged_in_to_az_true(cli):
    fake = cli(lambda args: (0, '"object"'))
    assert is_logged_in_to_az() is True
    assert fake.calls[0][:4] == ["az", "ad", "signed-in-user", "show"]


def test_logged_in_to_gh_false_prints_status(cli, capsys):
    cli(lambda args: (1, "You are not logged into any GitHub hosts."))
    assert is_logged_in_to_gh() is False
    assert "not logged into" in capsys.readouterr().out


def test_logged_in_to_gh_true(cli):
    cli(lambda args: (0, "Logged in"))
    assert is_logged_in_to_gh() is True


def test_has_gh_cli(cli):
    cli(lambda args: (0, "Work seamlessly with GitHub"))
    assert has_gh_cli() is True


def test_has_gh_cli_missing_raises(cli):
    cli(lambda args: FileNotFoundError("gh"))
    with pytest.raises(ProviderError, match="github cli is required"):
        has_gh_cli()


def test_log_in_to_gh_failure_raises(cli):
    cli(lambda args: (1, ""))
    with pytest.raises(CommandError) as info:
        log_in_to_gh()
    assert info.value.cmd == ["gh", "auth", "login"]


def test_get_az_cli_version(cli):
    cli(lambda args: (0, json.dumps({"azure-cli": "2.40.0", "extensions": {}})))
    assert get_az_cli_version() == "2.40.0"


def test_get_az_cli_version_failure(cli):
    cli(lambda args: (1, ""))
    with pytest.raises(ProviderError, match="unable to obtain az cli version"):
        get_az_cli_version()


def _az_version_handler(version):
    def handler(args):
        if args[:2] == ["az", "version"]:
            return 0, json.dumps({"azure-cli": version})
        return 0, ""

    return handler


def test_check_az_cli_installed_recent_version(cli):
    fake = cli(_az_version_handler("2.40.0"))
    assert check_az_cli_installed() is None
    assert fake.calls[0] == ["az"]
    assert ["az", "upgrade", "-y"] not in fake.calls
    assert get_az_cli_version() == "2.40.0"


def test_check_az_cli_installed_missing(cli):
    cli(lambda args: FileNotFoundError("az"))
    with pytest.raises(ProviderError, match="not installed"):
        check_az_cli_installed()


def test_check_az_cli_old_version_declined(cli, monkeypatch):
    cli(_az_version_handler("2.30.0"))
    monkeypatch.setattr(sys, "stdin", io.StringIO("no\n"))
    monkeypatch.setattr(sys, "stdout", io.StringIO())
    with pytest.raises(ProviderError, match="at least 2.37.0"):
        check_az_cli_installed()


def test_check_az_cli_old_version_upgraded(cli, monkeypatch):
    fake = cli(_az_version_handler("2.30.0"))
    monkeypatch.setattr(sys, "stdin", io.StringIO("yes\n"))
    out = io.StringIO()
    monkeypatch.setattr(sys, "stdout", out)
    assert check_az_cli_installed() is None
    assert ["az", "upgrade", "-y"] in fake.calls
    assert "1) yes" in out.getvalue()


def test_subscription_id_empty():
    with pytest.raises(ProviderError, match="subscriptionId cannot be empty"):
        is_subscription_id_valid("")


def test_subscription_id_not_found(cli):
    cli(lambda args: (0, '""'))
    with pytest.raises(ProviderError, match="subscription not found"):
        is_subscription_id_valid("sub-1")


def test_subscription_id_valid_queries_account(cli):
    fake = cli(lambda args: (0, '"sub-1"'))
    assert is_subscription_id_valid("sub-1") is None
    assert fake.calls == [["az", "account", "show", "-s", "sub-1", "--query", "id"]]


@pytest.mark.parametrize(
    "code, out, expected",
    [(0, '["app-id"]', True), (0, "[]", False), (0, "not json", False), (1, "", False)],
)
def test_az_app_exists(cli, code, out, expected):
    fake = cli(lambda args: (code, out))
    assert az_app_exists("my-app") is expected
    assert "displayName eq 'my-app'" in fake.calls[0]


@pytest.mark.parametrize(
    "code, out, expected",
    [(0, '[{"name": "reg"}]', True), (0, "[]", False), (1, "", False)],
)
def test_az_acr_exists(cli, code, out, expected):
    fake = cli(lambda args: (code, out))
    assert az_acr_exists("reg") is expected
    assert "[?name=='reg']" in fake.calls[0]


def test_az_aks_exists(cli):
    fake = cli(lambda args: (0, ""))
    assert az_aks_exists("cluster", "rg") is True
    assert fake.calls[0] == ["az", "aks", "browse", "-g", "rg", "--name", "cluster"]


def test_az_aks_missing(cli):
    cli(lambda args: (1, "not found"))
    assert az_aks_exists("cluster", "rg") is False


def test_service_principal_exists_records_object_id(cli):
    cli(lambda args: (0, '"sp-object-id"'))
    sc = SetUpCmd(app_id="app-id")
    assert sc.service_principal_exists() is True
    assert sc.sp_object_id == "sp-object-id"


def test_service_principal_missing(cli):
    cli(lambda args: (1, ""))
    sc = SetUpCmd(app_id="app-id")
    assert sc.service_principal_exists() is False
    assert sc.sp_object_id == ""


def test_create_service_principal(cli):
    fake = cli(lambda args: (0, '"sp-object-id"'))
    sc = SetUpCmd(app_id="app-id")
    sc.create_service_principal()
    assert sc.sp_object_id == "sp-object-id"
    assert fake.calls[0][:4] == ["az", "ad", "sp", "create"]


def test_create_service_principal_gives_up(cli):
    def handler(args):
        if args[:4] == ["az", "ad", "sp", "show"]:
            return 1, ""
        return 0, ""

    cli(handler)
    sc = SetUpCmd(app_id="app-id", retry_max_time=0)
    with pytest.raises(ProviderError, match="service principal not found"):
        sc.create_service_principal()


def test_validate_requires_app_name(cli):
    def handler(args):
        if args[:3] == ["az", "account", "show"]:
            return 0, '"sub-1"'
        if args[:3] == ["az", "group", "list"]:
            return 0, '[{"name": "rg"}]'
        return 0, ""

    cli(handler)
    sc = SetUpCmd(subscription_id="sub-1", resource_group_name="rg", repo="org/repo")
    with pytest.raises(ProviderError, match="invalid app name"):
        sc.validate_set_up_config()


def test_validate_missing_resource_group(cli):
    def handler(args):
        if args[:3] == ["az", "account", "show"]:
            return 0, '"sub-1"'
        return 0, "[]"

    cli(handler)
    sc = SetUpCmd(app_name="app", subscription_id="sub-1", resource_group_name="rg",
                  repo="org/repo")
    with pytest.raises(ProviderError, match='resource group "rg" not found'):
        sc.validate_set_up_config()


def test_validate_empty_resource_group(cli):
    cli(lambda args: (0, '"sub-1"'))
    sc = SetUpCmd(app_name="app", subscription_id="sub-1", repo="org/repo")
    with pytest.raises(ProviderError, match="resource group cannot be empty"):
        sc.validate_set_up_config()


def _flow_handler(state, gh_logged_in=True):
    def handler(args):
        head = args[:4]
        if args == ["gh"]:
            return 0, ""
        if args == ["gh", "auth", "status"]:
            return (0, "") if gh_logged_in else (1, "not logged in")
        if args == ["gh", "auth", "login"]:
            return 0, ""
        if args[:3] == ["gh", "repo", "view"]:
            return 0, ""
        if args[:3] == ["gh", "secret", "set"]:
            return 0, ""
        if args[:4] == ["az", "account", "show", "-s"]:
            return 0, '"sub-1"'
        if args[:4] == ["az", "account", "show", "--query"]:
            return 0, '"tenant-id"'
        if args[:3] == ["az", "group", "list"]:
            return 0, '[{"name": "rg"}]'
        if head == ["az", "ad", "app", "list"]:
            return 0, '["app-id"]' if state["created"] else "[]"
        if head == ["az", "ad", "app", "create"]:
            state["created"] = True
            return 0, '{"appId": "app-id"}'
        if head == ["az", "ad", "app", "show"]:
            return 0, '"app-object-id"'
        if head == ["az", "ad", "sp", "create"]:
            return 0, ""
        if head == ["az", "ad", "sp", "show"]:
            return 0, '"sp-object-id"'
        if args[:3] == ["az", "role", "assignment"]:
            return 0, ""
        if args[:4] == ["az", "rest", "--method", "POST"]:
            state["posted"] += 1
            return 0, ""
        if args[:4] == ["az", "rest", "--method", "GET"]:
            return 0, "[{}]" if state["posted"] else "[]"
        return 1, "unexpected"

    return handler


@mock.patch("draftkit.providers.time.sleep")
def test_initiate_azure_oidc_flow(sleep, cli):
    state = {"created": False, "posted": 0}
    fake = cli(_flow_handler(state))
    sc = SetUpCmd(app_name="app", subscription_id="sub-1", resource_group_name="rg",
                  repo="org/repo")
    spinner = RecordingSpinner()

    initiate_azure_oidc_flow(sc, spinner)

    assert spinner.events == []
    assert (sc.app_id, sc.tenant_id, sc.app_object_id, sc.sp_object_id) == (
        "app-id", "tenant-id", "app-object-id", "sp-object-id")
    assert state["posted"] == 3
    posts = [c for c in fake.calls if c[:4] == ["az", "rest", "--method", "POST"]]
    subjects = [json.loads(c[c.index("--body") + 1])["subject"] for c in posts]
    assert subjects == [
        "repo:org/repo:pull_request",
        "repo:org/repo:ref:refs/heads/main",
        "repo:org/repo:ref:refs/heads/master",
    ]
    secrets = [c for c in fake.calls if c[:3] == ["gh", "secret", "set"]]
    assert [(c[3], c[5]) for c in secrets] == [
        ("AZURE_CLIENT_ID", "app-id"),
        ("AZURE_SUBSCRIPTION_ID", "sub-1"),
        ("AZURE_TENANT_ID", "tenant-id"),
    ]
    role = next(c for c in fake.calls if c[:3] == ["az", "role", "assignment"])
    assert "/subscriptions/sub-1/resourceGroups/rg" in role
    assert "sp-object-id" in role
    sleep.assert_called_once_with(providers.CREDENTIAL_WAIT_SECONDS)


@mock.patch("draftkit.providers.time.sleep")
def test_initiate_flow_logs_in_to_gh(sleep, cli):
    state = {"created": False, "posted": 0}
    fake = cli(_flow_handler(state, gh_logged_in=False))
    sc = SetUpCmd(app_name="app", subscription_id="sub-1", resource_group_name="rg",
                  repo="org/repo")
    spinner = RecordingSpinner()
    initiate_azure_oidc_flow(sc, spinner)
    assert spinner.events == ["stop", "start"]
    assert ["gh", "auth", "login"] in fake.calls


def test_initiate_flow_existing_app(cli):
    state = {"created": True, "posted": 0}
    fake = cli(_flow_handler(state))
    sc = SetUpCmd(app_name="app", subscription_id="sub-1", resource_group_name="rg",
                  repo="org/repo")
    with pytest.raises(ProviderError, match="app already exists"):
        initiate_azure_oidc_flow(sc, RecordingSpinner())
    assert not any(c[:4] == ["az", "ad", "app", "create"] for c in fake.calls)


def test_get_current_az_subscription_id(cli):
    def handler(args):
        if args[:2] == ["az", "version"]:
            return 0, json.dumps({"azure-cli": "2.45.0"})
        if args[:4] == ["az", "account", "show", "--query"]:
            return 0, '["sub-1"]'
        return 0, ""

    fake = cli(handler)
    assert get_current_az_subscription_id() == ["sub-1"]
    assert ["az", "login", "--allow-no-subscriptions"] not in fake.calls


def test_get_current_az_subscription_id_logs_in(cli):
    def handler(args):
        if args[:2] == ["az", "version"]:
            return 0, json.dumps({"azure-cli": "2.45.0"})
        if args[:3] == ["az", "ad", "signed-in-user"]:
            return 1, ""
        if args[:4] == ["az", "account", "show", "--query"]:
            return 0, '["sub-2"]'
        return 0, ""

    fake = cli(handler)
    assert get_current_az_subscription_id() == ["sub-2"]
    assert ["az", "login", "--allow-no-subscriptions"] in fake.calls