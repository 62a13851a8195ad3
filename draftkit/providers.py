"""Azure and GitHub CLI helpers for connecting a repository to Azure with OIDC."""

from __future__ import annotations

import json
import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, TypeVar

import backoff
from packaging.version import InvalidVersion, Version

from draftkit.prompts import PromptError, run_select_prompt

log = logging.getLogger(__name__)

T = TypeVar("T")

MIN_AZ_CLI_VERSION = Version("2.37")
RETRY_MAX_TIME = 5.0
CREDENTIAL_WAIT_SECONDS = 10
CREDENTIAL_CHECK_ATTEMPTS = 10

_FIC_URI = "https://graph.microsoft.com/beta/applications/{}/federatedIdentityCredentials"
_FIC_ISSUER = "https://token.actions.githubusercontent.com"
_FIC_AUDIENCE = "api://AzureADTokenExchange"
_FIC_SUBJECTS = (
    ("prfic", "repo:{}:pull_request", "pr"),
    ("mainfic", "repo:{}:ref:refs/heads/main", "main"),
    ("masterfic", "repo:{}:ref:refs/heads/master", "master"),
)


class ProviderError(Exception):
    """Raised when an Azure or GitHub operation fails."""


class CommandError(ProviderError):
    """Raised when an external command fails or cannot be started."""

    def __init__(self, args: Sequence[str], output: bytes = b"", returncode: Optional[int] = None,
                 reason: str = "") -> None:
        self.cmd = list(args)
        self.output = output
        self.returncode = returncode
        detail = reason or f"exit status {returncode}"
        super().__init__(f"{' '.join(self.cmd)}: {detail}")


class SpinnerLike(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


def _run(*args: str) -> bytes:
    """Run a command and return its combined stdout and stderr; raise on failure."""
    try:
        proc = subprocess.run(list(args), stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                              check=False)
    except OSError as err:
        raise CommandError(args, reason=str(err)) from err
    output = proc.stdout or b""
    if proc.returncode != 0:
        raise CommandError(args, output, proc.returncode)
    return output


def _run_logged(*args: str) -> bytes:
    """Like :func:`_run`, logging the command's output when it fails."""
    try:
        return _run(*args)
    except CommandError as err:
        log.info("%s", err.output.decode("utf-8", errors="replace"))
        raise


def _succeeds(*args: str) -> bool:
    try:
        _run(*args)
    except CommandError:
        return False
    return True


def _run_interactive(*args: str) -> None:
    """Run a command attached to the terminal; raise if it fails."""
    try:
        proc = subprocess.run(list(args), check=False)
    except OSError as err:
        raise CommandError(args, reason=str(err)) from err
    if proc.returncode != 0:
        raise CommandError(args, returncode=proc.returncode)


def _json_string(out: bytes) -> str:
    value = json.loads(out)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProviderError(f"expected a JSON string, got {type(value).__name__}")
    return value


def _json_or(out: bytes, default: T) -> Any:
    """Decode JSON, returning ``default`` if it does not decode to the same kind of value."""
    try:
        value = json.loads(out)
    except ValueError:
        return default
    return value if isinstance(value, type(default)) else default


def _retry(operation: Callable[[], None], max_time: float) -> None:
    retrying = backoff.on_exception(
        backoff.expo,
        (ProviderError, ValueError),
        max_time=max_time,
        base=1.5,
        factor=0.5,
        logger=None,
    )(operation)
    try:
        retrying()
    except (ProviderError, ValueError) as err:
        log.debug("%s", err)
        raise


# --- CLI checks -------------------------------------------------------------------


def get_az_cli_version() -> str:
    """Return the installed Azure CLI version."""
    try:
        out = _run("az", "version", "-o", "json")
    except CommandError as err:
        raise ProviderError("Error: unable to obtain az cli version") from err
    try:
        versions = json.loads(out)
    except ValueError as err:
        raise ProviderError("unable to unmarshal az cli version output to map") from err
    if not isinstance(versions, dict) or versions.get("azure-cli") is None:
        raise ProviderError("unable to unmarshal az cli version output to map")
    return str(versions["azure-cli"])


def _get_az_upgrade() -> str:
    try:
        return run_select_prompt(
            "Your Azure CLI version must be at least 2.37.0 - would you like us to update it for you?",
            ["yes", "no"],
        )
    except PromptError as err:
        return str(err)


def _upgrade_az_cli() -> None:
    try:
        _run("az", "upgrade", "-y")
    except CommandError as err:
        raise ProviderError(f"Error: unable to upgrade az cli version; {err}") from err
    log.info("Azure CLI upgrade was successful!")


def check_az_cli_installed() -> None:
    """Make sure the Azure CLI is installed and at least version 2.37, offering to upgrade it."""
    log.debug("Checking that Azure Cli is installed...")
    try:
        _run("az")
    except CommandError as err:
        raise ProviderError("Error: AZ cli not installed") from err

    try:
        current = Version(get_az_cli_version())
    except InvalidVersion as err:
        raise ProviderError(str(err)) from err

    if current < MIN_AZ_CLI_VERSION:
        if _get_az_upgrade() == "no":
            raise ProviderError("Az cli version must be at least 2.37.0")
        _upgrade_az_cli()


def is_logged_in_to_az() -> bool:
    """Return whether the Azure CLI has a signed-in user."""
    log.debug("Checking that user is logged in to Azure CLI...")
    return _succeeds("az", "ad", "signed-in-user", "show", "--only-show-errors", "--query", "objectId")


def has_gh_cli() -> bool:
    """Return True if the GitHub CLI is installed; raise otherwise."""
    log.debug("Checking that github cli is installed...")
    try:
        _run("gh")
    except CommandError as err:
        raise ProviderError(
            "Error: The github cli is required to complete this process."
        ) from err
    log.debug("Github cli found!")
    return True


def is_logged_in_to_gh() -> bool:
    """Return whether the GitHub CLI is authenticated, printing its status if not."""
    log.debug("Checking that user is logged in to github...")
    try:
        _run("gh", "auth", "status")
    except CommandError as err:
        print(err.output.decode("utf-8", errors="replace"), end="")
        return False
    log.debug("User is logged in!")
    return True


def log_in_to_gh() -> None:
    """Run the interactive GitHub CLI login."""
    log.debug("Logging user in to github...")
    _run_interactive("gh", "auth", "login")


def log_in_to_az() -> None:
    """Run the interactive Azure CLI login."""
    log.debug("Logging user in to Azure Cli...")
    _run_interactive("az", "login", "--allow-no-subscriptions")
    log.debug("Successfully logged in!")


# --- resource checks --------------------------------------------------------------


def is_subscription_id_valid(subscription_id: str) -> None:
    """Raise unless ``subscription_id`` names a subscription visible to the Azure CLI."""
    if subscription_id == "":
        raise ProviderError("subscriptionId cannot be empty")
    out = _run("az", "account", "show", "-s", subscription_id, "--query", "id")
    if _json_string(out) == "":
        raise ProviderError("subscription not found")


def _is_valid_resource_group(subscription_id: str, resource_group: str) -> None:
    if resource_group == "":
        raise ProviderError("resource group cannot be empty")
    query = f"[?name=='{resource_group}']"
    try:
        out = _run("az", "group", "list", "--subscription", subscription_id, "--query", query)
    except CommandError as err:
        log.error("failed to validate resource group %r from subscription %r: %s",
                  resource_group, subscription_id, err)
        raise
    groups = json.loads(out)
    if not groups:
        raise ProviderError(
            f'resource group "{resource_group}" not found from subscription "{subscription_id}"'
        )


def _is_valid_gh_repo(repo: str) -> None:
    try:
        _run("gh", "repo", "view", repo)
    except CommandError as err:
        raise ProviderError("Github repo not found") from err


def az_app_exists(app_name: str) -> bool:
    """Return whether an Azure AD application with this display name exists."""
    filter_expr = f"displayName eq '{app_name}'"
    try:
        out = _run("az", "ad", "app", "list", "--only-show-errors", "--filter", filter_expr,
                   "--query", "[].appId")
    except CommandError:
        return False
    return len(_json_or(out, [])) >= 1


def az_acr_exists(acr_name: str) -> bool:
    """Return whether a container registry with this name exists."""
    query = f"[?name=='{acr_name}']"
    try:
        out = _run("az", "acr", "list", "--only-show-errors", "--query", query)
    except CommandError:
        return False
    return len(_json_or(out, [])) >= 1


def az_aks_exists(aks_name: str, resource_group: str) -> bool:
    """Return whether the AKS cluster can be browsed in the resource group."""
    return _succeeds("az", "aks", "browse", "-g", resource_group, "--name", aks_name)


def get_current_az_subscription_id() -> List[str]:
    """Return the id of the current Azure subscription, logging in first if needed."""
    check_az_cli_installed()
    if not is_logged_in_to_az():
        log_in_to_az()
    out = _run("az", "account", "show", "--query", "[id]")
    return [str(i) for i in _json_or(out, [])]


# --- OIDC set-up --------------------------------------------------------------------


@dataclass
class SetUpCmd:
    """Settings and discovered identifiers for connecting a GitHub repo to Azure."""

    app_name: str = ""
    subscription_id: str = ""
    resource_group_name: str = ""
    provider: str = ""
    repo: str = ""
    app_id: str = ""
    tenant_id: str = ""
    app_object_id: str = ""
    sp_object_id: str = ""
    retry_max_time: float = RETRY_MAX_TIME

    def validate_set_up_config(self) -> None:
        """Raise unless subscription, resource group, app name and repo are valid."""
        log.debug("Checking that provided information is valid...")
        is_subscription_id_valid(self.subscription_id)
        _is_valid_resource_group(self.subscription_id, self.resource_group_name)
        if self.app_name == "":
            raise ProviderError("invalid app name")
        _is_valid_gh_repo(self.repo)

    def _create_az_app(self) -> None:
        log.debug("Commencing Azure app creation...")
        start = time.monotonic()

        def create_app() -> None:
            out = _run_logged("az", "ad", "app", "create", "--only-show-errors",
                              "--display-name", self.app_name)
            if not az_app_exists(self.app_name):
                raise ProviderError(
                    "app creation time has exceeded max elapsed time for exponential backoff"
                )
            app = json.loads(out)
            if not isinstance(app, dict):
                raise ProviderError("unexpected output from app creation")
            self.app_id = str(app.get("appId"))
            log.debug("App created successfully!")
            log.debug("%.3fs", time.monotonic() - start)

        _retry(create_app, self.retry_max_time)

    def create_service_principal(self) -> None:
        """Create a service principal for the app, retrying until it shows up."""
        log.debug("Creating Azure service principal...")
        start = time.monotonic()

        def create() -> None:
            _run_logged("az", "ad", "sp", "create", "--id", self.app_id, "--only-show-errors")
            log.debug("Checking sp was created...")
            if not self.service_principal_exists():
                raise ProviderError("service principal not found")
            log.debug("Service principal created successfully!")
            log.debug("%.3fs", time.monotonic() - start)

        _retry(create, self.retry_max_time)

    def service_principal_exists(self) -> bool:
        """Return whether the app's service principal exists, recording its object id."""
        try:
            out = _run("az", "ad", "sp", "show", "--only-show-errors", "--id", self.app_id,
                       "--query", "id")
        except CommandError:
            return False
        log.debug("Service principal exists")
        self.sp_object_id = _json_or(out, "")
        return True

    def _assign_sp_role(self) -> None:
        log.debug("Assigning contributor role to service principal...")
        scope = f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group_name}"
        _run_logged("az", "role", "assignment", "create", "--role", "contributor",
                    "--subscription", self.subscription_id,
                    "--assignee-object-id", self.sp_object_id,
                    "--assignee-principal-type", "ServicePrincipal",
                    "--scope", scope, "--only-show-errors")
        log.debug("Role assigned successfully!")

    def _get_tenant_id(self) -> None:
        log.debug("Fetching Azure account tenant ID")
        out = _run_logged("az", "account", "show", "--query", "tenantId", "--only-show-errors")
        self.tenant_id = _json_string(out)

    def _get_app_object_id(self) -> None:
        log.debug("Fetching Azure application object ID")
        out = _run_logged("az", "ad", "app", "show", "--only-show-errors", "--id", self.app_id,
                          "--query", "id")
        self.app_object_id = _json_string(out)

    def _has_federated_credentials(self) -> bool:
        log.debug("Checking for existing federated credentials...")
        uri = _FIC_URI.format(self.app_object_id)
        try:
            out = _run("az", "rest", "--method", "GET", "--uri", uri, "--query", "value")
        except CommandError as err:
            log.error("error getting fic: %s", err)
            return False
        try:
            fics = json.loads(out)
        except ValueError as err:
            log.error("error marshaling fics: %s", err)
            return False
        if isinstance(fics, list) and fics:
            log.debug("Credentials found")
            return True
        log.debug("No existing credentials found")
        return False

    def _create_federated_credentials(self) -> None:
        log.debug("Creating federated credentials...")
        uri = _FIC_URI.format(self.app_object_id)
        for name, subject, description in _FIC_SUBJECTS:
            body = json.dumps({
                "name": name,
                "subject": subject.format(self.repo),
                "issuer": _FIC_ISSUER,
                "description": description,
                "audiences": [_FIC_AUDIENCE],
            }, separators=(",", ":"))
            _run_logged("az", "rest", "--method", "POST", "--uri", uri, "--body", body)

        log.debug("Waiting %d seconds to allow credentials time to populate",
                  CREDENTIAL_WAIT_SECONDS)
        time.sleep(CREDENTIAL_WAIT_SECONDS)
        for _ in range(CREDENTIAL_CHECK_ATTEMPTS):
            if self._has_federated_credentials():
                break
            log.debug("Credentials not yet created, retrying...")

    def _set_gh_secret(self, name: str, value: str) -> None:
        log.debug("Setting %s in github...", name)
        _run_logged("gh", "secret", "set", name, "-b", value, "--repo", self.repo)


def initiate_azure_oidc_flow(sc: SetUpCmd, spinner: SpinnerLike) -> None:
    """Create an Azure app with federated credentials for the repo and store its ids as secrets."""
    log.debug("Commencing github connection with azure...")

    if not has_gh_cli() or not is_logged_in_to_gh():
        spinner.stop()
        log_in_to_gh()
        spinner.start()

    sc.validate_set_up_config()

    if az_app_exists(sc.app_name):
        raise ProviderError("app already exists")
    sc._create_az_app()
    sc.create_service_principal()
    sc._get_tenant_id()
    sc._get_app_object_id()
    sc._assign_sp_role()

    if not sc._has_federated_credentials():
        sc._create_federated_credentials()

    sc._set_gh_secret("AZURE_CLIENT_ID", sc.app_id)
    sc._set_gh_secret("AZURE_SUBSCRIPTION_ID", sc.subscription_id)
    sc._set_gh_secret("AZURE_TENANT_ID", sc.tenant_id)

    log.debug("Github connection with azure completed successfully!")


if sys.version_info < (3, 10):  # pragma: no cover
    raise ImportError("draftkit requires Python 3.10 or newer")