"""
Credential providers used to authenticate against registries.

A provider returns a dict holding any of the keys ``auth``, ``username``,
``password``, ``identitytoken`` and ``registrytoken`` for a registry.
"""
import abc
import base64
import json
import logging
import os
import subprocess
import threading
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .exceptions import CredentialError
from .names import DEFAULT_REGISTRY_HOST, Registry

LOGGER = logging.getLogger(__name__)

RegistryAuthentication = Dict[str, str]

DOCKER_INDEX_KEY = "https://{}/v1/".format(DEFAULT_REGISTRY_HOST)


def credential_header(auth: Mapping[str, str]) -> Optional[str]:
    """
    Build an Authorization header value out of a provider's result.
    Registry tokens take precedence over a pre-encoded basic auth string,
    which takes precedence over a username and password pair.
    """
    if auth.get("registrytoken"):
        return "Bearer " + auth["registrytoken"]
    if auth.get("auth"):
        return "Basic " + auth["auth"]
    if auth.get("username") and auth.get("password"):
        user_pass = "{}:{}".format(auth["username"], auth["password"])
        return "Basic " + base64.b64encode(user_pass.encode("utf-8")).decode("ascii")
    return None


def parse_user(user: str) -> Optional[Tuple[str, str]]:
    """
    Parses username and password in user:pass format.
    """
    if not user:
        return None

    col_pos = user.find(":")
    if col_pos == -1:
        return (user, "")
    return (user[0:col_pos], user[col_pos + 1 :])


class Authenticator(metaclass=abc.ABCMeta):
    """
    Supplies credentials for registries.
    """

    @abc.abstractmethod
    def auth_for_registry(self, registry: Registry) -> RegistryAuthentication:
        """
        Returns the credentials known for registry. An empty dict means the
        registry should be accessed anonymously.
        """


class AnonymousAuthenticator(Authenticator):
    """
    Never provides any credentials.
    """

    def auth_for_registry(self, registry: Registry) -> RegistryAuthentication:
        return {}


class DictAuthenticator(Authenticator):
    """
    Serves credentials out of a mapping of registry host to either a
    (username, password) tuple or a credentials dict.
    """

    def __init__(
        self, creds: Mapping[str, Union[Tuple[str, str], RegistryAuthentication]]
    ) -> None:
        self.creds = dict(creds)

    def auth_for_registry(self, registry: Registry) -> RegistryAuthentication:
        cred = self.creds.get(registry.host)
        if cred is None:
            return {}
        if isinstance(cred, tuple):
            return {"username": cred[0], "password": cred[1]}
        return dict(cred)


class DockerAuthenticator(Authenticator):
    """
    Uses the docker client configuration (``config.json``) to find
    credentials. Registries logged into with ``docker login`` are available,
    including those whose secrets live in a credential helper.

    If `config` is not passed the file is read from the directory named by
    the DOCKER_CONFIG environment variable, defaulting to ``~/.docker``.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        config_path: Optional[str] = None,
    ) -> None:
        self._config = config
        self.config_path = config_path
        self._lock = threading.Lock()
        self._helper_cache: Dict[str, RegistryAuthentication] = {}

    def _default_config_path(self) -> str:
        docker_dir = os.environ.get("DOCKER_CONFIG") or os.path.join(
            os.path.expanduser("~"), ".docker"
        )
        return os.path.join(docker_dir, "config.json")

    @property
    def config(self) -> Mapping[str, Any]:
        """
        Returns the docker configuration, reading it on first use. A missing
        or unreadable file is treated as an empty configuration.
        """
        if self._config is None:
            path = self.config_path or self._default_config_path()
            try:
                with open(path, "r") as fconfig:
                    self._config = json.load(fconfig)
            except FileNotFoundError:
                self._config = {}
            except (OSError, ValueError) as exc:
                LOGGER.warning("Could not read docker config %s: %s", path, exc)
                self._config = {}
        return self._config  # type: ignore

    @staticmethod
    def _query_helper(helper: str, key: str) -> Dict[str, str]:
        """
        Ask ``docker-credential-<helper>`` for the credentials stored under
        key.
        """
        try:
            proc = subprocess.run(
                ["docker-credential-" + helper, "get"],
                input=key.encode("utf-8"),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise CredentialError(
                "could not run credential helper {}: {}".format(helper, exc)
            ) from exc

        if proc.returncode != 0:
            message = proc.stdout.decode("utf-8", "replace").strip()
            if "credentials not found" in message.lower():
                return {}
            raise CredentialError(
                "credential helper {} failed: {}".format(
                    helper, message or proc.stderr.decode("utf-8", "replace").strip()
                )
            )

        try:
            return json.loads(proc.stdout.decode("utf-8"))
        except ValueError as exc:
            raise CredentialError(
                "credential helper {} returned invalid output".format(helper)
            ) from exc

    def _helper_auth(self, helper: str, key: str) -> RegistryAuthentication:
        with self._lock:
            if key in self._helper_cache:
                return self._helper_cache[key]

        result = self._query_helper(helper, key)
        username = result.get("Username", "")
        secret = result.get("Secret", "")

        auth: RegistryAuthentication = {}
        if username == "<token>":
            auth["identitytoken"] = secret
        elif username:
            auth["username"] = username
            auth["password"] = secret

        with self._lock:
            self._helper_cache[key] = auth
        return auth

    def auth_for_registry(self, registry: Registry) -> RegistryAuthentication:
        config = self.config
        auths = config.get("auths") or {}

        keys = [registry.host]
        if registry.host == DEFAULT_REGISTRY_HOST:
            keys.insert(0, DOCKER_INDEX_KEY)

        for key in keys:
            helper = (config.get("credHelpers") or {}).get(key)
            if helper:
                return self._helper_auth(helper, key)

        if config.get("credsStore"):
            return self._helper_auth(config["credsStore"], keys[0])

        for key in keys:
            if key in auths:
                return dict(auths[key] or {})
        return {}
