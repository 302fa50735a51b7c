"""
HTTP transport that authenticates registry requests on demand.

See https://docs.docker.com/registry/spec/auth/token/
"""
from functools import partialmethod
import logging
from typing import Callable, Iterable, List, Mapping, Optional
import urllib.parse

import requests

from .auth import AnonymousAuthenticator, Authenticator, credential_header
from .cache import AuthenticationCache
from .challenge import AuthenticationChallenge
from .exceptions import ProtocolError
from .names import Registry

LOGGER = logging.getLogger(__name__)

MAX_RETRIES = 1


class AuthenticatingTransport:
    """
    Wrapper around registry HTTP requests that answers authentication
    challenges. A request is first sent with any cached credential. If the
    registry responds 401 the challenge is resolved, by basic credentials or
    by exchanging credentials for a bearer token, and the request is sent
    once more.
    """

    def __init__(
        self,
        authenticator: Optional[Authenticator] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.authenticator = authenticator or AnonymousAuthenticator()
        self.session = session or requests.Session()
        self.cache = AuthenticationCache(clock)

    def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        data=None,
        **send_kwargs
    ) -> requests.Response:
        """
        Prepare a fresh request through the session and send it.
        """
        request = requests.Request(method, url, headers=dict(headers), data=data)
        return self.session.send(self.session.prepare_request(request), **send_kwargs)

    def request(
        self,
        method: str,
        url: str,
        registry: Registry,
        scopes: Iterable[str],
        *,
        headers: Optional[Mapping[str, str]] = None,
        data=None,
        stream: bool = False,
        timeout: Optional[float] = None
    ) -> requests.Response:
        """
        Makes a request to a registry on behalf of the given scopes.

        Returns the final response. A 401 response is returned when the
        registry still rejects the request after a challenge was answered.
        """
        scopes = list(scopes)
        send_kwargs = dict(allow_redirects=True, stream=stream, timeout=timeout)

        for attempt in range(MAX_RETRIES + 1):
            request_headers = dict(headers or {})
            credential = self.cache.get(registry, scopes)
            if credential is not None:
                request_headers["Authorization"] = credential

            resp = self._send(method, url, request_headers, data, **send_kwargs)
            if resp.status_code != 401 or attempt == MAX_RETRIES:
                break

            if not self._answer_challenge(resp, registry, scopes, credential, timeout):
                break

        return resp

    head = partialmethod(request, "HEAD")
    get = partialmethod(request, "GET")
    put = partialmethod(request, "PUT")

    def _answer_challenge(
        self,
        resp: requests.Response,
        registry: Registry,
        scopes: List[str],
        credential: Optional[str],
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Obtain and cache a credential answering the challenge in resp.
        Returns False if no further attempt should be made.
        """
        header = resp.headers.get("WWW-Authenticate")
        if not header:
            raise ProtocolError(
                "Registry sent 401 Unauthorized response with no "
                "WWW-Authenticate header",
                resp,
            )

        challenge = AuthenticationChallenge.parse(header)
        if challenge.type == "basic":
            if credential is not None:
                return False
            auth = credential_header(self.authenticator.auth_for_registry(registry))
            if auth is None:
                return False
            self.cache.put(registry, auth, scopes)
            return True

        if challenge.type == "bearer":
            self._acquire_bearer_token(challenge, registry, scopes, resp, timeout)
            return True

        raise ProtocolError(
            "Registry sent unknown WWW-Authenticate challenge {!r}".format(
                challenge.type
            ),
            resp,
        )

    def _acquire_bearer_token(
        self,
        challenge: AuthenticationChallenge,
        registry: Registry,
        scopes: List[str],
        challenge_resp: requests.Response,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Exchange credentials for a bearer token at the challenge's realm and
        cache it for scopes.
        """
        realm = challenge.params.get("realm")
        if not realm:
            raise ProtocolError(
                "Registry sent a WWW-Authenticate: Bearer challenge with no realm",
                challenge_resp,
            )

        url_data = urllib.parse.urlsplit(realm)
        query = dict(urllib.parse.parse_qsl(url_data.query))
        query["scope"] = " ".join(scopes)
        query["service"] = challenge.params.get("service") or registry.host
        token_url = urllib.parse.urlunsplit(
            url_data._replace(query=urllib.parse.urlencode(query))
        )

        headers = {}
        auth = credential_header(self.authenticator.auth_for_registry(registry))
        if auth is not None:
            headers["Authorization"] = auth

        LOGGER.debug(
            "Requesting bearer token from %s (authenticated: %s)",
            token_url,
            auth is not None,
        )
        resp = self._send(
            "GET", token_url, headers, allow_redirects=True, timeout=timeout
        )
        if resp.status_code != 200:
            raise ProtocolError(
                "Failed to acquire bearer token: HTTP {}".format(resp.status_code),
                resp,
            )

        try:
            body = resp.json()
        except ValueError:
            body = None
        token = None
        if isinstance(body, dict):
            token = body.get("access_token") or body.get("token")
        if not token:
            raise ProtocolError("Failed to get access token from " + realm, resp)

        ttl = body.get("expires_in")
        if ttl is not None:
            try:
                ttl = float(ttl)
            except (TypeError, ValueError):
                raise ProtocolError(
                    "Token service sent invalid expires_in {!r}".format(ttl), resp
                ) from None

        self.cache.put(registry, "Bearer " + token, scopes, ttl)
