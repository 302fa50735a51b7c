"""
Cache of registry credentials keyed by registry host and token scopes.
"""
import logging
import threading
import time
from typing import Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional

from .names import Registry

LOGGER = logging.getLogger(__name__)


def normalize_scopes(scopes: Iterable[str]) -> List[str]:
    """
    Expand compact scopes so that each carries a single action.

    normalize_scopes(["repository:foo:pull,push"])
        => ["repository:foo:pull", "repository:foo:push"]
    """
    result: List[str] = []
    for scope in scopes:
        prefix, sep, actions = scope.rpartition(":")
        if not sep:
            result.append(scope)
            continue
        result.extend(prefix + ":" + action for action in actions.split(","))
    return result


class AuthenticationToken(NamedTuple):
    """
    A ready-to-use Authorization header value and the scopes it grants.
    """

    credential: str
    scopes: FrozenSet[str]
    expires: Optional[float] = None

    def expired(self, now: float) -> bool:
        """
        Returns true if the token is no longer valid at time now.
        """
        return self.expires is not None and self.expires <= now


class _RegistryTokens:
    """
    Tokens held for a single registry host, newest first.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.tokens: List[AuthenticationToken] = []


class AuthenticationCache:
    """
    Stores credentials per registry host. Each credential is tagged with the
    set of scopes it was issued for and an optional expiry time. Expired
    credentials are discarded lazily whenever a host's tokens are accessed.

    `clock` returns the current time in seconds and defaults to
    time.monotonic.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self.clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._registries: Dict[str, _RegistryTokens] = {}

    def _tokens_for(self, host: str, create: bool) -> Optional[_RegistryTokens]:
        """
        Returns the token list for host, creating it if requested.
        """
        with self._lock:
            tokens = self._registries.get(host)
            if tokens is None and create:
                tokens = self._registries[host] = _RegistryTokens()
            return tokens

    def _purge_expired(self, entry: _RegistryTokens) -> None:
        """
        Drop expired tokens. The caller must hold entry.lock.
        """
        now = self.clock()
        entry.tokens = [token for token in entry.tokens if not token.expired(now)]

    def get(self, registry: Registry, scopes: Iterable[str]) -> Optional[str]:
        """
        Returns the newest credential for `registry` covering all of
        `scopes`, or None if there is none.
        """
        entry = self._tokens_for(registry.host, create=False)
        if entry is None:
            return None

        required = set(normalize_scopes(scopes))
        with entry.lock:
            self._purge_expired(entry)
            for token in entry.tokens:
                if required <= token.scopes:
                    return token.credential
        return None

    def put(
        self,
        registry: Registry,
        credential: str,
        scopes: Iterable[str],
        ttl: Optional[float] = None,
    ) -> None:
        """
        Store `credential` for `registry` as granting `scopes`. If `ttl` is
        given the credential expires after that many seconds.
        """
        token = AuthenticationToken(
            credential=credential,
            scopes=frozenset(normalize_scopes(scopes)),
            expires=self.clock() + ttl if ttl is not None else None,
        )

        entry = self._tokens_for(registry.host, create=True)
        with entry.lock:  # type: ignore
            self._purge_expired(entry)  # type: ignore
            entry.tokens.insert(0, token)  # type: ignore

        LOGGER.debug(
            "Cached credential for %s covering %s (ttl %s)",
            registry.host,
            sorted(token.scopes),
            ttl,
        )
