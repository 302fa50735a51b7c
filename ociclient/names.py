"""
Parsing of image names into registries, repositories and references.

An image name looks like ``[host[:port]/]path[:tag|@digest]``. The host is
optional, is recognized only when it contains a dot, and defaults to Docker
Hub. Nothing in this module performs I/O.
"""
import ipaddress
import re
from typing import Mapping, NamedTuple, Optional, Union

from .exceptions import ParseError

DEFAULT_REGISTRY = "docker.io"
DEFAULT_REGISTRY_HOST = "index." + DEFAULT_REGISTRY
DEFAULT_TAG = "latest"

DEFAULT_REWRITES = {DEFAULT_REGISTRY: DEFAULT_REGISTRY_HOST}

_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "10.0.0.0/8",
        "127.0.0.0/24",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::1/128",
        "fc00::/7",
    )
)

_LOCALHOST_RE = re.compile(r"localhost(?::\d{1,5})?")
_LOCALDOMAIN_RE = re.compile(r".*\.localdomain(?::\d{1,5})?")
_BRACKETED_IPV6_RE = re.compile(r"\[([^\]]+)\](?::\d{1,5})?")
_IPV4_RE = re.compile(r"((?:\d{1,3}\.){3}\d{1,3})(?::\d{1,5})?")
_DIGEST_RE = re.compile(r"[a-z0-9]+:[0-9a-fA-F]+")


def is_local_registry(name: str) -> bool:
    """
    Returns true if the registry named by `name` lives on a loopback or
    private network and should therefore be addressed over plain http.

    `name` may be a hostname, an IPv4 literal, an IPv6 literal or any of
    those with a port. Hostnames are never resolved.
    """
    if _LOCALHOST_RE.fullmatch(name) or _LOCALDOMAIN_RE.fullmatch(name):
        return True

    bracketed = _BRACKETED_IPV6_RE.fullmatch(name)
    if bracketed:
        name = bracketed.group(1)

    ipv4 = _IPV4_RE.fullmatch(name)
    candidate = ipv4.group(1) if ipv4 else name
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return False

    return any(address in network for network in _PRIVATE_NETWORKS)


def is_digest(value: str) -> bool:
    """
    Returns true if value has the ``<algorithm>:<hex>`` digest shape.
    """
    return bool(_DIGEST_RE.fullmatch(value))


def _is_registry_part(part: str) -> bool:
    """
    Returns true if the leading path segment of an image name names a
    registry. Only dotted names qualify, so "localhost:5000/app" is a
    Docker Hub repository.
    """
    return "." in part


class Registry(NamedTuple):
    """
    Represents a container image registry endpoint.
    """

    host: str
    insecure: bool = False

    @classmethod
    def parse(
        cls,
        name: str = "",
        default: Optional[str] = None,
        rewrites: Optional[Mapping[str, str]] = None,
        insecure: Optional[bool] = None,
    ) -> "Registry":
        """
        Parse a registry name. An empty name selects `default` (Docker Hub
        unless given). Names found in the rewrite table are replaced by
        their canonical host. Unless `insecure` is given explicitly, local
        and private network registries are considered insecure.
        """
        if not name:
            name = default or DEFAULT_REGISTRY

        rewrite_table = DEFAULT_REWRITES
        if rewrites:
            rewrite_table = dict(DEFAULT_REWRITES)
            rewrite_table.update(rewrites)
        name = rewrite_table.get(name, name)

        if insecure is None:
            insecure = is_local_registry(name)
        return cls(name, insecure)

    @property
    def scheme(self) -> str:
        """
        Returns the url scheme used to reach the registry.
        """
        return "http" if self.insecure else "https"

    @property
    def url(self) -> str:
        """
        Returns the base url of the registry API.
        """
        return "{}://{}/v2".format(self.scheme, self.host)

    def __str__(self) -> str:
        return self.host


class Repository(NamedTuple):
    """
    Represents a named collection of manifests within a registry.
    """

    registry: Registry
    name: str

    @classmethod
    def parse(cls, name: str, **registry_options) -> "Repository":
        """
        Parse a repository name optionally prefixed by a registry host.
        Keyword arguments are passed through to `Registry.parse`.
        """
        registry_name = ""
        repo_name = name
        parts = name.split("/")
        if len(parts) >= 2 and _is_registry_part(parts[0]):
            registry_name = parts[0]
            repo_name = "/".join(parts[1:])

        if not repo_name:
            raise ParseError("no repository name in {!r}".format(name))

        return cls(Registry.parse(registry_name, **registry_options), repo_name)

    @property
    def qualified_name(self) -> str:
        """
        Returns the repository path as understood by the registry. Official
        images on Docker Hub live under the implicit ``library/`` namespace.
        """
        if self.registry.host == DEFAULT_REGISTRY_HOST and "/" not in self.name:
            return "library/" + self.name
        return self.name

    @property
    def url(self) -> str:
        """
        Returns the base url of the repository API.
        """
        return "{}/{}".format(self.registry.url, self.qualified_name)

    def blob_url(self, digest: str) -> str:
        """
        Returns the url of the blob with the given digest.
        """
        return "{}/blobs/{}".format(self.url, digest)

    def scope(self, action: str) -> str:
        """
        Returns the token scope granting `action` on this repository.
        """
        return "repository:{}:{}".format(self.qualified_name, action)

    def __str__(self) -> str:
        return "{}/{}".format(self.registry, self.name)


class Identifier(NamedTuple):
    """
    Either a tag or a digest selecting a manifest within a repository.
    """

    type: str
    value: str

    @classmethod
    def tag(cls, value: str) -> "Identifier":
        """
        Returns a tag identifier.
        """
        return cls("tag", value)

    @classmethod
    def digest(cls, value: str) -> "Identifier":
        """
        Returns a digest identifier.
        """
        return cls("digest", value)

    @property
    def separator(self) -> str:
        """
        Returns the character joining the identifier to a repository name.
        """
        return "@" if self.type == "digest" else ":"


class Reference(NamedTuple):
    """
    Fully addresses one manifest: a repository plus a tag or digest.
    """

    repository: Repository
    identifier: Identifier

    @classmethod
    def parse(
        cls, name: str, default_tag: Optional[str] = None, **registry_options
    ) -> "Reference":
        """
        Parse an image name such as ``ubuntu``, ``gcr.io/google/wave:v1`` or
        ``127.0.0.1:5000/app@sha256:...``.

        A trailing ``@<algorithm>:<hex>`` is a digest. Otherwise the text
        after the last colon is a tag, unless it contains a slash, in which
        case the colon belonged to a host port and the tag defaults to
        `default_tag`.
        """
        base, sep, digest = name.rpartition("@")
        if sep and is_digest(digest):
            identifier = Identifier.digest(digest)
        else:
            base, sep, tag = name.rpartition(":")
            if sep and "/" not in tag:
                if not tag:
                    raise ParseError("empty tag in {!r}".format(name))
                identifier = Identifier.tag(tag)
            else:
                base = name
                identifier = Identifier.tag(default_tag or DEFAULT_TAG)

        return cls(Repository.parse(base, **registry_options), identifier)

    @property
    def registry(self) -> Registry:
        """
        Returns the registry hosting the referenced manifest.
        """
        return self.repository.registry

    @property
    def manifest_url(self) -> str:
        """
        Returns the url of the referenced manifest.
        """
        return "{}/manifests/{}".format(self.repository.url, self.identifier.value)

    def scope(self, action: str) -> str:
        """
        Returns the token scope granting `action` on the repository.
        """
        return self.repository.scope(action)

    def at_digest(self, digest: str) -> "Reference":
        """
        Returns a reference to `digest` within the same repository.
        """
        return Reference(self.repository, Identifier.digest(digest))

    def __str__(self) -> str:
        return "{}{}{}".format(
            self.repository, self.identifier.separator, self.identifier.value
        )


Resource = Union[Registry, Repository, Reference]


def registry_of(resource: Resource) -> Registry:
    """
    Returns the registry hosting `resource`.
    """
    if isinstance(resource, Registry):
        return resource
    return resource.registry
