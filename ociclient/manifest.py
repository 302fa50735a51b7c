"""
Image manifests and indexes as returned by a registry.

See https://github.com/opencontainers/image-spec and
https://docs.docker.com/registry/spec/manifest-v2-2/
"""
import abc
import hashlib
import json
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Type, Union

import requests

from .exceptions import ParseError, RegistryException

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST_V2 = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONFIG_V1 = "application/vnd.docker.container.image.v1+json"

OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_V1 = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG_V1 = "application/vnd.oci.image.config.v1+json"


class Platform(NamedTuple):
    """
    The operating system and architecture an image runs on.
    """

    os: str
    architecture: str
    variant: Optional[str] = None

    @classmethod
    def parse(cls, platform: str) -> "Platform":
        """
        Parse a platform in os/architecture[/variant] format.
        """
        parts = platform.split("/")
        if len(parts) < 2 or len(parts) > 3 or not all(parts):
            raise ParseError("invalid platform {!r}".format(platform))
        return cls(*parts)

    def matches(self, platform: Mapping[str, Any]) -> bool:
        """
        Returns true if a descriptor's platform object satisfies this
        platform. An unset variant matches any variant.
        """
        for key, value in self._asdict().items():
            if value is not None and platform.get(key) != value:
                return False
        return True

    def __str__(self) -> str:
        return "/".join(part for part in self if part)


DEFAULT_PLATFORM = Platform("linux", "amd64")


class ImageDocument(metaclass=abc.ABCMeta):
    """
    A manifest or index document loaded into memory.
    """

    MEDIA_TYPES: Tuple[str, ...] = ()

    def __init__(
        self,
        content: Dict[str, Any],
        raw: bytes,
        digest: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> None:
        self.content = content
        self.raw = raw
        self.media_type = media_type or content.get("mediaType") or self.MEDIA_TYPES[0]
        self._digest = digest

    def digest(self) -> str:
        """
        Return the digest of the document in HASHALG:HASH format.
        """
        if self._digest is None:
            self._digest = "sha256:" + hashlib.sha256(self.raw).hexdigest()
        return self._digest


class Manifest(ImageDocument):
    """
    Represents a single-platform image manifest.
    """

    MEDIA_TYPES = (OCI_MANIFEST_V1, DOCKER_MANIFEST_V2)

    @property
    def config(self) -> Dict[str, Any]:
        """
        Returns the descriptor of the image configuration blob.
        """
        return self.content["config"]

    @property
    def layers(self) -> List[Dict[str, Any]]:
        """
        Returns the layer descriptors.
        """
        return self.content.get("layers", [])


class Index(ImageDocument):
    """
    Represents a multi-platform image index (manifest list).
    """

    MEDIA_TYPES = (OCI_INDEX_V1, DOCKER_MANIFEST_LIST_V2)

    @property
    def manifests(self) -> List[Dict[str, Any]]:
        """
        Returns the descriptors of the manifests in the index.
        """
        return self.content.get("manifests", [])

    def find(self, platform: Platform) -> Optional[Dict[str, Any]]:
        """
        Returns the first descriptor whose platform matches.
        """
        for descriptor in self.manifests:
            if platform.matches(descriptor.get("platform") or {}):
                return descriptor
        return None


DOCUMENT_TYPES: Tuple[Type[ImageDocument], ...] = (Index, Manifest)
MEDIA_TYPE_MAP = dict(
    (media_type, document_type)
    for document_type in DOCUMENT_TYPES
    for media_type in document_type.MEDIA_TYPES
)

# Preference order sent in the Accept header of manifest requests.
REFERENCE_MEDIA_TYPES = tuple(MEDIA_TYPE_MAP)


def load_document(response: requests.Response) -> Union[Manifest, Index]:
    """
    Build the manifest or index held in a registry response. The media type
    is taken from the document itself, falling back to the Content-Type
    header.
    """
    raw = response.content
    try:
        content = json.loads(raw.decode("utf-8"))
    except ValueError as exc:
        raise RegistryException("registry returned an invalid manifest") from exc
    if not isinstance(content, dict):
        raise RegistryException("registry returned an invalid manifest")

    media_type = content.get("mediaType")
    if not media_type:
        media_type = response.headers.get("Content-Type", "").split(";")[0].strip()

    document_type = MEDIA_TYPE_MAP.get(media_type)
    if document_type is None:
        raise RegistryException("unsupported manifest media type {!r}".format(media_type))

    return document_type(  # type: ignore
        content, raw, response.headers.get("Docker-Content-Digest"), media_type
    )
