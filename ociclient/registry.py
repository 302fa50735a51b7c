"""
Module implementing a client for the v2 docker registry API.

See https://docs.docker.com/registry/spec/api/
"""
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Union

import requests

from .auth import Authenticator
from .exceptions import RegistryException, ResponseError
from .manifest import (
    DEFAULT_PLATFORM,
    REFERENCE_MEDIA_TYPES,
    Index,
    Manifest,
    Platform,
    load_document,
)
from .names import Reference, Repository, Resource, registry_of
from .transport import AuthenticatingTransport

LOGGER = logging.getLogger(__name__)

ReferenceSpec = Union[str, Reference]
RepositorySpec = Union[str, Repository]
PlatformSpec = Union[str, Platform, None]


def _reference(spec: ReferenceSpec) -> Reference:
    """
    Parse spec into a Reference unless it already is one.
    """
    return Reference.parse(spec) if isinstance(spec, str) else spec


def _platform(spec: PlatformSpec) -> Platform:
    """
    Parse spec into a Platform, defaulting to linux/amd64.
    """
    if spec is None:
        return DEFAULT_PLATFORM
    return Platform.parse(spec) if isinstance(spec, str) else spec


def _raise_for_status(resp: requests.Response, message: str, *ok: int) -> None:
    """
    Raise ResponseError unless the status of resp is one of ok (200 by
    default).
    """
    if resp.status_code not in (ok or (200,)):
        raise ResponseError("{}: HTTP {}".format(message, resp.status_code), resp)


class RegistryClient:
    """
    Fetches manifests, configs and blobs from registries, authenticating as
    needed with credentials from `authenticator`.
    """

    def __init__(
        self,
        authenticator: Optional[Authenticator] = None,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.transport = AuthenticatingTransport(
            authenticator, session=session, clock=clock
        )
        self.timeout = timeout

    def request(
        self,
        target: Resource,
        scopes: Iterable[str],
        url: str,
        method: str = "GET",
        **kwargs
    ) -> requests.Response:
        """
        Makes a request against the registry hosting target.
        """
        kwargs.setdefault("timeout", self.timeout)
        return self.transport.request(
            method, url, registry_of(target), scopes, **kwargs
        )

    def _resolve(
        self, ref: Reference, action: str = "pull", method: str = "GET"
    ) -> requests.Response:
        """
        Request the manifest named by ref, accepting every supported media
        type.
        """
        return self.request(
            ref,
            [ref.scope(action)],
            ref.manifest_url,
            method=method,
            headers={"Accept": ",".join(REFERENCE_MEDIA_TYPES)},
        )

    def get(self, spec: ReferenceSpec) -> Union[Manifest, Index]:
        """
        Fetch the manifest or index named by spec.
        """
        ref = _reference(spec)
        resp = self._resolve(ref)
        _raise_for_status(resp, "Failed to get {}".format(ref))
        return load_document(resp)

    def get_manifest(
        self, spec: ReferenceSpec, platform: PlatformSpec = None
    ) -> Manifest:
        """
        Fetch the image manifest named by spec. If spec names an index the
        manifest for platform (linux/amd64 by default) is selected from it.
        """
        ref = _reference(spec)
        target = _platform(platform)

        seen = set()
        while True:
            document = self.get(ref)
            if isinstance(document, Manifest):
                return document

            descriptor = document.find(target)
            if descriptor is None:
                raise RegistryException(
                    "No manifest in {} matched platform {}".format(ref, target)
                )
            if descriptor["digest"] in seen:
                raise RegistryException("Index cycle detected at {}".format(ref))
            seen.add(descriptor["digest"])
            ref = ref.at_digest(descriptor["digest"])

    def get_config(
        self, spec: ReferenceSpec, platform: PlatformSpec = None
    ) -> Dict[str, Any]:
        """
        Fetch the image configuration of the manifest named by spec.
        """
        ref = _reference(spec)
        manifest = self.get_manifest(ref, platform)

        resp = self.get_blob(ref.repository, manifest.config["digest"], stream=False)
        _raise_for_status(resp, "Failed to get config for {}".format(ref))
        return resp.json()

    def get_digest(self, spec: ReferenceSpec) -> str:
        """
        Returns the digest of the manifest named by spec without fetching it.
        """
        ref = _reference(spec)
        resp = self._resolve(ref, method="HEAD")
        _raise_for_status(resp, "Failed to get digest for {}".format(ref))

        digest = resp.headers.get("Docker-Content-Digest")
        if not digest:
            raise ResponseError("Failed to get digest for {}".format(ref), resp)
        return digest

    def exists(self, spec: ReferenceSpec) -> bool:
        """
        Query the repository and return if the manifest is found.
        """
        ref = _reference(spec)
        resp = self._resolve(ref, method="HEAD")
        if resp.status_code == 404:
            return False
        _raise_for_status(resp, "Failed to query {}".format(ref))
        return True

    def get_blob(
        self, spec: RepositorySpec, digest: str, stream: bool = True
    ) -> requests.Response:
        """
        Request the blob identified by digest. The response is returned as
        is so the caller can stream its content.
        """
        repository = Repository.parse(spec) if isinstance(spec, str) else spec
        return self.request(
            repository,
            [repository.scope("pull")],
            repository.blob_url(digest),
            stream=stream,
        )

    def copy(self, src: ReferenceSpec, dest: ReferenceSpec) -> None:
        """
        Copies a manifest or index to another reference.

        Only copying within a registry is supported and every blob the
        document refers to must already exist at the destination.
        """
        src_ref = _reference(src)
        dest_ref = _reference(dest)

        resp = self._resolve(src_ref, "pull,push")
        _raise_for_status(resp, "Failed to get {}".format(src_ref))

        headers = {}
        if resp.headers.get("Content-Type"):
            headers["Content-Type"] = resp.headers["Content-Type"]

        copy_resp = self.request(
            dest_ref,
            [dest_ref.scope("push")],
            dest_ref.manifest_url,
            method="PUT",
            headers=headers,
            data=resp.content,
        )
        _raise_for_status(
            copy_resp, "Failed to copy {} to {}".format(src_ref, dest_ref), 200, 201
        )
        LOGGER.info("Copied manifest %s -> %s", src_ref, dest_ref)
