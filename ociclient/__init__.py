"""
Expose public ociclient interface
"""
from .auth import (
    AnonymousAuthenticator,
    Authenticator,
    DictAuthenticator,
    DockerAuthenticator,
    credential_header,
    parse_user,
)
from .cache import AuthenticationCache, normalize_scopes
from .challenge import AuthenticationChallenge
from .exceptions import (
    CredentialError,
    ParseError,
    ProtocolError,
    RegistryException,
    ResponseError,
)
from .manifest import Index, Manifest, Platform
from .names import (
    Identifier,
    Reference,
    Registry,
    Repository,
    is_local_registry,
)
from .registry import RegistryClient
from .transport import AuthenticatingTransport
