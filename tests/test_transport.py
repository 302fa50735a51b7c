"""
Tests for the ociclient.transport module
"""
import base64
import json
import unittest
from unittest.mock import patch
import urllib.parse

import requests

from ociclient.auth import DictAuthenticator
from ociclient.challenge import AuthenticationChallenge
from ociclient.exceptions import ParseError, ProtocolError
from ociclient.names import Reference
from ociclient.transport import AuthenticatingTransport

REF = Reference.parse("registry.example.com/team/app:v1")
SCOPES = [REF.scope("pull")]
BEARER_CHALLENGE = (
    'Bearer realm="https://auth.example.com/token",service="registry.example.com"'
)


def _response(status=200, headers=None, body=b""):
    """
    Build a canned requests.Response.
    """
    resp = requests.Response()
    resp.status_code = status
    resp.headers.update(headers or {})
    if not isinstance(body, bytes):
        body = json.dumps(body).encode("utf-8")
    resp._content = body
    return resp


class FakeClock:
    """
    Manually advanced time source.
    """

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TransportTest(unittest.TestCase):
    """
    Tests for AuthenticatingTransport
    """

    def setUp(self):
        self.clock = FakeClock()
        self.session = requests.Session()
        patcher = patch.object(self.session, "send")
        self.send = patcher.start()
        self.addCleanup(patcher.stop)

    def _transport(self, creds=None):
        return AuthenticatingTransport(
            DictAuthenticator(creds or {}), session=self.session, clock=self.clock
        )

    def _sent(self, index):
        """Returns the PreparedRequest of the index-th send call."""
        return self.send.call_args_list[index][0][0]

    def test_no_challenge(self):
        """Responses other than 401 are returned directly"""
        self.send.side_effect = [_response(404)]
        resp = self._transport().get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(self.send.call_count, 1)
        self.assertNotIn("Authorization", self._sent(0).headers)

    def test_bearer_flow(self):
        """A bearer challenge triggers one token exchange and one retry"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
            _response(200, body={"token": "abc", "expires_in": 300}),
            _response(200, body=b"{}"),
        ]
        transport = self._transport()
        resp = transport.get(
            REF.manifest_url, REF.registry, SCOPES, headers={"Accept": "x/y"}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.send.call_count, 3)

        token_req = self._sent(1)
        url_data = urllib.parse.urlsplit(token_req.url)
        self.assertEqual(token_req.method, "GET")
        self.assertEqual(
            (url_data.scheme, url_data.netloc, url_data.path),
            ("https", "auth.example.com", "/token"),
        )
        self.assertEqual(
            dict(urllib.parse.parse_qsl(url_data.query)),
            {"scope": "repository:team/app:pull", "service": "registry.example.com"},
        )
        self.assertNotIn("Authorization", token_req.headers)

        retried = self._sent(2)
        self.assertEqual(retried.url, REF.manifest_url)
        self.assertEqual(retried.headers["Authorization"], "Bearer abc")
        self.assertEqual(retried.headers["Accept"], "x/y")

        # The token is reused until it expires.
        self.send.side_effect = [_response(200)]
        transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(self._sent(3).headers["Authorization"], "Bearer abc")

        self.clock.now = 301
        self.send.side_effect = [_response(200)]
        transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertNotIn("Authorization", self._sent(4).headers)

    def test_bearer_access_token(self):
        """access_token is preferred and credentials go to the token service"""
        self.send.side_effect = [
            _response(
                401,
                {"WWW-Authenticate": 'Bearer realm="https://auth.example.com/token?x=1"'},
            ),
            _response(200, body={"access_token": "tok1", "token": "tok2"}),
            _response(200),
        ]
        transport = self._transport({"registry.example.com": ("user", "pass")})
        transport.get(REF.manifest_url, REF.registry, ["repository:team/app:pull,push"])

        token_req = self._sent(1)
        self.assertEqual(
            token_req.headers["Authorization"],
            "Basic " + base64.b64encode(b"user:pass").decode(),
        )
        query = dict(
            urllib.parse.parse_qsl(urllib.parse.urlsplit(token_req.url).query)
        )
        self.assertEqual(
            query,
            {
                "x": "1",
                "scope": "repository:team/app:pull,push",
                "service": "registry.example.com",
            },
        )
        self.assertEqual(self._sent(2).headers["Authorization"], "Bearer tok1")

        # The expanded scopes satisfy a later pull-only request.
        self.send.side_effect = [_response(200)]
        transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(self._sent(3).headers["Authorization"], "Bearer tok1")

    def test_bearer_still_unauthorized(self):
        """A 401 after a fresh token is returned instead of retrying again"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
            _response(200, body={"token": "abc"}),
            _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
        ]
        resp = self._transport().get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.send.call_count, 3)

    def test_basic_flow(self):
        """A basic challenge is answered with the provider's credentials"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Basic realm="Registry"'}),
            _response(200),
        ]
        transport = self._transport({"registry.example.com": ("user", "pass")})
        resp = transport.put(
            REF.manifest_url, REF.registry, SCOPES, data=b"manifest"
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.send.call_count, 2)

        retried = self._sent(1)
        self.assertEqual(retried.method, "PUT")
        self.assertEqual(retried.body, b"manifest")
        self.assertEqual(
            retried.headers["Authorization"],
            "Basic " + base64.b64encode(b"user:pass").decode(),
        )

    def test_basic_rejected(self):
        """Rejected basic credentials are not retried"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Basic realm="Registry"'}),
            _response(401, {"WWW-Authenticate": 'Basic realm="Registry"'}),
        ]
        transport = self._transport({"registry.example.com": ("user", "wrong")})
        resp = transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.send.call_count, 2)

        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Basic realm="Registry"'}),
        ]
        resp = transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.send.call_count, 3)

    def test_basic_without_credentials(self):
        """Without credentials the 401 is returned as is"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Basic realm="Registry"'}),
        ]
        resp = self._transport().get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.send.call_count, 1)

    def test_registry_token(self):
        """Registry tokens answer basic challenges as bearer credentials"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Basic realm="Registry"'}),
            _response(200),
        ]
        transport = self._transport({"registry.example.com": {"registrytoken": "rt"}})
        transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(self._sent(1).headers["Authorization"], "Bearer rt")

    def test_unknown_challenge(self):
        """Unknown challenge types fail without retrying"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Digest realm="x", nonce="y"'}),
        ]
        with self.assertRaises(ProtocolError) as ctx:
            self._transport().get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(self.send.call_count, 1)

    def test_missing_challenge(self):
        """A 401 must carry a WWW-Authenticate header"""
        self.send.side_effect = [_response(401)]
        with self.assertRaises(ProtocolError):
            self._transport().get(REF.manifest_url, REF.registry, SCOPES)

    def test_malformed_challenge(self):
        """Malformed challenges raise ParseError"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Bearer realm="oops'}),
        ]
        with self.assertRaises(ParseError):
            self._transport().get(REF.manifest_url, REF.registry, SCOPES)

    def test_bearer_without_realm(self):
        """Bearer challenges must name a realm"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": 'Bearer service="x"'}),
        ]
        with self.assertRaises(ProtocolError) as ctx:
            self._transport().get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(self.send.call_count, 1)

    def test_token_service_errors(self):
        """Token service failures are reported with the response"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
            _response(403, body=b"denied"),
        ]
        with self.assertRaises(ProtocolError) as ctx:
            self._transport().get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(ctx.exception.status_code, 403)

        for body in ({"expires_in": 60}, b"not json", ["token"]):
            self.send.side_effect = [
                _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
                _response(200, body=body),
            ]
            with self.assertRaises(ProtocolError, msg=repr(body)) as ctx:
                self._transport().get(REF.manifest_url, REF.registry, SCOPES)
            self.assertEqual(ctx.exception.status_code, 200)

    def test_token_exchange_timeout(self):
        """The request timeout also bounds the token exchange"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
            _response(200, body={"token": "abc"}),
            _response(200),
        ]
        self._transport().get(REF.manifest_url, REF.registry, SCOPES, timeout=5)
        self.assertEqual(self.send.call_count, 3)
        for index in range(3):
            self.assertEqual(self.send.call_args_list[index][1]["timeout"], 5)

    def test_string_expires_in(self):
        """A numeric string expires_in is accepted"""
        self.send.side_effect = [
            _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
            _response(200, body={"token": "abc", "expires_in": "300"}),
            _response(200),
        ]
        transport = self._transport()
        transport.get(REF.manifest_url, REF.registry, SCOPES)
        self.assertEqual(transport.cache.get(REF.registry, SCOPES), "Bearer abc")

        self.clock.now = 301
        self.assertIsNone(transport.cache.get(REF.registry, SCOPES))

    def test_invalid_expires_in(self):
        """A non-numeric expires_in is a protocol error"""
        for expires_in in ("soon", [300], {"seconds": 300}):
            self.send.side_effect = [
                _response(401, {"WWW-Authenticate": BEARER_CHALLENGE}),
                _response(200, body={"token": "abc", "expires_in": expires_in}),
            ]
            with self.assertRaises(ProtocolError, msg=repr(expires_in)) as ctx:
                self._transport().get(REF.manifest_url, REF.registry, SCOPES)
            self.assertEqual(ctx.exception.status_code, 200)

    def test_challenge_parsed_type(self):
        """Sanity check on the challenge used by these tests"""
        self.assertEqual(AuthenticationChallenge.parse(BEARER_CHALLENGE).type, "bearer")


if __name__ == "__main__":
    unittest.main()
