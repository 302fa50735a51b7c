"""
Command line interface to ociclient.
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

import requests

from .auth import Authenticator, DictAuthenticator, DockerAuthenticator, parse_user
from .exceptions import RegistryException
from .names import Reference
from .registry import RegistryClient

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Inspect and copy images on container registries"
    )
    parser.add_argument(
        "--user", "-u", default="", help="Registry credentials in user:pass format"
    )
    parser.add_argument(
        "--docker-config",
        default=None,
        help="Path to a docker config.json to read credentials from",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=None,
        help="Access registries over plain http",
    )
    parser.add_argument("--verbose", "-v", action="count", default=0)

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    for command, help_text in (
        ("manifest", "Print the image manifest"),
        ("config", "Print the image configuration"),
    ):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("ref")
        sub.add_argument("--platform", default=None, help="os/arch[/variant]")

    sub = subparsers.add_parser("get", help="Print the manifest or index")
    sub.add_argument("ref")

    sub = subparsers.add_parser("digest", help="Print the manifest digest")
    sub.add_argument("ref")

    sub = subparsers.add_parser("copy", help="Copy a manifest to another tag")
    sub.add_argument("src")
    sub.add_argument("dst")

    return parser.parse_args(argv)


def _authenticator(args: argparse.Namespace, refs: List[Reference]) -> Authenticator:
    """
    Use --user credentials for the referenced registries if given, else the
    docker configuration.
    """
    user = parse_user(args.user)
    if user:
        return DictAuthenticator({ref.registry.host: user for ref in refs})
    return DockerAuthenticator(config_path=args.docker_config)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point of the ociclient script.
    """
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else
        logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        names = [args.src, args.dst] if args.command == "copy" else [args.ref]
        refs = [Reference.parse(name, insecure=args.insecure) for name in names]
        client = RegistryClient(_authenticator(args, refs))

        if args.command == "get":
            output = client.get(refs[0]).content
        elif args.command == "manifest":
            output = client.get_manifest(refs[0], args.platform).content
        elif args.command == "config":
            output = client.get_config(refs[0], args.platform)
        elif args.command == "digest":
            print(client.get_digest(refs[0]))
            return 0
        else:
            client.copy(refs[0], refs[1])
            return 0
    except (RegistryException, requests.RequestException) as exc:
        LOGGER.debug("Command failed", exc_info=True)
        print("error: {}".format(exc), file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2))
    return 0
