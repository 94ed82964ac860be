# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Command line entry point. This is the only place that decides the process exit status."""
import argparse
import logging
import os
import sys

from . import errors
from . import Issuer
from .config import IssuerConfig, LETSENCRYPT_STAGING

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser. Defaults for the directory, domains and contacts come from the environment."""
    parser = argparse.ArgumentParser(
        prog="acme-dns-issuer",
        description="Issue a certificate from an ACME CA using the DNS-01 challenge."
    )
    parser.add_argument(
        "--dirurl",
        default=os.environ.get("ACME_DIRECTORY", LETSENCRYPT_STAGING),
        help="acme directory url - defaults to lets encrypt v2 staging url if not provided"
    )
    parser.add_argument(
        "--contact",
        default=os.environ.get("ACME_CONTACT", ""),
        help="a list of comma separated contact emails to use when creating a new account (optional, dont include "
             "'mailto:' prefix)"
    )
    parser.add_argument(
        "--domains",
        default=os.environ.get("ACME_DOMAINS", ""),
        help="a comma separated list of domains to issue a certificate for"
    )
    parser.add_argument(
        "--accountfile",
        default="account.json",
        help="the file that the account json data will be saved to/loaded from (will create new file if not exists)"
    )
    parser.add_argument(
        "--certfile",
        default="cert.pem",
        help="the file that the pem encoded certificate chain will be saved to"
    )
    parser.add_argument(
        "--keyfile",
        default="key.pem",
        help="the file that the pem encoded certificate private key will be saved to"
    )
    parser.add_argument(
        "--nameservers",
        default="",
        help="a comma separated list of nameservers to check TXT records with (defaults to the system resolvers)"
    )
    parser.add_argument(
        "--authoritative",
        action="store_true",
        help="check TXT records against each domain's authoritative nameserver"
    )
    parser.add_argument(
        "--propagation-timeout",
        type=int,
        default=0,
        help="seconds to keep polling TXT records for the expected value (default: a single check)"
    )
    parser.add_argument(
        "--propagation-interval",
        type=int,
        default=2,
        help="seconds between TXT record checks"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=300,
        help="seconds allowed for all authorizations to become valid, and for the order to be finalized"
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=0,
        help="maximum number of concurrent challenge workers (default: one per authorization)"
    )
    parser.add_argument(
        "--dns-hook",
        default=None,
        help="command run to publish each TXT record, given ACME_DNS_NAME, ACME_DNS_VALUE and ACME_DNS_DOMAIN"
    )
    parser.add_argument(
        "--no-verify-ssl",
        dest="verify_ssl",
        action="store_false",
        help="do not verify the SSL certificate of the ACME server"
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="log DNS answers and other debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="only log warnings and errors")
    return parser


def config_from_args(args: argparse.Namespace) -> IssuerConfig:
    """Converts parsed arguments into an `IssuerConfig`."""
    return IssuerConfig.from_strings(
        args.domains,
        args.contact,
        directory=args.dirurl,
        account_file=args.accountfile,
        cert_file=args.certfile,
        key_file=args.keyfile,
        nameservers=args.nameservers,
        authoritative=args.authoritative,
        propagation_timeout=args.propagation_timeout,
        propagation_interval=args.propagation_interval,
        timeout=args.timeout,
        max_workers=args.max_workers,
        verify_ssl=args.verify_ssl,
        dns_hook=args.dns_hook
    )


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configures the root logger for command line use."""
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(threadName)s %(message)s")
    # Keep the acme and urllib3 request dumps out of verbose output
    for name in ("acme", "urllib3"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))


def main(argv: list = None) -> int:
    """
    Runs one issuance from command line arguments.

    Returns:
        int: `0` on success, `1` when the issuance failed, `2` on invalid configuration.
    """
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet)
    config = config_from_args(args)

    try:
        result = Issuer(config).issue()
    except errors.ConfigurationError as err:
        logger.error("%s", err.message)
        return 2
    except errors.ACMEDNSError as err:
        logger.error("%s: %s", type(err).__name__, err.message)
        return 1

    logger.info("Certificate for %s saved to %s", ", ".join(result.domains), result.certificate_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
