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
"""
acme_dns_issuer issues certificates from any CA implementing the ACME v2 protocol using the DNS-01 challenge. It loads
or registers an account, orders a certificate for a list of domains, proves control of every domain concurrently by
checking its `_acme-challenge` TXT record, and finalizes the order only once every authorization is valid.
"""
import concurrent.futures
import dataclasses
import logging
import threading
from typing import Tuple

from acme import messages
from cryptography.hazmat.primitives.serialization import Encoding

from . import errors
from . import tools
from .account import Account, AccountManager
from .barrier import CompletionBarrier
from .challenge import ChallengeFulfiller
from .config import IssuerConfig
from .finalizer import CertificateFinalizer, encode_chain
from .order import OrderOrchestrator
from .transport import ACMETransport

# Constants and Variables
__pdoc__ = {"tests": False}    # Excludes 'tests' submodule from documentation
__all__ = [
    "Account",
    "AccountManager",
    "ACMETransport",
    "CertificateFinalizer",
    "ChallengeFulfiller",
    "CompletionBarrier",
    "IssuanceResult",
    "Issuer",
    "IssuerConfig",
    "OrderOrchestrator",
    "errors",
    "issue",
    "tools",
]

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class IssuanceResult:
    """The outcome of a successful issuance run."""
    account_url: str
    order_url: str
    domains: Tuple[str, ...]
    chain: tuple
    certificate_path: str
    key_path: str

    @property
    def certificate_pem(self) -> bytes:
        """The chain encoded exactly as written to `certificate_path`."""
        return encode_chain(self.chain)

    @property
    def leaf_pem(self) -> bytes:
        """The PEM encoded leaf certificate."""
        return self.chain[0].public_bytes(Encoding.PEM)


class Issuer:
    """
    Runs one certificate issuance for an `IssuerConfig`.

    Examples:
        >>> import acme_dns_issuer
        >>> config = acme_dns_issuer.IssuerConfig.from_strings(
        ...     "example.com,*.example.com",
        ...     "admin@example.com",
        ...     propagation_timeout=120
        ... )
        >>> result = acme_dns_issuer.Issuer(config).issue()
        >>> result.certificate_path
        'cert.pem'
    """

    def __init__(self, config: IssuerConfig, transport=None, txt_lookup=None, publisher=None) -> None:
        """
        Args:
            config (IssuerConfig): The configuration of this run.
            transport (ACMETransport): Optional, the transport to use. Built from `config` if omitted.
            txt_lookup (callable): Optional, returns the TXT values visible at a record name. Defaults to a
                `tools.DNSQuery` lookup against `config.nameservers`.
            publisher (callable): Optional, publishes a TXT record before it is checked. Defaults to a
                `tools.HookPublisher` when `config.dns_hook` is set.
        """
        self.config = config
        self.transport = transport or ACMETransport(
            config.directory,
            verify_ssl=config.verify_ssl,
            user_agent=config.user_agent
        )
        self.txt_lookup = txt_lookup or tools.txt_lookup(
            nameservers=list(config.nameservers),
            authoritative=config.authoritative
        )
        if publisher is None and config.dns_hook:
            publisher = tools.HookPublisher(config.dns_hook)
        self.publisher = publisher
        self.poll_interval = 2

    def issue(self) -> IssuanceResult:
        """
        Issues a certificate for `config.domains` and writes the key and the chain to disk.

        Returns:
            IssuanceResult: The account, the order and the issued chain.

        Raises:
            acme_dns_issuer.errors.ACMEDNSError: The first failure of any step. Nothing is retried beyond transient
                network errors, and no certificate is written unless every authorization became valid.
        """
        config = self.config.validate()
        domains = list(config.domains)

        self.transport.discover()
        account = AccountManager(self.transport, config.account_file, config.contacts).load_or_create()
        order = OrderOrchestrator(self.transport).create_order(domains)

        self.authorize(order)

        finalizer = CertificateFinalizer(
            self.transport,
            key_file=config.key_file,
            cert_file=config.cert_file,
            timeout=config.timeout,
            poll_interval=self.poll_interval
        )
        chain = finalizer.run(order, domains)
        logger.info("Done.")

        return IssuanceResult(
            account_url=account.url,
            order_url=order.uri,
            domains=tuple(domains),
            chain=tuple(chain),
            certificate_path=config.cert_file,
            key_path=config.key_file
        )

    def fulfiller(self, url: str, barrier: CompletionBarrier, cancelled: threading.Event) -> ChallengeFulfiller:
        """Builds the worker for one authorization URL."""
        return ChallengeFulfiller(
            self.transport,
            url,
            barrier,
            self.txt_lookup,
            publisher=self.publisher,
            cancelled=cancelled,
            propagation_timeout=self.config.propagation_timeout,
            propagation_interval=self.config.propagation_interval,
            validation_timeout=self.config.timeout,
            poll_interval=self.poll_interval
        )

    def authorize(self, order: messages.OrderResource) -> list:
        """
        Fulfills every authorization of `order` concurrently and blocks until all of them are valid. When one worker
        fails, or the deadline passes, the remaining workers are cancelled and the failure is raised without waiting
        for workers still blocked in a DNS lookup, hook or request.

        Returns:
            list: The authorized domains, in completion order.
        """
        urls = list(order.body.authorizations)
        if len(urls) != len(self.config.domains):
            logger.warning("Order lists %d authorizations for %d domains", len(urls), len(self.config.domains))

        barrier = CompletionBarrier(len(urls))
        cancelled = threading.Event()
        max_workers = self.config.max_workers or len(urls)

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dns01")
        futures = [executor.submit(self.fulfiller(url, barrier, cancelled).run) for url in urls]
        try:
            completed = barrier.wait(timeout=self.config.timeout)
        except Exception as err:
            # Stalled workers stop at their next cancellation check
            cancelled.set()
            executor.shutdown(wait=False, cancel_futures=True)
            self.log_sibling_failures(futures, err)
            raise
        executor.shutdown(wait=True)

        logger.info("All %d authorizations valid: %s", len(completed), completed)
        return completed

    @staticmethod
    def log_sibling_failures(futures: list, primary: Exception) -> None:
        """Logs failures of already finished workers other than the one being raised."""
        for future in futures:
            if not future.done() or future.cancelled():
                continue
            error = future.exception()
            if error is not None and error is not primary and not isinstance(error, errors.IssuanceCancelled):
                logger.warning("Additional authorization failure: %s", error)


def issue(config: IssuerConfig) -> IssuanceResult:
    """Shorthand for `Issuer(config).issue()`."""
    return Issuer(config).issue()
