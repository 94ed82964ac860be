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
"""Generates the certificate key and CSR, finalizes the order and saves the issued chain."""
import logging
import time

from acme import messages
from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, NoEncryption
from cryptography.x509.oid import NameOID

from . import errors
from .order import OrderOrchestrator
from .tools import write_private_file
from .transport import TRANSPORT_ERRORS

logger = logging.getLogger(__name__)


def make_csr(private_key: ec.EllipticCurvePrivateKey, domains: list) -> bytes:
    """
    Builds a CSR whose common name is the first domain and whose subject alternative names are all of `domains`.

    Args:
        private_key (cryptography.hazmat.primitives.asymmetric.ec.EllipticCurvePrivateKey): The certificate key.
        domains (list): The domains to request, primary name first.

    Returns:
        bytes: The PEM encoded CSR.
    """
    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    ).add_extension(
        x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains]),
        critical=False
    )
    return builder.sign(private_key, hashes.SHA256(), default_backend()).public_bytes(Encoding.PEM)


def encode_chain(chain: list) -> bytes:
    """Encodes certificates as a single PEM document, one trimmed block per certificate, in the given order."""
    blocks = [certificate.public_bytes(Encoding.PEM).decode().strip() for certificate in chain]
    return "\n".join(blocks).encode()


class CertificateFinalizer:
    """Turns a fully authorized order into a certificate chain and key on disk."""

    def __init__(self, transport, key_file: str, cert_file: str, timeout: int = 300, poll_interval: int = 2) -> None:
        """
        Args:
            transport (acme_dns_issuer.transport.ACMETransport): The transport bound to the account key.
            key_file (str): The file the PEM encoded certificate private key is written to.
            cert_file (str): The file the PEM encoded certificate chain is written to.
            timeout (int): The amount of time (in seconds) to wait for the order to become valid.
            poll_interval (int): The amount of time (in seconds) between order polls.
        """
        self.transport = transport
        self.key_file = key_file
        self.cert_file = cert_file
        self.timeout = timeout
        self.poll_interval = poll_interval

    def run(self, order: messages.OrderResource, domains: list) -> list:
        """
        Finalizes `order` for `domains` and saves the key and the chain.

        Args:
            order (acme.messages.OrderResource): An order whose authorizations are all valid.
            domains (list): The requested domains, primary name first.

        Returns:
            list: The issued `cryptography.x509.Certificate` chain, leaf first.

        Raises:
            acme_dns_issuer.errors.FinalizationError: When the domains do not match the order or the CSR is rejected.
            acme_dns_issuer.errors.FetchError: When the chain cannot be downloaded or parsed.
        """
        identifiers = set(OrderOrchestrator.identifiers(order))
        if set(domains) != identifiers:
            raise errors.FinalizationError(
                f"Requested domains {sorted(set(domains))} do not match order identifiers {sorted(identifiers)}."
            )

        logger.info("Generating certificate private key")
        private_key = ec.generate_private_key(ec.SECP256R1(), default_backend())
        self.write_key(private_key)

        logger.info("Creating csr")
        csr_pem = make_csr(private_key, list(domains))

        order = self.finalize(order, csr_pem)
        chain = self.fetch_chain(order)
        self.write_chain(chain)
        return chain

    def write_key(self, private_key: ec.EllipticCurvePrivateKey) -> bytes:
        """Writes the key as a PEM `EC PRIVATE KEY` block readable only by its owner."""
        key_pem = private_key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption()
        )
        logger.info("Writing key file: %s", self.key_file)
        try:
            write_private_file(self.key_file, key_pem)
        except OSError as err:
            raise errors.FinalizationError(f"Error writing key file '{self.key_file}': {err}") from err
        return key_pem

    def finalize(self, order: messages.OrderResource, csr_pem: bytes) -> messages.OrderResource:
        """
        Submits the CSR and polls the order until the server reports a certificate URL.

        Raises:
            acme_dns_issuer.errors.FinalizationError: When the CSR is rejected or the order becomes invalid.
            acme_dns_issuer.errors.ACMETimeout: When no certificate is ready after `timeout` seconds.
        """
        logger.info("Finalising order: %s", order.uri)
        try:
            order = self.transport.finalize_order(order, csr_pem)
        except TRANSPORT_ERRORS as err:
            raise errors.FinalizationError(f"Error finalizing order: {err}") from err

        deadline = time.monotonic() + self.timeout
        while not (order.body.status == messages.STATUS_VALID and order.body.certificate):
            if order.body.status == messages.STATUS_INVALID:
                raise errors.FinalizationError(f"Order '{order.uri}' is invalid: {order.body.error}")
            if time.monotonic() >= deadline:
                raise errors.ACMETimeout(f"Order '{order.uri}' not finalized after {self.timeout}s.")
            time.sleep(self.poll_interval)
            try:
                order = self.transport.fetch_order(order)
            except TRANSPORT_ERRORS as err:
                raise errors.FinalizationError(f"Error polling order '{order.uri}': {err}") from err

        return order

    def fetch_chain(self, order: messages.OrderResource) -> list:
        """
        Downloads the chain of a valid order.

        Raises:
            acme_dns_issuer.errors.FetchError: On transport failure, parse failure or an empty chain.
        """
        logger.info("Fetching certificate: %s", order.body.certificate)
        try:
            chain = self.transport.fetch_certificates(order.body.certificate)
        except TRANSPORT_ERRORS as err:
            raise errors.FetchError(f"Error fetching order certificates: {err}") from err

        if not chain:
            raise errors.FetchError(f"No certificates returned from '{order.body.certificate}'.")
        return chain

    def write_chain(self, chain: list) -> bytes:
        """Writes the chain as a single PEM document readable only by its owner."""
        cert_pem = encode_chain(chain)
        logger.info("Saving certificate to: %s", self.cert_file)
        try:
            write_private_file(self.cert_file, cert_pem)
        except OSError as err:
            raise errors.FetchError(f"Error writing certificate file '{self.cert_file}': {err}") from err
        return cert_pem
