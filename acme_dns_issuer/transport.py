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
A thin adapter over `acme.client.ClientV2`. JWS signing, nonces and the HTTP exchange stay inside the `acme` package;
this module only exposes the handful of round trips an issuance needs, retries transient network failures and
serializes signed requests so that concurrent challenge workers can share one client.
"""
import logging
import threading

import josepy as jose
import requests
from acme import challenges
from acme import client
from acme import errors as acme_errors
from acme import messages
from cryptography import x509

from . import errors
from .config import USER_AGENT
from .tools import retry

logger = logging.getLogger(__name__)

PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"

# Everything a round trip through the acme package can raise
TRANSPORT_ERRORS = (
    messages.Error,
    acme_errors.Error,
    jose.DeserializationError,
    requests.exceptions.RequestException,
    ValueError,
)
TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


class ACMETransport:
    """
    Issues ACME requests against a single directory on behalf of a single account key.
    """

    def __init__(
            self,
            directory_url: str,
            verify_ssl: bool = True,
            user_agent: str = USER_AGENT,
            attempts: int = 3,
            backoff: float = 1.0
    ) -> None:
        """
        Args:
            directory_url (str): The ACME directory URL.
            verify_ssl (bool): Verify the SSL certificate of the ACME server.
            user_agent (str): The user agent sent with each request.
            attempts (int): Calls made per round trip when transient network errors occur.
            backoff (float): The initial wait (in seconds) between those calls.
        """
        self.directory_url = directory_url
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.attempts = attempts
        self.backoff = backoff
        self.directory = None
        self.key = None
        self.net = None
        self._client = None
        self._lock = threading.Lock()

    def _call(self, func):
        """Runs one round trip, retrying transient network errors. Only each attempt holds the request lock."""
        def attempt():
            with self._lock:
                return func()

        return retry(attempt, attempts=self.attempts, backoff=self.backoff, retry_on=TRANSIENT_ERRORS)

    @property
    def acme_client(self) -> client.ClientV2:
        """
        The bound `acme.client.ClientV2` object.

        Raises:
            acme_dns_issuer.errors.ConfigurationError: When `bind()` has not been called yet.
        """
        if self._client is None:
            raise errors.ConfigurationError("No account key bound. Call bind() before issuing ACME requests.")
        return self._client

    def discover(self) -> messages.Directory:
        """
        Fetches the ACME directory.

        Returns:
            acme.messages.Directory: The directory resource.

        Raises:
            acme_dns_issuer.errors.DirectoryUnreachable: When the directory cannot be fetched or parsed.
        """
        logger.info("Connecting to acme directory url: %s", self.directory_url)
        net = client.ClientNetwork(None, verify_ssl=self.verify_ssl, user_agent=self.user_agent)
        try:
            self.directory = self._call(lambda: client.ClientV2.get_directory(self.directory_url, net))
        except TRANSPORT_ERRORS as err:
            raise errors.DirectoryUnreachable(
                f"Error connecting to acme directory '{self.directory_url}': {err}"
            ) from err
        return self.directory

    def bind(self, key: jose.JWK) -> None:
        """
        Binds an account key to the transport. Every signed request made afterwards uses this key.

        Args:
            key (josepy.JWK): The account key. EC keys are signed with ES256, RSA keys with RS256.
        """
        if self.directory is None:
            self.discover()
        alg = jose.ES256 if isinstance(key, jose.JWKEC) else jose.RS256
        self.key = key
        self.net = client.ClientNetwork(key, alg=alg, verify_ssl=self.verify_ssl, user_agent=self.user_agent)
        self._client = client.ClientV2(self.directory, net=self.net)

    def _post(self, url: str, obj=None, **kwargs) -> requests.Response:
        """Signs and posts `obj` to `url`. A `None` body sends a POST-as-GET request."""
        return self.net.post(url, obj, new_nonce_url=self.directory["newNonce"], **kwargs)

    def new_account(self, contacts: tuple = ()) -> messages.RegistrationResource:
        """
        Registers the bound key as a new account, agreeing to the server's terms of service.

        Args:
            contacts (tuple): Contact email addresses, without the `mailto:` prefix.
        """
        registration = messages.NewRegistration.from_data(
            email=",".join(contacts) if contacts else None,
            terms_of_service_agreed=True
        )
        return self._call(lambda: self.acme_client.new_account(registration))

    def update_account(self, url: str, contacts: tuple = ()) -> messages.RegistrationResource:
        """
        Looks up the account registered for the bound key and updates its contacts.

        Args:
            url (str): The persisted account URL.
            contacts (tuple): Contact email addresses, without the `mailto:` prefix. Empty leaves them unchanged.
        """
        regr = messages.RegistrationResource(uri=url, body=messages.Registration())
        update = messages.Registration.from_data(email=",".join(contacts)) if contacts else None
        self.net.account = regr
        return self._call(lambda: self.acme_client.update_registration(regr, update))

    def new_order(self, domains: list) -> messages.OrderResource:
        """
        Creates an order for `dns` identifiers, preserving the order of `domains`. Unlike
        `acme.client.ClientV2.new_order()`, no CSR is needed at this point.
        """
        identifiers = tuple(messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain) for domain in domains)
        order = messages.NewOrder(identifiers=identifiers)
        response = self._call(lambda: self._post(self.directory["newOrder"], order))
        body = messages.Order.from_json(response.json())
        return messages.OrderResource(body=body, uri=response.headers.get("Location"))

    def fetch_order(self, orderr: messages.OrderResource) -> messages.OrderResource:
        """Refreshes the order body from the server."""
        response = self._call(lambda: self._post(orderr.uri))
        return orderr.update(body=messages.Order.from_json(response.json()))

    def fetch_authorization(self, url: str) -> messages.AuthorizationResource:
        """Fetches the authorization found at `url`."""
        authzr = messages.AuthorizationResource(uri=url, body=messages.Authorization())
        updated, _ = self._call(lambda: self.acme_client.poll(authzr))
        return updated

    def update_challenge(self, challb: messages.ChallengeBody) -> messages.ChallengeResource:
        """Tells the server the challenge is ready to be validated."""
        return self._call(lambda: self.acme_client.answer_challenge(challb, challb.response(self.key)))

    def finalize_order(self, orderr: messages.OrderResource, csr_pem: bytes) -> messages.OrderResource:
        """Submits the PEM encoded CSR to the order's finalize URL and returns the updated order."""
        return self._call(lambda: self.acme_client.begin_finalization(orderr.update(csr_pem=csr_pem)))

    def fetch_certificates(self, url: str) -> list:
        """
        Downloads the certificate chain at `url`.

        Returns:
            list: `cryptography.x509.Certificate` objects in the order returned by the server, leaf first.
        """
        response = self._call(lambda: self._post(url, content_type=PEM_CHAIN_CONTENT_TYPE))
        return x509.load_pem_x509_certificates(response.text.encode())

    def validation(self, chall: challenges.DNS01) -> str:
        """Returns the TXT value proving the key authorization of `chall` for the bound key."""
        return chall.validation(self.key)

    @staticmethod
    def validation_domain_name(chall: challenges.DNS01, domain: str) -> str:
        """Returns the name the TXT record must be published at, e.g. `_acme-challenge.example.com`."""
        return chall.validation_domain_name(domain)
