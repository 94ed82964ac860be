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
"""Fulfills the DNS-01 challenge of a single authorization."""
import logging
import threading
import time

import dns.exception
from acme import challenges
from acme import messages

from . import errors
from .tools import strip_wildcard
from .transport import TRANSPORT_ERRORS

logger = logging.getLogger(__name__)


def is_proven(values: list, expected: str) -> bool:
    """
    Checks whether a set of TXT values proves control of a domain. Only an exact match counts.

    Args:
        values (list): The TXT values currently visible at the validation name.
        expected (str): The validation value derived from the key authorization.

    Returns:
        bool: True when at least one value equals `expected`.
    """
    return any(value == expected for value in values)


def select_dns01(authzr: messages.AuthorizationResource) -> messages.ChallengeBody:
    """
    Picks the DNS-01 challenge of an authorization.

    Raises:
        acme_dns_issuer.errors.ChallengeTypeMissing: When the authorization does not offer one.
    """
    for challb in authzr.body.challenges:
        if isinstance(challb.chall, challenges.DNS01):
            return challb

    domain = authzr.body.identifier.value if authzr.body.identifier else authzr.uri
    raise errors.ChallengeTypeMissing(f"Unable to find dns challenge for auth {domain}")


class ChallengeFulfiller:
    """
    Proves control of the domain behind one authorization URL. Each instance is meant to run in its own worker
    thread; the only state it shares with its siblings is the completion barrier and the cancellation event.
    """
    # pylint: disable=too-many-instance-attributes,too-many-arguments

    def __init__(
            self,
            transport,
            authorization_url: str,
            barrier,
            txt_lookup,
            publisher=None,
            cancelled: threading.Event = None,
            propagation_timeout: int = 0,
            propagation_interval: int = 2,
            validation_timeout: int = 300,
            poll_interval: int = 2
    ) -> None:
        """
        Args:
            transport (acme_dns_issuer.transport.ACMETransport): The transport bound to the account key.
            authorization_url (str): The authorization to fulfill.
            barrier (acme_dns_issuer.barrier.CompletionBarrier): The barrier to signal once the authorization is valid.
            txt_lookup (callable): Returns the TXT values visible at a record name.
            publisher (callable): Optional, called with the record name, value and domain before the TXT check.
            cancelled (threading.Event): Set by the coordinator to stop the worker between steps.
            propagation_timeout (int): The amount of time (in seconds) to keep polling the TXT record. `0` checks once.
            propagation_interval (int): The amount of time (in seconds) between TXT checks.
            validation_timeout (int): The amount of time (in seconds) to wait for the server to validate.
            poll_interval (int): The amount of time (in seconds) between authorization polls.
        """
        self.transport = transport
        self.authorization_url = authorization_url
        self.barrier = barrier
        self.txt_lookup = txt_lookup
        self.publisher = publisher
        self.cancelled = cancelled if cancelled is not None else threading.Event()
        self.propagation_timeout = propagation_timeout
        self.propagation_interval = propagation_interval
        self.validation_timeout = validation_timeout
        self.poll_interval = poll_interval

    def run(self) -> str:
        """
        Fulfills the authorization and signals the barrier. Any failure is handed to the barrier before it propagates,
        so the coordinator wakes up immediately.

        Returns:
            str: The domain identifier of the authorization.
        """
        try:
            domain = self.fulfill()
        except Exception as err:
            self.barrier.abort(err)
            raise

        self.barrier.signal(domain)
        return domain

    def fulfill(self) -> str:
        """
        Runs the DNS-01 steps for the authorization without touching the barrier.

        Returns:
            str: The domain identifier of the authorization.

        Raises:
            acme_dns_issuer.errors.ChallengeTypeMissing: When no DNS-01 challenge is offered.
            acme_dns_issuer.errors.ChallengeUnproven: When the TXT record does not hold the expected value.
            acme_dns_issuer.errors.ChallengeUpdateError: When the server rejects or invalidates the challenge.
            acme_dns_issuer.errors.IssuanceCancelled: When the coordinator cancelled the issuance.
        """
        authzr = self.fetch()
        domain = authzr.body.identifier.value
        logger.info("Fetched authorization: %s", domain)

        if authzr.body.status == messages.STATUS_VALID:
            logger.info("Authorization for %s is already valid", domain)
            return domain

        challb = select_dns01(authzr)
        name = self.transport.validation_domain_name(challb.chall, strip_wildcard(domain))
        expected = self.transport.validation(challb.chall)
        logger.info("%s : %s", name, expected)

        if self.publisher:
            self.publisher(name, expected, domain)
        self.verify(name, expected)

        self.check_cancelled()
        logger.info("Updating challenge for authorization %s: %s", domain, challb.uri)
        try:
            self.transport.update_challenge(challb)
        except TRANSPORT_ERRORS as err:
            raise errors.ChallengeUpdateError(f"Error updating authorization {domain} challenge: {err}") from err

        self.wait_until_valid(domain)
        logger.info("%s Challenge updated", domain)
        return domain

    def fetch(self) -> messages.AuthorizationResource:
        """Fetches the authorization, stopping first if the issuance was cancelled."""
        self.check_cancelled()
        logger.info("Fetching authorization: %s", self.authorization_url)
        try:
            return self.transport.fetch_authorization(self.authorization_url)
        except TRANSPORT_ERRORS as err:
            raise errors.ChallengeError(
                f"Error fetching authorization url '{self.authorization_url}': {err}"
            ) from err

    def verify(self, name: str, expected: str) -> list:
        """
        Checks the TXT record at `name` for `expected`. Without a propagation window the record is queried exactly
        once.

        Returns:
            list: The TXT values of the matching answer.

        Raises:
            acme_dns_issuer.errors.ChallengeUnproven: When no answer within the window holds `expected`.
            acme_dns_issuer.errors.ChallengeError: When the lookup itself fails.
        """
        deadline = time.monotonic() + self.propagation_timeout

        while True:
            self.check_cancelled()
            try:
                values = self.txt_lookup(name)
            except dns.exception.DNSException as err:
                raise errors.ChallengeError(f"Error looking up TXT record '{name}': {err}") from err
            if is_proven(values, expected):
                logger.debug("Token '%s' for '%s' found in %s", expected, name, values)
                return values

            logger.debug("Token '%s' for '%s' not found in %s", expected, name, values)
            if time.monotonic() >= deadline:
                raise errors.ChallengeUnproven(
                    f"TXT record '{name}' does not contain the expected value '{expected}'. Found {values}."
                )
            self.sleep(self.propagation_interval)

    def wait_until_valid(self, domain: str) -> None:
        """
        Polls the authorization until the server marks it valid.

        Raises:
            acme_dns_issuer.errors.ChallengeUpdateError: When the authorization becomes invalid.
            acme_dns_issuer.errors.ACMETimeout: When it is still pending after `validation_timeout` seconds.
        """
        deadline = time.monotonic() + self.validation_timeout

        while True:
            authzr = self.fetch()
            status = authzr.body.status
            if status == messages.STATUS_VALID:
                return
            if status not in (messages.STATUS_PENDING, messages.STATUS_PROCESSING):
                raise errors.ChallengeUpdateError(
                    f"Authorization for {domain} is {status}: {self.describe_failure(authzr)}"
                )
            if time.monotonic() >= deadline:
                raise errors.ACMETimeout(f"Authorization for {domain} still {status} after {self.validation_timeout}s.")
            self.sleep(self.poll_interval)

    @staticmethod
    def describe_failure(authzr: messages.AuthorizationResource) -> str:
        """Returns the error detail the server attached to a failed challenge, if any."""
        for challb in authzr.body.challenges:
            if challb.error is not None:
                return str(challb.error)
        return "no error detail provided"

    def check_cancelled(self) -> None:
        """
        Raises:
            acme_dns_issuer.errors.IssuanceCancelled: When the coordinator cancelled the issuance.
        """
        if self.cancelled.is_set():
            raise errors.IssuanceCancelled(f"Cancelled while fulfilling '{self.authorization_url}'.")

    def sleep(self, seconds: float) -> None:
        """Waits `seconds`, waking up early to stop if the issuance is cancelled."""
        if self.cancelled.wait(seconds):
            self.check_cancelled()
