# Copyright 2025 Jared Hendrickson
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
"""Tests the ACME transport without a network by mocking the signed client network."""
import unittest
from unittest import mock

import josepy as jose
import requests
from acme import messages
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec, rsa

import acme_dns_issuer
from acme_dns_issuer.finalizer import encode_chain
from acme_dns_issuer.tests import TEST_DIRECTORY, TEST_EMAIL
from acme_dns_issuer.tests.tools import ACME_HOST, make_chain
from acme_dns_issuer.transport import ACMETransport, PEM_CHAIN_CONTENT_TYPE

DIRECTORY = {
    "newNonce": f"{ACME_HOST}/new-nonce",
    "newAccount": f"{ACME_HOST}/new-account",
    "newOrder": f"{ACME_HOST}/new-order",
}


def make_transport(**kwargs) -> ACMETransport:
    """Returns a transport with a known directory and a mocked client network."""
    transport = ACMETransport(TEST_DIRECTORY, backoff=0, **kwargs)
    transport.directory = messages.Directory.from_json(DIRECTORY)
    transport.net = mock.Mock()
    return transport


class TestACMETransport(unittest.TestCase):
    """Checks each round trip builds the expected request."""

    def test_unbound_client(self):
        """Checks signed requests cannot be made before an account key is bound."""
        with self.assertRaises(acme_dns_issuer.errors.ConfigurationError):
            return ACMETransport(TEST_DIRECTORY).acme_client

    @mock.patch("acme_dns_issuer.transport.client.ClientV2.get_directory")
    def test_discover_unreachable(self, get_directory):
        """Checks a directory that cannot be fetched raises DirectoryUnreachable."""
        get_directory.side_effect = requests.exceptions.ConnectionError("connection refused")

        with self.assertRaises(acme_dns_issuer.errors.DirectoryUnreachable):
            ACMETransport(TEST_DIRECTORY, attempts=1).discover()

    @mock.patch("acme_dns_issuer.transport.client.ClientV2.get_directory")
    def test_discover_retries_transient_errors(self, get_directory):
        """Checks a dropped connection is retried before the directory is returned."""
        directory = messages.Directory.from_json(DIRECTORY)
        get_directory.side_effect = [requests.exceptions.ConnectionError("reset"), directory]

        transport = ACMETransport(TEST_DIRECTORY, backoff=0)
        self.assertIs(transport.discover(), directory)
        self.assertEqual(get_directory.call_count, 2)

    def test_non_transient_errors_not_retried(self):
        """Checks ACME problem documents are raised on the first attempt."""
        func = mock.Mock(side_effect=messages.Error.with_code("malformed"))

        with self.assertRaises(messages.Error):
            make_transport()._call(func)
        self.assertEqual(func.call_count, 1)

    def test_lock_released_between_attempts(self):
        """Checks other workers can issue requests while a failed attempt waits to be retried."""
        transport = make_transport()
        func = mock.Mock(side_effect=[requests.exceptions.ConnectionError("reset"), "ok"])
        held_during_backoff = []

        with mock.patch("acme_dns_issuer.tools.time.sleep") as sleep:
            sleep.side_effect = lambda seconds: held_during_backoff.append(transport._lock.locked())
            self.assertEqual(transport._call(func), "ok")    # pylint: disable=protected-access

        self.assertEqual(held_during_backoff, [False])
        self.assertEqual(func.call_count, 2)

    @mock.patch("acme_dns_issuer.transport.client.ClientV2.get_directory")
    def test_bind_algorithm(self, get_directory):
        """Checks EC account keys sign with ES256 and RSA account keys with RS256."""
        get_directory.return_value = messages.Directory.from_json(DIRECTORY)
        transport = ACMETransport(TEST_DIRECTORY)

        transport.bind(jose.JWKEC(key=ec.generate_private_key(ec.SECP256R1(), default_backend())))
        self.assertEqual(transport.net.alg, jose.ES256)
        self.assertIsNotNone(transport.acme_client)

        transport.bind(jose.JWKRSA(key=rsa.generate_private_key(65537, 2048, default_backend())))
        self.assertEqual(transport.net.alg, jose.RS256)
        self.assertEqual(get_directory.call_count, 1)

    def test_new_order_preserves_identifiers(self):
        """Checks identifiers are posted in the requested order and the order URL comes from the Location header."""
        transport = make_transport()
        domains = ["www.example.test", "example.test", "*.example.test"]
        transport.net.post.return_value = mock.Mock(
            headers={"Location": f"{ACME_HOST}/order/7"},
            json=mock.Mock(return_value={
                "status": "pending",
                "identifiers": [{"type": "dns", "value": domain} for domain in domains],
                "authorizations": [f"{ACME_HOST}/authz/{i}" for i in range(3)],
                "finalize": f"{ACME_HOST}/order/7/finalize",
            })
        )

        order = transport.new_order(domains)

        args, kwargs = transport.net.post.call_args
        self.assertEqual(args[0], DIRECTORY["newOrder"])
        self.assertEqual([identifier.value for identifier in args[1].identifiers], domains)
        self.assertEqual(kwargs["new_nonce_url"], DIRECTORY["newNonce"])
        self.assertEqual(order.uri, f"{ACME_HOST}/order/7")
        self.assertEqual(len(order.body.authorizations), 3)

    def test_update_account(self):
        """Checks the persisted account URL is used and the contacts are sent as mailto URIs."""
        transport = make_transport()
        transport._client = mock.Mock()    # pylint: disable=protected-access
        url = f"{ACME_HOST}/acct/1"

        transport.update_account(url, (TEST_EMAIL,))

        regr, update = transport.acme_client.update_registration.call_args[0]
        self.assertEqual(regr.uri, url)
        self.assertEqual(transport.net.account, regr)
        self.assertEqual(update.contact, (f"mailto:{TEST_EMAIL}",))

    def test_new_account_agrees_to_terms(self):
        """Checks new registrations agree to the terms of service."""
        transport = make_transport()
        transport._client = mock.Mock()    # pylint: disable=protected-access

        transport.new_account((TEST_EMAIL,))

        registration = transport.acme_client.new_account.call_args[0][0]
        self.assertTrue(registration.terms_of_service_agreed)
        self.assertEqual(registration.contact, (f"mailto:{TEST_EMAIL}",))

    def test_fetch_certificates(self):
        """Checks the PEM chain is requested with its content type and parsed leaf first."""
        transport = make_transport()
        chain = make_chain("example.test")
        transport.net.post.return_value = mock.Mock(text=encode_chain(chain).decode())

        self.assertEqual(transport.fetch_certificates(f"{ACME_HOST}/cert/1"), chain)
        _, kwargs = transport.net.post.call_args
        self.assertEqual(kwargs["content_type"], PEM_CHAIN_CONTENT_TYPE)


if __name__ == "__main__":
    unittest.main()
