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
"""Tests configuration parsing and validation of the acme_dns_issuer package."""
import dataclasses
import unittest

import acme_dns_issuer
from acme_dns_issuer.tests import TEST_DOMAINS, TEST_EMAIL


class TestIssuerConfig(unittest.TestCase):
    """Checks configuration parsing and validation."""

    def test_from_strings(self):
        """Checks comma separated values are split and stripped."""
        config = acme_dns_issuer.IssuerConfig.from_strings(
            " example.test, *.example.test ,",
            f"{TEST_EMAIL},",
            nameservers="192.0.2.1, 192.0.2.2"
        )

        self.assertEqual(config.domains, tuple(TEST_DOMAINS))
        self.assertEqual(config.contacts, (TEST_EMAIL,))
        self.assertEqual(config.nameservers, ("192.0.2.1", "192.0.2.2"))
        self.assertIs(config.validate(), config)

    def test_immutable(self):
        """Checks a configuration cannot be changed once built."""
        config = acme_dns_issuer.IssuerConfig(domains=tuple(TEST_DOMAINS))

        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.domains = ("other.example.test",)

    def test_domain_validation(self):
        """Checks that validation of the domains is performed."""
        # Ensure domains validation fails if no domains are set
        with self.assertRaises(acme_dns_issuer.errors.InvalidDomain):
            acme_dns_issuer.IssuerConfig.from_strings("").validate()

        # Ensure wildcard value gets stripped and that the remaining value is an FQDN
        with self.assertRaises(acme_dns_issuer.errors.InvalidDomain):
            acme_dns_issuer.IssuerConfig.from_strings("*.INVALID!!!").validate()

    def test_email_validation(self):
        """Checks that validation of the contacts is performed."""
        with self.assertRaises(acme_dns_issuer.errors.InvalidEmail):
            acme_dns_issuer.IssuerConfig.from_strings("example.test", "Not a valid email address!").validate()

    def test_numeric_validation(self):
        """Checks out of range timeouts and worker counts are refused."""
        for kwargs in ({"timeout": 0}, {"propagation_timeout": -1}, {"propagation_interval": 0}, {"max_workers": -1}):
            config = acme_dns_issuer.IssuerConfig(domains=tuple(TEST_DOMAINS), **kwargs)
            with self.assertRaises(acme_dns_issuer.errors.ConfigurationError):
                config.validate()


if __name__ == "__main__":
    unittest.main()
