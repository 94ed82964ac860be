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
"""Immutable configuration for a certificate issuance run."""
import dataclasses
from typing import Optional, Tuple

import validators

from . import errors
from .tools import strip_wildcard

LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
USER_AGENT = "acme_dns_issuer/1.0.0"


def split_list(value: Optional[str]) -> Tuple[str, ...]:
    """Splits a comma separated string into a tuple of stripped, non-empty items."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclasses.dataclass(frozen=True)
class IssuerConfig:
    """
    Everything an issuance run needs to know. Instances are immutable and passed explicitly to `Issuer`.

    Attributes:
        domains (tuple): The domains to request a certificate for. The first one becomes the subject common name.
        directory (str): The ACME directory URL to interact with.
        contacts (tuple): Email addresses to register with the account. The `mailto:` prefix is added automatically.
        account_file (str): The JSON file the account is loaded from and saved to.
        cert_file (str): The file the PEM encoded certificate chain is written to.
        key_file (str): The file the PEM encoded certificate private key is written to.
        nameservers (tuple): DNS servers to query when checking TXT records. Empty uses the system's resolvers.
        authoritative (bool): Query the authoritative nameserver of each record instead of `nameservers`.
        propagation_timeout (int): The amount of time (in seconds) to keep polling a TXT record for the expected value.
            The default of `0` performs a single immediate check.
        propagation_interval (int): The amount of time (in seconds) between TXT polls.
        timeout (int): The amount of time (in seconds) allowed for every authorization to become valid, and again for
            the order to be finalized.
        max_workers (int): The upper bound of concurrent challenge workers. `0` runs one worker per authorization.
        verify_ssl (bool): Verify the SSL certificate of the ACME server.
        user_agent (str): The user agent sent to the ACME server.
        dns_hook (str): An optional command run to publish each TXT record before it is checked.
    """
    # pylint: disable=too-many-instance-attributes
    domains: Tuple[str, ...]
    directory: str = LETSENCRYPT_STAGING
    contacts: Tuple[str, ...] = ()
    account_file: str = "account.json"
    cert_file: str = "cert.pem"
    key_file: str = "key.pem"
    nameservers: Tuple[str, ...] = ()
    authoritative: bool = False
    propagation_timeout: int = 0
    propagation_interval: int = 2
    timeout: int = 300
    max_workers: int = 0
    verify_ssl: bool = True
    user_agent: str = USER_AGENT
    dns_hook: Optional[str] = None

    @classmethod
    def from_strings(cls, domains: str, contacts: str = "", **kwargs) -> "IssuerConfig":
        """
        Builds a configuration from comma separated domain and contact lists.

        Args:
            domains (str): A comma separated list of domains, e.g. `example.com,*.example.com`.
            contacts (str): A comma separated list of contact emails (without `mailto:`).
            **kwargs: Any other `IssuerConfig` attribute.

        Returns:
            IssuerConfig: The new configuration.

        Examples:
            >>> IssuerConfig.from_strings("example.com,*.example.com", "admin@example.com", cert_file="/tmp/cert.pem")
        """
        if "nameservers" in kwargs and isinstance(kwargs["nameservers"], str):
            kwargs["nameservers"] = split_list(kwargs["nameservers"])
        return cls(domains=split_list(domains), contacts=split_list(contacts), **kwargs)

    def validate(self) -> "IssuerConfig":
        """
        Checks the configuration before any network request is made.

        Returns:
            IssuerConfig: This configuration, so calls can be chained.

        Raises:
            acme_dns_issuer.errors.InvalidDomain: When no domain is set or a domain is not an RFC2181 hostname.
            acme_dns_issuer.errors.InvalidEmail: When a contact is not a valid email address.
            acme_dns_issuer.errors.ConfigurationError: When a numeric setting is out of range.
        """
        if not self.domains:
            raise errors.InvalidDomain("No domains provided.")

        for domain in self.domains:
            if not validators.domain(strip_wildcard(domain)):
                raise errors.InvalidDomain(f"Invalid domain name '{domain}'. Domain name must adhere to RFC2181.")

        for contact in self.contacts:
            if not validators.email(contact):
                raise errors.InvalidEmail(f"Value '{contact}' is not a valid email address.")

        if not self.directory:
            raise errors.ConfigurationError("No ACME directory URL provided.")
        if self.timeout <= 0:
            raise errors.ConfigurationError("The timeout must be a positive number of seconds.")
        if self.propagation_timeout < 0 or self.propagation_interval <= 0:
            raise errors.ConfigurationError("DNS propagation settings must be positive numbers of seconds.")
        if self.max_workers < 0:
            raise errors.ConfigurationError("max_workers cannot be negative.")

        return self
