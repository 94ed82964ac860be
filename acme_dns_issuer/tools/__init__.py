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
"""DNS, file and retry tools to assist ACME verification."""
import logging
import os
import pathlib
import shlex
import subprocess
import time

import dns.exception
import dns.resolver

from .. import errors

logger = logging.getLogger(__name__)


def strip_wildcard(domain: str) -> str:
    """
    Strips the wildcard portion of a domain (*.) if present.

    Args:
        domain (str): The domain string to strip wildcards from.

    Returns:
        str: The domain string without the wildcard portion.
    """
    return domain[2:] if domain.startswith("*.") else domain


def write_private_file(path: str, data: bytes) -> None:
    """
    Writes data to a file readable and writable only by its owner (0600). Existing files are truncated.

    Args:
        path (str): The file path to write.
        data (bytes): The content to write.
    """
    filepath = pathlib.Path(path)
    fd = os.open(str(filepath), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as private_file:
        private_file.write(data)
    # The mode passed to os.open() does not apply to files that already existed
    os.chmod(str(filepath), 0o600)


def retry(func, attempts: int = 3, backoff: float = 1.0, retry_on: tuple = (), max_delay: float = 30.0):
    """
    Calls `func` until it succeeds, retrying only on the exception types listed in `retry_on`. The wait between
    attempts doubles after each failure and is capped at `max_delay`.

    Args:
        func (callable): A callable taking no arguments.
        attempts (int): The maximum number of calls to make, including the first one.
        backoff (float): The amount of time (in seconds) to wait after the first failure.
        retry_on (tuple): Exception types considered transient.
        max_delay (float): The upper bound (in seconds) for a single wait.

    Returns:
        The return value of `func`.
    """
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as err:
            if attempt >= attempts:
                raise
            delay = min(backoff * (2 ** (attempt - 1)), max_delay)
            logger.warning("Transient error (attempt %d/%d), retrying in %.1fs: %s", attempt, attempts, delay, err)
            time.sleep(delay)
            attempt += 1


class HookPublisher:
    """
    Runs an external command to publish a DNS-01 TXT record before it is checked. The command receives the record
    through the `ACME_DNS_NAME`, `ACME_DNS_VALUE` and `ACME_DNS_DOMAIN` environment variables.
    """

    def __init__(self, command: str, timeout: int = 120) -> None:
        self.command = shlex.split(command)
        self.timeout = timeout

    def __call__(self, name: str, value: str, domain: str) -> None:
        env = dict(os.environ, ACME_DNS_NAME=name, ACME_DNS_VALUE=value, ACME_DNS_DOMAIN=domain)
        logger.info("Running DNS hook for %s", name)
        try:
            subprocess.run(self.command, env=env, check=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as err:
            raise errors.ChallengeError(f"DNS hook failed for '{name}': {err}") from err


class DNSQuery:
    """A basic class to make DNS queries"""

    def __init__(
        self,
        domain: str,
        rtype: str = "A",
        nameservers: list = None,
        authoritative: bool = False,
        round_robin: bool = False
    ) -> None:
        """
        Initializes our DNS query. Nothing is sent until `resolve()` is called.

        Args:
            domain (str): The fully qualified domain name to query.
            rtype (str): The DNS request type (e.g. `A`, `TXT`, `CNAME`, etc.).
            nameservers (list): Nameservers to query when making DNS requests.
            authoritative (bool): Use the authoritative nameserver for the domain.
            round_robin (bool): rotate between each nameserver instead of the default fail-over method.
        """
        self.round_robin = round_robin
        self.type = rtype.upper()
        self.domain = domain
        self.nameservers = list(nameservers) if nameservers else dns.resolver.Resolver().nameservers
        self.nameservers = self.__get_authoritative_nameservers__() if authoritative else self.nameservers
        self.values = []
        self.last_nameserver = ""

    def resolve(self) -> list:
        """
        Queries the nameservers with our configured object values.

        Returns:
            list: The answer values. TXT values have their character-strings joined, as a DNS-01 validator reads them.
        """
        try:
            self.values = self.__resolve__(self.domain, rtype=self.type, nameservers=self.nameservers)
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            self.values = []
        except dns.exception.DNSException as err:
            logger.debug("DNS query for %s %s failed: %s", self.type, self.domain, err)
            self.values = []

        # Rotate the nameservers if round robin mode is enabled
        if self.round_robin and len(self.nameservers) > 1:
            self.last_nameserver = self.nameservers[0]
            self.nameservers = self.nameservers[1:] + [self.last_nameserver]

        logger.debug("%s %s -> %s", self.type, self.domain, self.values)
        return self.values

    def __get_authoritative_nameservers__(self) -> list:
        """
        Checks the domain's SOA record for the authoritative nameserver of this domain.

        Returns:
            list: The addresses of the authoritative nameserver, or the configured nameservers if none was found or
                the lookup failed.
        """
        mname = None
        domain_sections = self.domain.split(".")

        # Walk up the labels until a zone apex answers with an SOA record
        try:
            while domain_sections:
                domain = ".".join(domain_sections)
                try:
                    answer = self.__query__(domain, "SOA", self.nameservers)
                    mname = answer[0].mname.to_text().rstrip(".")
                    break
                except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
                    domain_sections.pop(0)

            addresses = self.__resolve__(mname, rtype="A", nameservers=self.nameservers) if mname else []
        except dns.exception.DNSException as err:
            logger.debug("Authoritative nameserver lookup for %s failed: %s", self.domain, err)
            addresses = []

        return addresses or self.nameservers

    @staticmethod
    def __query__(domain: str, rtype: str, nameservers: list):
        resolver = dns.resolver.Resolver()
        resolver.nameservers = nameservers if nameservers else resolver.nameservers
        return resolver.resolve(domain, rtype)

    @staticmethod
    def __resolve__(domain: str, rtype: str = "A", nameservers: list = None) -> list:
        """
        Internal function-like DNS request method.

        Returns:
             list: A list of answer values from the request.
        """
        values = []
        for rdata in DNSQuery.__query__(domain, rtype, nameservers):
            if rtype.upper() == "TXT":
                values.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
            else:
                values.append(rdata.to_text())

        return list(filter(None, values))


def txt_lookup(nameservers: list = None, authoritative: bool = False, round_robin: bool = True):
    """
    Builds a TXT lookup callable backed by `DNSQuery`. One query object is kept per record name so repeated lookups
    of the same name rotate through the nameservers.

    Args:
        nameservers (list): Nameservers to query. If empty, the system's resolvers are used.
        authoritative (bool): Query the authoritative nameserver of each record instead.
        round_robin (bool): Rotate between each nameserver on repeated lookups.

    Returns:
        callable: A function taking a record name and returning the list of TXT values currently visible.
    """
    queries = {}

    def lookup(name: str) -> list:
        if name not in queries:
            queries[name] = DNSQuery(
                name,
                rtype="TXT",
                nameservers=nameservers,
                authoritative=authoritative,
                round_robin=round_robin
            )
        return queries[name].resolve()

    return lookup
