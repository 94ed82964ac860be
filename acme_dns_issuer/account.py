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
"""Loads, creates and persists the ACME account used to request certificates."""
import json
import logging
import pathlib

import josepy as jose
from acme import messages
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec

from . import errors
from .tools import write_private_file
from .transport import TRANSPORT_ERRORS

logger = logging.getLogger(__name__)


class Account:
    """An ACME account: its URL on the server and the key pair that signs its requests."""

    def __init__(self, url: str, key: jose.JWKEC, regr: messages.RegistrationResource = None) -> None:
        self.url = url
        self.key = key
        self.regr = regr

    def to_json(self, directory: str = None) -> dict:
        """
        Serializes the account. The key is stored as an RFC 7517 JWK, i.e. the curve name and the encoded
        coordinates and private scalar.
        """
        return {"url": self.url, "directory": directory, "key": self.key.to_json()}

    @classmethod
    def from_json(cls, data: dict) -> "Account":
        """
        Rebuilds an account from `to_json()` output.

        Raises:
            acme_dns_issuer.errors.CorruptState: When the data does not hold a URL and a private EC key.
        """
        try:
            url = data["url"]
            key = jose.JWK.from_json(data["key"])
        except (KeyError, TypeError, ValueError, jose.DeserializationError) as err:
            raise errors.CorruptState(f"Error reading account data: {err}") from err

        if not url or not isinstance(key, jose.JWKEC) or "d" not in data["key"]:
            raise errors.CorruptState("Account data does not contain a URL and an EC private key.")

        return cls(url=url, key=key)


class AccountManager:
    """
    Loads the account persisted in `account_file`, or registers and persists a new one.
    """

    def __init__(self, transport, account_file: str, contacts: tuple = ()) -> None:
        """
        Args:
            transport (acme_dns_issuer.transport.ACMETransport): The transport to bind the account key to.
            account_file (str): The JSON file the account is loaded from and saved to.
            contacts (tuple): Contact email addresses, without the `mailto:` prefix.
        """
        self.transport = transport
        self.account_file = pathlib.Path(account_file)
        self.contacts = tuple(contacts)

    def load(self) -> Account:
        """
        Loads the persisted account and re-synchronizes it with the ACME server, refreshing its contacts.

        Returns:
            Account: The loaded account.

        Raises:
            acme_dns_issuer.errors.NotFound: When the account file does not exist.
            acme_dns_issuer.errors.CorruptState: When the account file cannot be parsed.
            acme_dns_issuer.errors.AccountSyncError: When the server refuses the account update.
        """
        if not self.account_file.exists():
            raise errors.NotFound(f"No account file found at '{self.account_file}'")

        try:
            data = json.loads(self.account_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            raise errors.CorruptState(f"Error reading account file '{self.account_file}': {err}") from err

        if not isinstance(data, dict):
            raise errors.CorruptState(f"Account file '{self.account_file}' does not contain a JSON object.")

        account = Account.from_json(data)
        self.transport.bind(account.key)

        try:
            account.regr = self.transport.update_account(account.url, self.contacts)
        except TRANSPORT_ERRORS as err:
            raise errors.AccountSyncError(f"Error updating existing account: {err}") from err

        # The server may know the key under a different URL than the one persisted
        account.url = account.regr.uri or account.url
        return account

    def create(self) -> Account:
        """
        Generates a new account key, registers it with the ACME server and persists the account. By running this
        method, you are agreeing to the ACME server's terms of use.

        Returns:
            Account: The new account.

        Raises:
            acme_dns_issuer.errors.RegistrationError: When the server rejects the registration or the account file
                cannot be written.
        """
        key = jose.JWKEC(key=ec.generate_private_key(ec.SECP256R1(), default_backend()))
        self.transport.bind(key)

        try:
            regr = self.transport.new_account(self.contacts)
        except TRANSPORT_ERRORS as err:
            raise errors.RegistrationError(f"Error creating new account: {err}") from err

        account = Account(url=regr.uri, key=key, regr=regr)
        self.save(account)
        return account

    def save(self, account: Account) -> None:
        """
        Writes the account to `account_file` with owner-only permissions.

        Raises:
            acme_dns_issuer.errors.RegistrationError: When the file cannot be written.
        """
        raw = json.dumps(account.to_json(directory=self.transport.directory_url), indent=2)
        try:
            write_private_file(str(self.account_file), raw.encode("utf-8"))
        except OSError as err:
            raise errors.RegistrationError(f"Error creating account file '{self.account_file}': {err}") from err

    def load_or_create(self) -> Account:
        """
        Loads the persisted account, falling back to registering a new one when it cannot be loaded for any reason.

        Returns:
            Account: The account to issue with.
        """
        logger.info("Loading account file %s", self.account_file)
        try:
            account = self.load()
        except errors.AccountError as err:
            logger.info("Error loading existing account: %s", err.message)
            logger.info("Creating new account")
            account = self.create()

        logger.info("Account url: %s", account.url)
        return account
