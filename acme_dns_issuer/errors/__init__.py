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
"""Custom exception classes for acme_dns_issuer."""


class ACMEDNSError(Exception):
    """Base class for every error raised while issuing a certificate."""
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# Startup and configuration errors
class ConfigurationError(ACMEDNSError):
    """Error occurs when the issuer configuration is incomplete or inconsistent."""


class InvalidDomain(ConfigurationError):
    """Error occurs when a requested domain is not an RFC2181 compliant hostname."""


class InvalidEmail(ConfigurationError):
    """Error occurs when a contact value is not a valid email address."""


class DirectoryUnreachable(ConfigurationError):
    """Error occurs when the ACME directory cannot be fetched or parsed."""


# Account errors
class AccountError(ACMEDNSError):
    """Base class for account load failures. These are recovered from by registering a new account."""


class NotFound(AccountError):
    """Error occurs when no persisted account data exists."""


class CorruptState(AccountError):
    """Error occurs when persisted account data cannot be parsed into a valid key pair."""


class AccountSyncError(AccountError):
    """Error occurs when the ACME server refuses to update a previously persisted account."""


class RegistrationError(ACMEDNSError):
    """Error occurs when the ACME server rejects a new account registration."""


# Order errors
class OrderRejected(ACMEDNSError):
    """Error occurs when the ACME server refuses to create an order for the requested identifiers."""


# Per-domain validation errors
class ChallengeError(ACMEDNSError):
    """Base class for errors raised while fulfilling an authorization."""


class ChallengeTypeMissing(ChallengeError):
    """Error occurs when an authorization does not offer the DNS-01 challenge."""


class ChallengeUnproven(ChallengeError):
    """Error occurs when no TXT value matches the expected DNS-01 validation value."""


class ChallengeUpdateError(ChallengeError):
    """Error occurs when the ACME server rejects or invalidates an answered challenge."""


class IssuanceCancelled(ChallengeError):
    """Error occurs when a worker stops because a sibling worker failed or the deadline passed."""


# Finalization errors
class FinalizationError(ACMEDNSError):
    """Error occurs when the ACME server rejects the CSR or the order becomes invalid."""


class FetchError(ACMEDNSError):
    """Error occurs when the issued certificate chain cannot be downloaded or parsed."""


class ACMETimeout(ACMEDNSError):
    """Error occurs when the max time has been exceeded waiting for an ACME server event"""
