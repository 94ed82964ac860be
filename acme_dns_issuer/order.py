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
"""Creates certificate orders."""
import logging

from acme import messages

from . import errors
from .transport import TRANSPORT_ERRORS

logger = logging.getLogger(__name__)


class OrderOrchestrator:
    """Creates an order for a list of domains and exposes the authorizations it must satisfy."""

    def __init__(self, transport) -> None:
        self.transport = transport

    def create_order(self, identifiers: list) -> messages.OrderResource:
        """
        Submits `identifiers` as `dns` identifiers, in the given order.

        Args:
            identifiers (list): The domains to request a certificate for.

        Returns:
            acme.messages.OrderResource: The new order. `body.authorizations` holds one URL per authorization.

        Raises:
            acme_dns_issuer.errors.OrderRejected: When the list is empty or the server rejects an identifier.
        """
        if not identifiers:
            raise errors.OrderRejected("Cannot create an order without identifiers.")

        logger.info("Creating new order for domains: %s", list(identifiers))
        try:
            order = self.transport.new_order(list(identifiers))
        except TRANSPORT_ERRORS as err:
            raise errors.OrderRejected(f"Error creating new order: {err}") from err

        if not order.body.authorizations:
            raise errors.OrderRejected(f"Order '{order.uri}' does not list any authorizations.")

        logger.info("Order created: %s", order.uri)
        return order

    @staticmethod
    def identifiers(order: messages.OrderResource) -> list:
        """Returns the identifier values of `order` in the order the server lists them."""
        return [identifier.value for identifier in order.body.identifiers]
