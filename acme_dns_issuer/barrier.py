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
"""The join point between the challenge workers and certificate finalization."""
import threading
import time

from . import errors


class CompletionBarrier:
    """
    Collects exactly one completion signal per authorization. `wait()` returns only once every expected signal has
    arrived, re-raises the first worker failure, or times out.
    """

    def __init__(self, expected: int) -> None:
        """
        Args:
            expected (int): The number of completion signals to wait for.
        """
        if expected < 1:
            raise ValueError("A completion barrier needs at least one expected signal.")
        self.expected = expected
        self._completed = []
        self._error = None
        self._condition = threading.Condition()

    def signal(self, domain: str) -> None:
        """
        Records that the worker for `domain` finished.

        Raises:
            ValueError: When every expected signal was already received.
        """
        with self._condition:
            if len(self._completed) >= self.expected:
                raise ValueError(f"Unexpected completion signal for '{domain}': barrier already released.")
            self._completed.append(domain)
            self._condition.notify_all()

    def abort(self, error: BaseException) -> None:
        """Records a worker failure and wakes the waiter. Only the first failure is kept."""
        with self._condition:
            if self._error is None:
                self._error = error
            self._condition.notify_all()

    def wait(self, timeout: float = None) -> list:
        """
        Blocks until every expected signal was received.

        Args:
            timeout (float): The amount of time (in seconds) to wait. `None` waits indefinitely.

        Returns:
            list: The signalled domains, in completion order.

        Raises:
            acme_dns_issuer.errors.ACMETimeout: When the timeout passes first.
            Exception: The failure recorded by `abort()`.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._condition:
            while self._error is None and len(self._completed) < self.expected:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise errors.ACMETimeout(
                        f"Only {len(self._completed)} of {self.expected} authorizations completed "
                        f"within {timeout} seconds."
                    )
                self._condition.wait(remaining)

            if self._error is not None:
                raise self._error

            return list(self._completed)

    @property
    def completed(self) -> list:
        """The domains signalled so far."""
        with self._condition:
            return list(self._completed)

    @property
    def is_released(self) -> bool:
        """Whether every expected signal was received."""
        with self._condition:
            return len(self._completed) >= self.expected
