"""
Point-deduction assertions used by assignment test cases.

Every assertion takes the number of points the test case is worth and a
zero-argument probe. Failures, including exceptions raised by the probe, are
recorded as deductions on the ledger instead of being raised.
"""

import asyncio
import inspect
import json
import logging
import re
from typing import Any, Callable, Optional, Sequence, Tuple

from bson import ObjectId
import requests

from batchgrader.config import DEFAULT_SERVER_URL
from batchgrader.errors import (
    ConfigurationError,
    ServerUnreachableError,
    ValidatorUnreachableError,
)
from batchgrader.ledger import ScoreLedger

# Settings
DEFAULT_REQUEST_TIMEOUT_SEC = 10
OBJECT_ID_PATTERN = re.compile(r"[a-f0-9]{24}")
HTML_VALIDATOR_URL = "https://validator.w3.org/nu/?out=json"

logger = logging.getLogger(__name__)

################################################################################
# Module-level functions

def _json_default(value):
    if isinstance(value, ObjectId):
        return {"oid": str(value)}
    return repr(value)

def stringify(value, indent: Optional[int] = None) -> str:
    """Serialize a value to JSON, rendering ObjectIds as {"oid": "..."}"""
    return json.dumps(value, indent=indent, default=_json_default)

def pretty(value) -> str:
    return stringify(value, indent=2)

def deep_equal(actual, expected) -> bool:
    """Strict structural equality

    Dictionaries and sequences are compared element by element. Booleans never
    equal numbers and other values must share a type, but ints and floats
    compare by value.
    """
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return actual == expected
    if isinstance(actual, dict) and isinstance(expected, dict):
        if actual.keys() != expected.keys():
            return False
        return all(deep_equal(actual[key], expected[key]) for key in actual)
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        if len(actual) != len(expected):
            return False
        return all(deep_equal(a, e) for a, e in zip(actual, expected))
    return type(actual) is type(expected) and actual == expected

def describe_error(error: BaseException) -> str:
    return f"{type(error).__name__}: {error}"

async def _await(awaitable):
    return await awaitable

def run_probe(probe: Callable[[], Any]) -> Any:
    """Call a probe, waiting on the result if it is awaitable"""
    result = probe()
    if inspect.isawaitable(result):
        result = asyncio.run(_await(result))
    return result

################################################################################
# Classes

class Assertions:
    """Assertion engine reporting into a score ledger

    Args:
        ledger (ScoreLedger): Ledger that receives deductions.
        server_url (str, optional): Base URL prepended to relative request paths.
        session (requests.Session, optional): Session used for HTTP requests.
    """

    def __init__(
        self,
        ledger: ScoreLedger,
        server_url: str = DEFAULT_SERVER_URL,
        session: requests.Session = None,
    ):
        self.ledger = ledger
        self.server_url = server_url.rstrip("/")
        self.session = session if session is not None else requests.Session()

    def assert_deep_equals(
        self,
        points: float,
        label: str,
        probe: Callable[[], Any],
        expected: Any,
    ):
        """Run a deep equality assertion test case

        Args:
            points (float): Points the test case is worth.
            label (str): Message to print before the error text.
            probe (Callable): The test case, should return the same type as `expected`.
            expected (Any): The anticipated result of `probe`.
        """
        try:
            actual = run_probe(probe)
        except Exception as e:
            self.ledger.deduct(points, f"{label}; Error thrown on valid input.", describe_error(e))
            return

        if not deep_equal(actual, expected):
            self.ledger.deduct(
                points,
                f"{label}; Unexpected results.",
                f"Received: {pretty(actual)}\nExpected: {pretty(expected)}",
            )

    def assert_deep_equals_options(
        self,
        points: float,
        label: str,
        probe: Callable[[], Any],
        options: Sequence[Any],
    ):
        """Run a deep equality assertion with multiple acceptable outputs

        Args:
            points (float): Points the test case is worth.
            label (str): Message to print before the error text.
            probe (Callable): The test case.
            options (Sequence): All acceptable results of `probe`.
        """
        try:
            actual = run_probe(probe)
        except Exception as e:
            self.ledger.deduct(points, f"{label}; Error thrown on valid input.", describe_error(e))
            return

        if any(deep_equal(actual, option) for option in options):
            return
        self.ledger.deduct(
            points,
            f"{label}; Unexpected results.",
            f"Received: {pretty(actual)}\nExpected one of the following:\n- "
            + "\n- ".join(pretty(option) for option in options),
        )

    def assert_throws(
        self,
        points: float,
        label: str,
        probe: Callable[[], Any],
        expected_message: Optional[str] = None,
        message_points: Optional[float] = None,
        expected_type: Optional[type] = None,
        type_points: Optional[float] = None,
    ):
        """Assert that a test case raises an exception

        Optionally a specific message and exception type can be required, each
        with its own partial deduction. Together those never exceed `points`.

        Args:
            points (float): Points the test case is worth.
            label (str): Message to print before the error text.
            probe (Callable): The test case, expected to raise.
            expected_message (str, optional): Required exception message.
            message_points (float, optional): Points to deduct for a wrong message.
            expected_type (type, optional): Required exception type.
            type_points (float, optional): Points to deduct for a wrong type.

        Raises:
            ConfigurationError: If a message or type is given without its points.
        """
        if expected_message is not None and not isinstance(message_points, (int, float)):
            raise ConfigurationError(
                "If expected_message is provided, message_points must be provided as well."
            )
        if expected_type is not None and not isinstance(type_points, (int, float)):
            raise ConfigurationError(
                "If expected_type is provided, type_points must be provided as well."
            )

        try:
            result = run_probe(probe)
        except Exception as e:
            error = e
        else:
            self.ledger.deduct(
                points,
                f"{label}; Expected an error to be thrown, got a result instead.",
                pretty(result),
            )
            return

        if expected_message is None and expected_type is None:
            return

        deducted = 0
        if expected_message is not None:
            received = str(error)
            if received.strip() != expected_message.strip():
                message_points = min(message_points, points)
                self.ledger.deduct(
                    message_points,
                    f"{label}; Encountered unexpected error message.",
                    f"- Expected: {expected_message}\n- Received: {received}",
                )
                deducted = message_points

        if expected_type is not None and not isinstance(error, expected_type):
            # Cap the combined deduction at the test case's worth
            type_points = min(type_points, max(0, points - deducted))
            self.ledger.deduct(
                type_points,
                f"{label}; Encountered unexpected error type.",
                f"- Expected: {expected_type.__name__}\n- Received: {type(error).__name__}",
            )

    def assert_without_id(
        self,
        points: float,
        label: str,
        probe: Callable[[], Any],
        expected: Any,
        assertion: Callable = None,
    ) -> Optional[str]:
        """Run an assertion with the `_id` key stripped from the probe result

        The `_id` must be a 24 character lowercase hex string; otherwise the
        probe is treated as having failed.

        Args:
            points (float): Points the test case is worth.
            label (str): Message to print before the error text.
            probe (Callable): The test case to post-process.
            expected (Any): Expected value(s) passed on to the assertion.
            assertion (Callable, optional): Assertion to run. Defaults to
                `assert_deep_equals`.

        Returns:
            str: The `_id` from the probe result, or None if it was invalid.
        """
        if assertion is None:
            assertion = self.assert_deep_equals
        found = {}

        def stripped_probe():
            result = run_probe(probe)
            if isinstance(result, dict):
                _id = result.pop("_id", None)
                if not isinstance(_id, str) or not OBJECT_ID_PATTERN.fullmatch(_id):
                    raise ValueError("Invalid value provided for '_id'.")
                found["_id"] = _id
            return result

        assertion(points, label, stripped_probe, expected)
        return found.get("_id")

    def request(self, url: str, method: str = "GET", body: Any = "") -> Tuple[int, str]:
        """Make a request to the student's server

        Args:
            url (str): URL, or a path relative to the server URL.
            method (str, optional): Request method. Defaults to GET.
            body (Any, optional): Request body. Non-strings are sent as JSON.

        Returns:
            Tuple[int, str]: Response status code and body text.

        Raises:
            ServerUnreachableError: If the server could not be reached.
        """
        method = method.upper()
        url = self._resolve_url(url)
        headers = {}
        if not isinstance(body, str):
            headers["Content-Type"] = "application/json"
            body = pretty(body)

        logger.debug(f"Requesting {method} {url}")
        try:
            response = self.session.request(
                method,
                url,
                data=body if method != "GET" and body else None,
                headers=headers,
                timeout=DEFAULT_REQUEST_TIMEOUT_SEC,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise ServerUnreachableError(method, url) from e
        return response.status_code, response.text

    def assert_response_status(
        self,
        points: float,
        url: str,
        method: str,
        body: Any,
        expected_status: int,
    ):
        """Assert that a response has a certain status code"""
        status, _ = self.request(url, method, body)
        if status == expected_status:
            return
        label = f"{method.upper()} {url}"
        if body:
            label += f"\n{pretty(body)}"
        self.ledger.deduct(
            points,
            label,
            f"Received status: {status}\nExpected status: {expected_status}",
        )

    def assert_response_body_equals(
        self,
        points: float,
        url: str,
        method: str,
        body: Any,
        expected: Any,
    ):
        """Assert that a response is OK (200) and has the given body

        Non-string expected values are compared against the parsed JSON body.
        """
        label = f"{method.upper()} {url}"
        status, text = self.request(url, method, body)
        if status != 200:
            self.ledger.deduct(
                points,
                label,
                f"Route did not return an OK (200) status code.\nReceived: {status}",
            )
            return

        actual = text
        if not isinstance(expected, str):
            try:
                actual = json.loads(text)
            except ValueError:
                self.ledger.deduct(points, label, f"Invalid response body:\n{text}")
                return
        self.assert_deep_equals(points, label, lambda: actual, expected)

    def assert_response_body_equals_without_id(
        self,
        points: float,
        url: str,
        method: str,
        body: Any,
        expected: Any,
    ) -> Optional[str]:
        """Assert an OK response body, ignoring and returning its `_id`

        Returns:
            str: The `_id` of the returned resource, or None on failure.
        """
        label = f"{method.upper()} {url}"
        status, text = self.request(url, method, body)
        if status != 200:
            self.ledger.deduct(
                points,
                label,
                f"Route did not return an OK (200) status code.\nReceived: {status}",
            )
            return None

        try:
            actual = json.loads(text)
        except ValueError:
            self.ledger.deduct(points, label, f"Invalid response body:\n{text}")
            return None
        return self.assert_without_id(points, label, lambda: actual, expected)

    def assert_valid_html(self, points: float, raw_html: str, page_name: str):
        """Check a page with the W3C Nu HTML validator

        Deducts `points` once if the validator reports any errors; warnings
        are ignored.

        Args:
            points (float): Points the page is worth.
            raw_html (str): Page source to validate.
            page_name (str): Name of the page used in the comment.

        Raises:
            ValidatorUnreachableError: If the validator could not be contacted
                or returned an unreadable report.
        """
        try:
            response = self.session.post(
                HTML_VALIDATOR_URL,
                data=raw_html.encode("utf-8"),
                headers={"Content-Type": "text/html; charset=utf-8"},
                timeout=DEFAULT_REQUEST_TIMEOUT_SEC,
            )
            messages = response.json().get("messages", [])
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout, ValueError) as e:
            raise ValidatorUnreachableError(HTML_VALIDATOR_URL) from e

        errors = [message for message in messages if message.get("type") == "error"]
        if errors:
            logger.debug(f"{page_name}: {len(errors)} HTML validation error(s)")
            self.ledger.deduct(points, f"{page_name} has HTML validation errors.")

    def _resolve_url(self, url: str) -> str:
        if url.startswith("/"):
            return self.server_url + url
        return url
