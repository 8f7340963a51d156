import itertools
import json

import pytest
import requests

from batchgrader.assertions import HTML_VALIDATOR_URL, Assertions, deep_equal, stringify
from batchgrader.errors import ConfigurationError, ServerUnreachableError, ValidatorUnreachableError
from batchgrader.ledger import ScoreLedger

from conftest import FakeResponse, FakeSession

VALID_ID = "507f191e810c19729de860ea"

@pytest.fixture()
def ledger():
    return ScoreLedger()

@pytest.fixture()
def check(ledger):
    return Assertions(ledger, session=FakeSession())

def raises(error):
    def probe():
        raise error
    return probe

################################################################################
# Equality

def test_deep_equals_passes(check, ledger):
    check.assert_deep_equals(10, "sum", lambda: {"total": [1, 2.0]}, {"total": [1, 2]})
    assert ledger.score == 100
    assert ledger.comments == []

def test_deep_equals_mismatch_shows_both_values(check, ledger):
    check.assert_deep_equals(10, "sum", lambda: {"total": 3}, {"total": 4})

    assert ledger.score == 90
    assert ledger.comments[0].startswith("-10; sum; Unexpected results.\nReceived: {")
    assert '"total": 3' in ledger.comments[0]
    assert 'Expected: {\n  "total": 4\n}' in ledger.comments[0]

def test_deep_equals_probe_error(check, ledger):
    check.assert_deep_equals(7, "parse", raises(KeyError("title")), "x")

    assert ledger.score == 93
    assert ledger.comments == ["-7; parse; Error thrown on valid input.\nKeyError: 'title'"]

def test_deep_equals_awaits_coroutines(check, ledger):
    async def probe():
        return [1, 2, 3]

    check.assert_deep_equals(5, "async", probe, [1, 2, 3])
    assert ledger.score == 100

@pytest.mark.parametrize(
    "actual, expected, equal",
    [
        (1, 1.0, True),
        (True, 1, False),
        (0, False, False),
        ("1", 1, False),
        (None, None, True),
        ([1, [2, {"a": None}]], [1, [2, {"a": None}]], True),
        ({"a": 1}, {"a": 1, "b": 2}, False),
        ([1, 2], [2, 1], False),
        ((1, 2), [1, 2], True),
    ],
)
def test_deep_equal_is_strict(actual, expected, equal):
    assert deep_equal(actual, expected) is equal

def test_stringify_renders_object_ids():
    from bson import ObjectId

    assert json.loads(stringify({"_id": ObjectId(VALID_ID)})) == {"_id": {"oid": VALID_ID}}

################################################################################
# Options

def test_options_match_any(check, ledger):
    check.assert_deep_equals_options(10, "pick", lambda: {"a": 1}, [{"a": 2}, {"a": 1}])
    assert ledger.score == 100

def test_options_no_match_lists_every_option(check, ledger):
    check.assert_deep_equals_options(10, "pick", lambda: {"a": 1}, [{"a": 2}, {"a": 3}])

    assert ledger.score == 90
    comment = ledger.comments[0]
    assert "Expected one of the following:\n- " in comment
    assert '"a": 2' in comment and '"a": 3' in comment

def test_options_probe_error(check, ledger):
    check.assert_deep_equals_options(4, "pick", raises(ValueError("bad")), [1])
    assert ledger.comments == ["-4; pick; Error thrown on valid input.\nValueError: bad"]

################################################################################
# Exceptions

def test_throws_deducts_when_nothing_raised(check, ledger):
    check.assert_throws(8, "bad input", lambda: 42)

    assert ledger.score == 92
    assert ledger.comments == [
        "-8; bad input; Expected an error to be thrown, got a result instead.\n42"
    ]

def test_throws_accepts_any_error_by_default(check, ledger):
    check.assert_throws(8, "bad input", raises(RuntimeError("nope")))
    assert ledger.score == 100

def test_throws_compares_trimmed_message(check, ledger):
    check.assert_throws(8, "bad input", raises(ValueError("  id is required \n")), "id is required", 3)
    assert ledger.score == 100

def test_throws_wrong_message(check, ledger):
    check.assert_throws(8, "bad input", raises(ValueError("oops")), "id is required", 3)

    assert ledger.score == 97
    assert ledger.comments == [
        "-3; bad input; Encountered unexpected error message.\n"
        "- Expected: id is required\n- Received: oops"
    ]

def test_throws_wrong_type(check, ledger):
    check.assert_throws(8, "bad input", raises(ValueError("x")), None, None, TypeError, 4)

    assert ledger.score == 96
    assert ledger.comments == [
        "-4; bad input; Encountered unexpected error type.\n"
        "- Expected: TypeError\n- Received: ValueError"
    ]

def test_throws_accepts_subclass_of_expected_type(check, ledger):
    check.assert_throws(8, "bad input", raises(KeyError("x")), None, None, LookupError, 4)
    assert ledger.score == 100

def test_throws_caps_combined_deduction(check, ledger):
    check.assert_throws(10, "bad input", raises(ValueError("oops")), "expected", 6, TypeError, 6)

    assert ledger.score == 90
    assert [comment.split(";")[0] for comment in ledger.comments] == ["-6", "-4"]

@pytest.mark.parametrize(
    "points, message_points, type_points",
    list(itertools.product([5, 10], [0, 3, 5, 12], [0, 2, 5, 12])),
)
def test_throws_never_deducts_more_than_points(points, message_points, type_points):
    ledger = ScoreLedger()
    Assertions(ledger, session=FakeSession()).assert_throws(
        points,
        "case",
        raises(ValueError("wrong")),
        "right",
        message_points,
        TypeError,
        type_points,
    )
    assert 100 - ledger.score <= points
    assert 100 - ledger.score == min(message_points + type_points, points)

@pytest.mark.parametrize(
    "kwargs",
    [
        {"expected_message": "x"},
        {"expected_type": ValueError},
        {"expected_message": "x", "message_points": "3"},
    ],
)
def test_throws_rejects_unpaired_arguments(check, ledger, kwargs):
    with pytest.raises(ConfigurationError):
        check.assert_throws(5, "case", raises(ValueError("x")), **kwargs)
    assert ledger.comments == []

################################################################################
# Identifier stripping

def test_without_id_returns_identifier(check, ledger):
    _id = check.assert_without_id(
        10,
        "create",
        lambda: {"_id": VALID_ID, "name": "x"},
        {"name": "x"},
    )

    assert _id == VALID_ID
    assert ledger.score == 100

@pytest.mark.parametrize(
    "value",
    ["507f191e810c19729de860e", "507F191E810C19729DE860EA", "507f191e810c19729de860zz", 12, None],
)
def test_without_id_rejects_malformed_identifier(check, ledger, value):
    payload = {"name": "x"}
    if value is not None:
        payload["_id"] = value

    _id = check.assert_without_id(10, "create", lambda: payload, {"name": "x"})

    assert _id is None
    assert ledger.score == 90
    assert "Invalid value provided for '_id'." in ledger.comments[0]

def test_without_id_with_options_assertion(check, ledger):
    _id = check.assert_without_id(
        10,
        "create",
        lambda: {"_id": VALID_ID, "name": "y"},
        [{"name": "x"}, {"name": "y"}],
        assertion=check.assert_deep_equals_options,
    )
    assert _id == VALID_ID
    assert ledger.score == 100

################################################################################
# HTTP

def test_request_encodes_json_bodies(ledger):
    session = FakeSession(FakeResponse(201, "created"))
    check = Assertions(ledger, server_url="http://localhost:4000/", session=session)

    assert check.request("/todos", "post", {"title": "a"}) == (201, "created")
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "http://localhost:4000/todos"
    assert call["headers"] == {"Content-Type": "application/json"}
    assert json.loads(call["data"]) == {"title": "a"}

def test_request_get_sends_no_body(ledger):
    session = FakeSession(FakeResponse(200, "ok"))
    check = Assertions(ledger, session=session)

    check.request("http://example.test/a", "GET", "ignored")
    assert session.calls[0]["data"] is None
    assert session.calls[0]["url"] == "http://example.test/a"

def test_request_connection_failure(ledger):
    session = FakeSession(error=requests.exceptions.ConnectionError("refused"))
    check = Assertions(ledger, session=session)

    with pytest.raises(ServerUnreachableError) as excinfo:
        check.request("/todos")
    assert "Server either didn't start" in str(excinfo.value)
    assert isinstance(excinfo.value, ConfigurationError)
    assert ledger.comments == []

def test_response_status_mismatch(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(500, "")))
    check.assert_response_status(5, "/todos", "post", {"title": ""}, 400)

    assert ledger.score == 95
    assert ledger.comments[0].startswith('-5; POST /todos\n{\n  "title": ""\n}')
    assert ledger.comments[0].endswith("Received status: 500\nExpected status: 400")

def test_response_status_match(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(404, "")))
    check.assert_response_status(5, "/todos/1", "GET", "", 404)
    assert ledger.score == 100

def test_response_body_requires_ok_status(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(404, "{}")))
    check.assert_response_body_equals(10, "/todos", "get", "", [])

    assert ledger.comments == [
        "-10; GET /todos\nRoute did not return an OK (200) status code.\nReceived: 404"
    ]

def test_response_body_invalid_json(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(200, "<html>")))
    check.assert_response_body_equals(10, "/todos", "GET", "", [])

    assert ledger.comments == ["-10; GET /todos\nInvalid response body:\n<html>"]

def test_response_body_compares_json(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(200, '[{"a": 1}]')))
    check.assert_response_body_equals(10, "/todos", "GET", "", [{"a": 1}])
    assert ledger.score == 100

def test_response_body_compares_text_for_string_expectations(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(200, "hello")))
    check.assert_response_body_equals(10, "/", "GET", "", "goodbye")

    assert ledger.score == 90
    assert "Unexpected results." in ledger.comments[0]

def test_response_body_without_id(ledger):
    body = json.dumps({"_id": VALID_ID, "title": "a"})
    check = Assertions(ledger, session=FakeSession(FakeResponse(200, body)))

    _id = check.assert_response_body_equals_without_id(10, "/todos", "POST", {"title": "a"}, {"title": "a"})

    assert _id == VALID_ID
    assert ledger.score == 100

def test_response_body_without_id_bad_status(ledger):
    check = Assertions(ledger, session=FakeSession(FakeResponse(500, "")))
    assert check.assert_response_body_equals_without_id(10, "/todos", "POST", {}, {}) is None
    assert ledger.score == 90

################################################################################
# HTML validation

PAGE = "<!DOCTYPE html><html lang=\"en\"><head><title>Todos</title></head><body></body></html>"

def test_valid_html_passes(ledger):
    session = FakeSession(FakeResponse(200, payload={"messages": [{"type": "info", "message": "ok"}]}))
    check = Assertions(ledger, session=session)

    check.assert_valid_html(10, PAGE, "Home page")

    assert ledger.score == 100
    call = session.calls[0]
    assert call["url"] == HTML_VALIDATOR_URL
    assert call["headers"] == {"Content-Type": "text/html; charset=utf-8"}
    assert call["data"] == PAGE.encode("utf-8")

def test_invalid_html_deducts_once(ledger):
    messages = [
        {"type": "error", "message": "Stray end tag"},
        {"type": "info", "subType": "warning", "message": "Consider lang"},
        {"type": "error", "message": "Element title missing"},
    ]
    check = Assertions(ledger, session=FakeSession(FakeResponse(200, payload={"messages": messages})))

    check.assert_valid_html(10, "<p>", "Home page")

    assert ledger.score == 90
    assert ledger.comments == ["-10; Home page has HTML validation errors."]

def test_unreachable_html_validator(ledger):
    check = Assertions(ledger, session=FakeSession(error=requests.exceptions.ConnectionError("dns")))

    with pytest.raises(ValidatorUnreachableError, match="Couldn't contact the HTML validator"):
        check.assert_valid_html(10, PAGE, "Home page")
    assert ledger.comments == []
