"""
Exception classes used to classify grading failures.

The batch orchestrator decides what to do with a failed submission based on
which of these was raised.
"""

class GraderError(Exception):
    """Base exception for all grading errors."""
    pass

class SubmissionError(GraderError):
    """Problem local to one submission (missing files, bad collections, etc.).

    The submission is abandoned and the batch moves on to the next archive.
    """
    pass

class ConfigurationError(GraderError):
    """The grading setup itself is wrong, not the student's submission."""
    pass

class ServerUnreachableError(ConfigurationError):
    """A request to the student's server failed at the network level."""

    def __init__(self, method: str, url: str):
        super().__init__(
            f"Could not complete request: {method} {url}\n"
            "Server either didn't start, is at an unexpected URL, or crashed "
            "during the previous test case."
        )
        self.method = method
        self.url = url

class FatalGraderError(GraderError):
    """Failure that would interfere with grading further submissions.

    If grading had already finished when the failure happened, the finished
    result is attached as `result` so it can still be recorded.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result

class ValidatorUnreachableError(ConfigurationError):
    """The HTML validation service could not be contacted."""

    def __init__(self, url: str):
        super().__init__(f"Couldn't contact the HTML validator successfully: {url}")
        self.url = url
