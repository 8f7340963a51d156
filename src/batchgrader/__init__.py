"""
BatchGrader: grades batches of zipped student web-server projects.
"""

__version__ = "0.1.0"

from batchgrader.config import AssignmentConfig, CanvasConfig
from batchgrader.errors import (
    ConfigurationError,
    FatalGraderError,
    GraderError,
    ServerUnreachableError,
    SubmissionError,
    ValidatorUnreachableError,
)
from batchgrader.grader import Grader
from batchgrader.ledger import GradingResult, ScoreLedger
