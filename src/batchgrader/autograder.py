"""Entry point for the BatchGrader autograder

Grades every zipped submission in a directory, one at a time, with the
instructor's test cases and optionally uploads the grades to Canvas.

Submissions are graded strictly in sequence. Each one is extracted into a
freshly reset workspace, so no submission can see another's files.
"""

import argparse
from dataclasses import dataclass, field
import importlib.util
import logging
import os
import pathlib
import shutil
from typing import Callable, List, Optional, Tuple

from rich.console import Console

from batchgrader import __version__
from batchgrader.config import (
    AssignmentConfig,
    CanvasConfig,
    DEFAULT_CANVAS_URL,
    load_config_file,
)
from batchgrader.console import ERROR, INFO, SEPARATOR, SUCCESS, WARNING, make_console, styled
from batchgrader.errors import ConfigurationError, FatalGraderError, GraderError
from batchgrader.gradebook import CanvasGradebook
from batchgrader.grader import DEFAULT_SUBMISSION_DIR, Grader
from batchgrader.ledger import GradingResult
from batchgrader.submission import extract_student_id, safe_extract

# Settings
ARCHIVE_SUFFIX = ".zip"
UPLOADED_DIR = "uploaded"
DEFAULT_TEST_CASES_FUNCTION = "test_cases"

# Configure logging
logger = logging.getLogger(__package__)

################################################################################
# Module-level functions

def configure_logging(logger_level: int) -> None:
    """Configure logging for the grader

    Args:
        logger_level (int): Logging level to set
    """
    logging.basicConfig(
        level=logger_level,
        format="%(asctime)s %(name)s [%(levelname)s]: %(message)s",
        force=True,
        handlers=[logging.StreamHandler()],
    )
    logger.setLevel(logger_level)
    logger.debug(f"Logging configured at level: {logger_level}")

def load_test_cases(config: dict, config_dir_path) -> Callable:
    """Load the instructor's test cases named in the configuration

    The configuration must contain a `test_cases` entry with the `path` to a
    Python file (relative to the configuration directory) and optionally the
    name of the `function` to use.

    Args:
        config (dict): Configuration dictionary.
        config_dir_path (str): Directory containing the configuration file.

    Returns:
        Callable: The test case function.

    Raises:
        ConfigurationError: If the test cases cannot be loaded.
    """
    entry = config.get("test_cases")
    if not entry:
        raise ConfigurationError("No test_cases specified in configuration")
    if isinstance(entry, str):
        entry = {"path": entry}

    # Get absolute path to the test case file
    test_path = pathlib.Path(entry["path"])
    if not test_path.is_absolute():
        test_path = pathlib.Path(config_dir_path) / test_path
    test_path = test_path.resolve()
    function_name = entry.get("function", DEFAULT_TEST_CASES_FUNCTION)
    logger.debug(f"Loading test cases '{function_name}' from {test_path}")

    spec = importlib.util.spec_from_file_location(test_path.stem, test_path)
    if spec is None:
        raise ConfigurationError(f"Could not create spec for {test_path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigurationError(f"Failed to load test cases {test_path}: {e}") from e

    test_cases = getattr(module, function_name, None)
    if not callable(test_cases):
        raise ConfigurationError(f"{function_name} not found in {test_path}")
    logger.info(f"Loaded test cases: {function_name}")
    return test_cases

def reset_workspace(workspace: pathlib.Path):
    """Remove and recreate the extraction workspace

    Raises:
        FatalGraderError: If files from a previous submission could not be
            removed.
    """
    if workspace.exists():
        try:
            shutil.rmtree(workspace)
        except OSError as e:
            raise FatalGraderError(f"Could not reset workspace {workspace}: {e}") from e
    if workspace.exists():
        raise FatalGraderError(f"Workspace still exists after removal: {workspace}")
    workspace.mkdir(parents=True)

################################################################################
# Classes

@dataclass
class SubmissionOutcome:
    """What happened to one submission archive"""
    archive: str
    result: Optional[GradingResult] = None
    error: Optional[BaseException] = None

    @property
    def fatal(self) -> bool:
        return isinstance(self.error, FatalGraderError)

@dataclass
class BatchReport:
    """Results of a batch run

    Args:
        results (List[SubmissionOutcome]): One outcome per archive attempted.
        uploaded (List[Tuple[str, str]]): (display name, archive name) for each
            grade queued for upload.
        aborted (bool): Whether a fatal error stopped the batch early.
    """
    results: List[SubmissionOutcome] = field(default_factory=list)
    uploaded: List[Tuple[str, str]] = field(default_factory=list)
    aborted: bool = False

def autograde(
    submissions_dir,
    test_cases: Callable,
    config: AssignmentConfig = None,
    gradebook: CanvasGradebook = None,
    work_dir=".",
    console: Console = None,
    grader_factory=Grader,
) -> BatchReport:
    """Grade every submission archive in a directory

    Args:
        submissions_dir (str): Directory containing the submission zip files.
        test_cases (Callable): Assignment-specific test cases.
        config (AssignmentConfig, optional): Assignment configuration.
        gradebook (CanvasGradebook, optional): Gradebook to upload grades to.
        work_dir (str, optional): Directory holding the extraction workspace.
        console (Console, optional): Console for grading output.
        grader_factory (Callable, optional): Creates the grader for a submission.

    Returns:
        BatchReport: What happened to each submission.

    Raises:
        ConfigurationError: If the submissions directory is inaccessible.
    """
    config = config if config is not None else AssignmentConfig()
    console = console if console is not None else make_console()
    workspace = pathlib.Path(work_dir).resolve() / DEFAULT_SUBMISSION_DIR
    report = BatchReport()

    if config.only_current:
        return _grade_current(workspace, test_cases, config, console, grader_factory)

    if config.run_start_command and not config.start_command:
        console.print(styled(
            "No default start command configured. Submissions must declare "
            "scripts.start in package.json.",
            WARNING,
        ))

    submissions_path = pathlib.Path(submissions_dir)
    if not submissions_path.is_dir() or not os.access(submissions_path, os.R_OK | os.X_OK):
        raise ConfigurationError("Submissions directory is inaccessible or does not exist")

    archives = sorted(
        path for path in submissions_path.iterdir()
        if path.is_file() and path.suffix.lower() == ARCHIVE_SUFFIX
    )
    logger.info(f"Found {len(archives)} submission(s) in {submissions_path}")

    for archive in archives:
        outcome = SubmissionOutcome(archive=archive.name)
        report.results.append(outcome)
        grader = None
        console.print(f"Grading {styled(archive.name, INFO)}...")

        try:
            reset_workspace(workspace)
            submission_dir = workspace / archive.stem
            safe_extract(archive, submission_dir)
            grader = grader_factory(config, test_cases, directory=submission_dir)
            outcome.result = grader.run()
        except FatalGraderError as e:
            outcome.error = e
            outcome.result = e.result
        except Exception as e:
            outcome.error = e
            if grader is not None:
                try:
                    grader.cleanup()
                except FatalGraderError as cleanup_error:
                    outcome.error = cleanup_error
                except Exception:
                    logger.exception(f"Cleanup failed for {archive.name}")

        if outcome.result is not None:
            _report_result(archive.name, grader, outcome.result, gradebook, report, console)
        if outcome.error is not None:
            _report_error(archive.name, outcome.error, console)
        console.print(styled(SEPARATOR, WARNING))

        if outcome.fatal:
            report.aborted = True
            break

    if gradebook is not None and report.uploaded:
        gradebook.send_update(config.comments_as_files)
        console.print(styled("Uploaded grades for the following students:", SUCCESS))
        uploaded_dir = submissions_path / UPLOADED_DIR
        uploaded_dir.mkdir(parents=True, exist_ok=True)
        for display_name, archive_name in report.uploaded:
            console.print(f"  - {display_name}")
            (submissions_path / archive_name).rename(uploaded_dir / archive_name)
    else:
        console.print(styled("No grades uploaded.", WARNING))

    return report

def _grade_current(workspace, test_cases, config, console, grader_factory) -> BatchReport:
    """Grade the already-extracted submission in the workspace"""
    report = BatchReport()
    outcome = SubmissionOutcome(archive=workspace.name)
    report.results.append(outcome)
    grader = grader_factory(config, test_cases, directory=workspace)
    try:
        outcome.result = grader.run()
    except FatalGraderError:
        raise
    except Exception:
        grader.cleanup()
        raise
    console.print(f"Score: {styled(outcome.result.grade, SUCCESS)}")
    console.print(styled(outcome.result.comments, ERROR))
    return report

def _report_result(archive_name, grader, result, gradebook, report, console):
    console.print(f"Done. Scored {styled(result.grade, SUCCESS)}")
    if gradebook is None:
        console.print(styled(result.comments, ERROR))
        return

    student_id = extract_student_id(archive_name)
    if student_id is None:
        console.print(styled(
            "Failed to locate student Canvas ID for submission. Upload comments manually:",
            ERROR,
        ))
        console.print(styled(result.comments or "No comments.", ERROR))
        return

    gradebook.add_student(student_id, result.grade, result.comments)
    display_name = (grader.author if grader is not None else "") or archive_name
    report.uploaded.append((display_name, archive_name))

def _report_error(archive_name, error, console):
    if isinstance(error, FatalGraderError):
        logger.critical(f"Aborting after {archive_name}: {error}")
        console.print(styled(
            "Encountered an error that would interfere with the grading of further "
            "submissions. Aborting grader at this point.",
            ERROR,
        ))
        console.print(styled(error, ERROR))
    elif isinstance(error, ConfigurationError):
        logger.error(f"Grading setup problem while grading {archive_name}: {error}")
        console.print(styled(
            "Could not automatically grade submission. Check the grading configuration:",
            ERROR,
        ))
        console.print(styled(error, ERROR))
    else:
        logger.debug(f"Error grading {archive_name}", exc_info=error)
        console.print(styled("Could not automatically grade submission.", ERROR))
        if isinstance(error, GraderError):
            console.print(styled(error, ERROR))
        else:
            console.print(styled(f"{type(error).__name__}: {error}", ERROR))

################################################################################
# Main entry point

def main(argv=None) -> int:
    """Main entry point"""

    # Command line arguments
    parser = argparse.ArgumentParser(description="Batch autograder for zipped student projects")
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        type=str,
        help="Path to assignment configuration file (YAML format)",
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--submissions",
        "-s",
        type=str,
        help="Directory containing the submission zip files",
    )
    parser.add_argument(
        "--work_dir",
        "-w",
        type=str,
        default=".",
        help="Directory in which the current_submission workspace is created. "
            "Defaults to the current directory.",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=os.environ.get("CANVAS_API_KEY"),
        help="Canvas API key (defaults to $CANVAS_API_KEY)",
    )
    parser.add_argument("--course-id", type=str, help="Canvas course ID")
    parser.add_argument("--assignment-id", type=str, help="Canvas assignment ID")
    parser.add_argument(
        "--canvas-url",
        type=str,
        default=os.environ.get("CANVAS_URL"),
        help=f"Canvas base URL (defaults to $CANVAS_URL or {DEFAULT_CANVAS_URL})",
    )

    # Parse arguments
    args = parser.parse_args(argv)

    # If debug mode is enabled, set logging to DEBUG level
    if args.debug:
        configure_logging(logging.DEBUG)
    else:
        configure_logging(logging.INFO)

    logger.info(f"BatchGrader v{__version__}")

    try:
        config_path = pathlib.Path(args.config).resolve()
        raw_config = load_config_file(config_path)
        assignment_config = AssignmentConfig.from_dict(raw_config)
        test_cases = load_test_cases(raw_config, config_path.parent)
        canvas_config = _canvas_config(args, raw_config.get("canvas") or {})
        if not assignment_config.only_current and not args.submissions:
            raise ConfigurationError("--submissions is required unless only_current is set")

        gradebook = CanvasGradebook.from_config(canvas_config) if canvas_config else None
        autograde(
            args.submissions,
            test_cases,
            assignment_config,
            gradebook=gradebook,
            work_dir=args.work_dir,
        )
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    return 0

def _canvas_config(args, canvas_section: dict) -> Optional[CanvasConfig]:
    """Build Canvas credentials from the command line and configuration file"""
    course_id = args.course_id or canvas_section.get("course_id")
    assignment_id = args.assignment_id or canvas_section.get("assignment_id")
    base_url = args.canvas_url or canvas_section.get("base_url") or DEFAULT_CANVAS_URL
    if not (course_id or assignment_id):
        return None
    if not (args.api_key and course_id and assignment_id):
        raise ConfigurationError(
            "Canvas uploads need an API key, a course ID and an assignment ID"
        )
    return CanvasConfig(args.api_key, str(course_id), str(assignment_id), base_url)

if __name__ == "__main__":
    raise SystemExit(main())
