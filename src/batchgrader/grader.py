"""
Grading lifecycle for a single submission.

A grader runs a fixed sequence of phases against one extracted submission:
structural checks, optional database setup, optional server start, the
assignment's test cases and finally cleanup. The assignment-specific part is
a plain callable that receives the grader:

    def test_cases(grader):
        grader.assertions.assert_response_status(10, "/", "GET", "", 200)
"""

import importlib.util
import itertools
import json
import logging
import pathlib
import shutil
import subprocess
from typing import Callable, Optional

import requests

from batchgrader.assertions import Assertions
from batchgrader.config import AssignmentConfig
from batchgrader.database import DatabaseSession
from batchgrader.errors import ConfigurationError, FatalGraderError, SubmissionError
from batchgrader.ledger import GradingResult, ScoreLedger
from batchgrader.submission import (
    ManifestInfo,
    VENDOR_DIR_NAME,
    load_manifest,
    read_collections,
    scan_submission,
)
from batchgrader.supervisor import ProcessSupervisor

# Settings
DEFAULT_SUBMISSION_DIR = "current_submission"
INSTALL_COMMAND = ["npm", "install"]

_uids = itertools.count()

class Grader:
    """Runs the grading lifecycle for one submission

    Args:
        config (AssignmentConfig, optional): Assignment configuration.
        test_cases (Callable, optional): Assignment-specific test cases, called
            with this grader.
        directory (Path, optional): Root of the extracted submission.
        session (requests.Session, optional): Session for requests to the
            student's server.
        database_factory (Callable, optional): Creates the database session.
        logger (logging.Logger, optional): Logger instance for logging messages.
    """

    def __init__(
        self,
        config: AssignmentConfig = None,
        test_cases: Optional[Callable[["Grader"], None]] = None,
        directory=DEFAULT_SUBMISSION_DIR,
        session: requests.Session = None,
        database_factory=DatabaseSession,
        logger: logging.Logger = None,
    ):
        self.config = config if config is not None else AssignmentConfig()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._test_cases = test_cases
        self._database_factory = database_factory

        self.root = pathlib.Path(directory).resolve()
        self.directory = self.root
        self.ledger = ScoreLedger()
        self.assertions = Assertions(self.ledger, self.config.server_url, session)
        self.manifest = ManifestInfo()
        self.had_vendor_dir = False
        self.start_command = None
        self.supervisor = None
        self.database = None
        self.uid = next(_uids)
        self._modules = {}

    @property
    def score(self) -> float:
        return self.ledger.score

    @property
    def author(self) -> str:
        return self.manifest.author

    @property
    def db(self):
        """Handle to the submission's database, if one was set up"""
        return self.database.db if self.database is not None else None

    def deduct_points(self, points: float, reason: str, detail: Optional[str] = None):
        """Deduct points from the student's grade"""
        self.ledger.deduct(points, reason, detail)

    def run(self) -> GradingResult:
        """Run every phase of the lifecycle

        Errors raised before cleanup are left to the caller, who is expected
        to call `cleanup()` itself.

        Returns:
            GradingResult: The final grade and comments.
        """
        self.checks()
        if self.config.uses_database:
            self.setup_database()
        if self.config.run_start_command:
            self.start()
        self.test_cases()
        result = self.ledger.finalize()
        try:
            self.cleanup()
        except FatalGraderError as e:
            e.result = result
            raise
        return result

    def checks(self):
        """Structural checks on the submission

        Raises:
            SubmissionError: If required files or collections are missing, or
                dependencies could not be installed.
        """
        scan = scan_submission(self.root, self.config.required_files)
        self.directory = scan.directory
        self.logger.debug(f"Working directory resolved to: {self.directory}")

        if scan.had_vendor_dir:
            self.had_vendor_dir = True
            self.deduct_points(self.config.vendor_penalty, "Included node_modules in submission.")

        malformed = False
        if scan.manifest_path is not None:
            try:
                self.manifest = load_manifest(scan.manifest_path)
            except SubmissionError as e:
                malformed = True
                if self.config.check_manifest:
                    self.deduct_points(self.config.manifest_penalty, f"{e}.")
                else:
                    self.logger.warning(f"Ignoring unreadable manifest: {e}")

        if self.config.check_manifest and not malformed:
            if not self.manifest.present:
                self.deduct_points(self.config.manifest_penalty, "Missing package.json file.")
            elif not self.manifest.start_command:
                self.deduct_points(
                    self.config.manifest_penalty,
                    "Missing start script in package.json file.",
                )
        self.start_command = self.manifest.start_command or self.config.start_command

        if scan.missing_files:
            raise SubmissionError("Missing file(s): " + ", ".join(scan.missing_files))

        if self.config.uses_database and self.config.required_collections:
            self._check_collections()

        if self.manifest.dependencies:
            self.install_dependencies()

    def _check_collections(self):
        found = read_collections(self.directory)
        required = self.config.required_collections
        missing = [name for name in required if name not in found]
        extra = [name for name in found if name not in required]
        if missing or extra:
            raise SubmissionError(
                "Collections error: unexpected and/or missing collections.\n"
                f"- Missing collections: {', '.join(missing) or 'None'}\n"
                f"- Extra/unexpected collections: {', '.join(extra) or 'None'}"
            )

    def install_dependencies(self):
        """Install the dependencies declared in package.json"""
        self.logger.debug(f"Installing dependencies in {self.directory}")
        try:
            completed = subprocess.run(
                INSTALL_COMMAND,
                cwd=self.directory,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(f"Could not run '{' '.join(INSTALL_COMMAND)}': {e}") from e
        if completed.returncode != 0:
            raise SubmissionError(
                f"Dependency installation failed with code {completed.returncode}:\n"
                f"{completed.stderr or completed.stdout}"
            )

    def setup_database(self):
        """Point the submission at the grading database"""
        module = self.manifest.module if self.manifest.present else True
        self.database = self._database_factory(
            self.directory,
            self.config.database_connection_string,
            module=module,
        )
        self.database.setup()

    def start(self):
        """Start the student's server

        Raises:
            ConfigurationError: If there is no start command or it is unsafe.
        """
        if not self.start_command:
            raise ConfigurationError(
                "No start command available: package.json declares none and no "
                "default start_command is configured."
            )
        self.supervisor = ProcessSupervisor(
            self.directory,
            trusted_interpreter=self.config.trusted_interpreter,
            readiness_timeout=self.config.readiness_timeout,
        )
        self.supervisor.start(self.start_command)

    def test_cases(self):
        """Run the assignment-specific test cases

        Raises:
            ConfigurationError: If no test cases were provided.
        """
        if self._test_cases is None:
            raise ConfigurationError(
                "No test cases provided. Supply a test_cases callable for the assignment."
            )
        self._test_cases(self)

    def cleanup(self):
        """Tear down whatever the lifecycle set up

        Safe to call more than once and after a partial run. A failed database
        teardown is logged so the finished grade is still returned.

        Raises:
            FatalGraderError: If the student's server could not be stopped.
        """
        try:
            if self.database is not None:
                self.database.teardown()
        except FatalGraderError:
            raise
        except Exception:
            self.logger.exception(f"Database teardown failed for {self.root.name}")
        finally:
            if self.supervisor is not None:
                self.supervisor.stop()

        # Only remove dependencies that grading installed
        if not self.had_vendor_dir:
            shutil.rmtree(self.directory / VENDOR_DIR_NAME, ignore_errors=True)

    def build_absolute_path(self, relative_path) -> pathlib.Path:
        """Absolute path to a file in the submission's working directory"""
        return (self.directory / relative_path).resolve()

    def import_json(self, relative_path):
        """Load a JSON file from the submission

        Raises:
            SubmissionError: If the file is not valid JSON.
        """
        path = self.build_absolute_path(relative_path)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise SubmissionError(f"Malformed JSON syntax in '{relative_path}'") from e

    def import_module(self, relative_path, one_time: bool = False):
        """Import a Python helper file from the working directory

        Meant for instructor fixtures copied next to the submission or Python
        code shipped alongside it. The student's JavaScript is exercised over
        HTTP instead. Modules are cached per grader. `one_time` bypasses the
        cache and executes the file again.

        Args:
            relative_path (str): Path relative to the working directory.
            one_time (bool, optional): Do a fresh import.

        Returns:
            module: The loaded module.
        """
        path = self.build_absolute_path(relative_path)
        key = str(path)
        if not one_time and key in self._modules:
            return self._modules[key]

        uid = next(_uids) if one_time else self.uid
        spec = importlib.util.spec_from_file_location(f"submission_{uid}_{path.stem}", path)
        if spec is None:
            raise SubmissionError(f"Could not load module: {relative_path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        if not one_time:
            self._modules[key] = module
        return module
