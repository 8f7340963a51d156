"""
Assignment and gradebook configuration.

Assignment settings are usually kept in a YAML file next to the instructor's
test case script, for example:

    required_files: [app.js]
    run_start_command: true
    start_command: node app.js
    test_cases:
      path: test_cases.py
      function: test_cases
"""

from dataclasses import dataclass, fields
import logging
import pathlib
from typing import Optional, Tuple

import yaml

from batchgrader.errors import ConfigurationError

# Settings
DEFAULT_CONNECTION_STRING = "mongodb://localhost:27017/"
DEFAULT_SERVER_URL = "http://localhost:3000"
DEFAULT_READINESS_TIMEOUT_SEC = 5.0
DEFAULT_TRUSTED_INTERPRETER = "node"
DEFAULT_VENDOR_PENALTY = 5
DEFAULT_MANIFEST_PENALTY = 5
DEFAULT_CANVAS_URL = "https://canvas.instructure.com"

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class AssignmentConfig:
    """Assignment-specific grading settings, fixed for a batch run

    Args:
        only_current (bool): Only grade the already-extracted current_submission
            directory instead of a directory of archives.
        start_command (str, optional): Start command to use when the submission
            does not declare one in package.json.
        run_start_command (bool): Start the student's server before running the
            test cases.
        required_files (Tuple[str]): File names that must be present somewhere
            in the submission. Grading fails if any are absent.
        required_collections (Tuple[str]): Collections that must be registered
            in the submission's collections configuration.
        check_manifest (bool): Check package.json for existence and required
            properties.
        uses_database (bool): Enable database grading features.
        database_connection_string (str): MongoDB connection string for the
            grading database.
        comments_as_files (bool): Upload comments to Canvas as attached files.
        server_url (str): Base URL used for relative request paths.
        readiness_timeout (float): Seconds to wait for the server to report
            that it is listening.
        trusted_interpreter (str): The only binary allowed to run a start
            command.
        vendor_penalty (float): Points deducted for shipping node_modules.
        manifest_penalty (float): Points deducted for each package.json problem.
    """
    only_current: bool = False
    start_command: Optional[str] = None
    run_start_command: bool = False
    required_files: Tuple[str, ...] = ()
    required_collections: Tuple[str, ...] = ()
    check_manifest: bool = True
    uses_database: bool = False
    database_connection_string: str = DEFAULT_CONNECTION_STRING
    comments_as_files: bool = False
    server_url: str = DEFAULT_SERVER_URL
    readiness_timeout: float = DEFAULT_READINESS_TIMEOUT_SEC
    trusted_interpreter: str = DEFAULT_TRUSTED_INTERPRETER
    vendor_penalty: float = DEFAULT_VENDOR_PENALTY
    manifest_penalty: float = DEFAULT_MANIFEST_PENALTY

    def __post_init__(self):
        # Accept lists from YAML but store immutable tuples
        object.__setattr__(self, "required_files", tuple(self.required_files or ()))
        object.__setattr__(
            self,
            "required_collections",
            tuple(self.required_collections or ()),
        )
        if self.readiness_timeout <= 0:
            raise ConfigurationError(
                f"Invalid readiness timeout: {self.readiness_timeout} seconds"
            )

    @classmethod
    def from_dict(cls, data: dict) -> "AssignmentConfig":
        """Build a config from a dictionary, ignoring unrelated keys

        Args:
            data (dict): Configuration dictionary (e.g. parsed YAML).

        Returns:
            AssignmentConfig: The assignment configuration.
        """
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known - {"test_cases", "canvas"})
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {unknown}")
        return cls(**{key: value for key, value in data.items() if key in known})

@dataclass(frozen=True)
class CanvasConfig:
    """Canvas credentials used for grade uploads

    Args:
        api_key (str): Canvas API key.
        course_id (str): ID of the Canvas course the assignment is part of.
        assignment_id (str): ID of the Canvas assignment.
        base_url (str): Root URL of the Canvas instance.
    """
    api_key: str
    course_id: str
    assignment_id: str
    base_url: str = DEFAULT_CANVAS_URL

def load_config_file(config_path) -> dict:
    """Load a YAML configuration file

    Args:
        config_path (str): Path to the configuration file.

    Returns:
        dict: Configuration dictionary (empty if the file is empty).

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    if not config_path:
        raise ConfigurationError("Configuration path is required")
    config_path = pathlib.Path(config_path).resolve()

    try:
        with open(config_path, "r") as config_file:
            config = yaml.safe_load(config_file) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load configuration {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration must be a mapping: {config_path}")
    logger.info(f"Loaded configuration from {config_path}")
    return config
