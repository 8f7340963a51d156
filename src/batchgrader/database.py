"""
MongoDB setup and teardown for database-backed assignments.
"""

import logging
import pathlib
import re

from pymongo import MongoClient

from batchgrader.config import DEFAULT_CONNECTION_STRING
from batchgrader.errors import SubmissionError

# Settings
SETTINGS_FILE = pathlib.Path("config") / "settings.js"
DATABASE_PATTERN = re.compile(r"""database\s*:\s*['"`](.*?)['"`]""")

logger = logging.getLogger(__name__)

def render_settings(server_url: str, database: str, module: bool = True) -> str:
    """Render a settings.js that points the submission at the grading database"""
    body = (
        "{\n"
        f'  serverUrl: "{server_url}",\n'
        f'  database: "{database}"\n'
        "}"
    )
    if module:
        return f"export const mongoConfig = {body};\n"
    return f"module.exports = {{\n  mongoConfig: {body}\n}};\n"

class DatabaseSession:
    """Points a submission at the grading database and cleans up afterwards

    Args:
        directory (Path): Working directory of the submission.
        connection_string (str, optional): Grading database connection string.
        module (bool, optional): Write settings.js as an ES module.
        client_factory (Callable, optional): Creates the database client.
    """

    def __init__(
        self,
        directory,
        connection_string: str = DEFAULT_CONNECTION_STRING,
        module: bool = True,
        client_factory=MongoClient,
    ):
        self.directory = pathlib.Path(directory)
        self.connection_string = connection_string
        self.module = module
        self._client_factory = client_factory
        self.client = None
        self.db = None
        self.database_name = None

    def setup(self):
        """Rewrite the submission's settings and open a connection

        Returns:
            pymongo.database.Database: Handle to the submission's database.

        Raises:
            SubmissionError: If the settings file is missing or names no database.
        """
        settings_path = self.directory / SETTINGS_FILE
        try:
            settings = settings_path.read_text(encoding="utf-8")
        except OSError as e:
            raise SubmissionError(f"Couldn't read database settings in '{SETTINGS_FILE}'.") from e

        match = DATABASE_PATTERN.search(settings)
        if not match:
            raise SubmissionError(f"No database name found in '{SETTINGS_FILE}'.")
        self.database_name = match.group(1)

        settings_path.write_text(
            render_settings(self.connection_string, self.database_name, self.module),
            encoding="utf-8",
        )
        logger.debug(f"Pointed {settings_path} at {self.connection_string}")

        self.client = self._client_factory(self.connection_string)
        self.db = self.client[self.database_name]
        return self.db

    def teardown(self):
        """Drop the submission's database and close the connection"""
        if self.client is None:
            return
        try:
            if self.database_name:
                logger.debug(f"Dropping database {self.database_name}")
                self.client.drop_database(self.database_name)
        finally:
            self.client.close()
            self.client = None
            self.db = None
