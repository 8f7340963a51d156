"""
Canvas gradebook client for bulk grade uploads.
"""

from dataclasses import dataclass
import logging
from typing import List

import requests

from batchgrader.config import CanvasConfig, DEFAULT_CANVAS_URL

# Settings
DEFAULT_TIMEOUT_SEC = 30
COMMENT_FILE_NAME = "feedback.txt"
COMMENT_FILE_NOTE = "Feedback attached."

logger = logging.getLogger(__name__)

@dataclass
class GradeRecord:
    student_id: str
    grade: float
    comments: str

class CanvasGradebook:
    """Buffers grades and uploads them to Canvas in one request

    Args:
        api_key (str): Canvas API key.
        course_id (str): Canvas course ID.
        assignment_id (str): Canvas assignment ID.
        base_url (str, optional): Root URL of the Canvas instance.
        session (requests.Session, optional): Session used for API calls.
    """

    def __init__(
        self,
        api_key: str,
        course_id,
        assignment_id,
        base_url: str = DEFAULT_CANVAS_URL,
        session: requests.Session = None,
    ):
        self.course_id = str(course_id)
        self.assignment_id = str(assignment_id)
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}"})
        self.records: List[GradeRecord] = []

    @classmethod
    def from_config(cls, config: CanvasConfig, session: requests.Session = None):
        return cls(
            config.api_key,
            config.course_id,
            config.assignment_id,
            base_url=config.base_url,
            session=session,
        )

    @property
    def assignment_url(self) -> str:
        return (
            f"{self.base_url}/api/v1/courses/{self.course_id}"
            f"/assignments/{self.assignment_id}"
        )

    def add_student(self, student_id, grade: float, comments: str):
        """Queue a grade and comments for one student"""
        self.records.append(GradeRecord(str(student_id), grade, comments))

    def send_update(self, comments_as_files: bool = False):
        """Upload every queued grade

        Args:
            comments_as_files (bool, optional): Attach comments as text files
                instead of posting them as plain comments.

        Returns:
            dict: Canvas progress object for the bulk update.

        Raises:
            requests.HTTPError: If Canvas rejects a request.
        """
        data = []
        for record in self.records:
            prefix = f"grade_data[{record.student_id}]"
            data.append((f"{prefix}[posted_grade]", str(record.grade)))
            if comments_as_files and record.comments:
                file_id = self._upload_comment_file(record)
                data.append((f"{prefix}[text_comment]", COMMENT_FILE_NOTE))
                data.append((f"{prefix}[file_ids][]", str(file_id)))
            elif record.comments:
                data.append((f"{prefix}[text_comment]", record.comments))

        logger.info(f"Uploading {len(self.records)} grade(s) to Canvas")
        response = self.session.post(
            f"{self.assignment_url}/submissions/update_grades",
            data=data,
            timeout=DEFAULT_TIMEOUT_SEC,
        )
        response.raise_for_status()
        self.records = []
        return response.json()

    def _upload_comment_file(self, record: GradeRecord):
        content = record.comments.encode("utf-8")
        response = self.session.post(
            f"{self.assignment_url}/submissions/{record.student_id}/comments/files",
            data={
                "name": COMMENT_FILE_NAME,
                "size": len(content),
                "content_type": "text/plain",
            },
            timeout=DEFAULT_TIMEOUT_SEC,
        )
        response.raise_for_status()
        upload = response.json()

        response = self.session.post(
            upload["upload_url"],
            data=upload.get("upload_params", {}),
            files={"file": (COMMENT_FILE_NAME, content, "text/plain")},
            timeout=DEFAULT_TIMEOUT_SEC,
        )
        response.raise_for_status()
        return response.json()["id"]
