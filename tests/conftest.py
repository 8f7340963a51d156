import io
import json
import pathlib
import sys
import zipfile

import pytest
from rich.console import Console

SRC = pathlib.Path(__file__).resolve().parent.parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

class FakeResponse:
    def __init__(self, status_code=200, text="", payload=None):
        self.status_code = status_code
        self.text = text if payload is None else json.dumps(payload)
        self._payload = payload

    def json(self):
        if self._payload is not None:
            return self._payload
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f"{self.status_code} error", response=self)

class FakeSession:
    """Stands in for requests.Session, replaying queued responses"""

    def __init__(self, *responses, error=None):
        self.responses = list(responses)
        self.error = error
        self.calls = []
        self.headers = {}

    def _next(self):
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "data": data, "headers": headers})
        return self._next()

    def post(self, url, data=None, files=None, headers=None, timeout=None):
        self.calls.append({
            "method": "POST",
            "url": url,
            "data": data,
            "files": files,
            "headers": headers,
        })
        return self._next()

class FakeGradebook:
    def __init__(self):
        self.students = []
        self.updates = []

    def add_student(self, student_id, grade, comments):
        self.students.append((student_id, grade, comments))

    def send_update(self, comments_as_files=False):
        self.updates.append(comments_as_files)

class UnkillableSupervisor:
    """Supervisor whose process can never be stopped"""
    closed = False

    def stop(self):
        from batchgrader.errors import FatalGraderError
        raise FatalGraderError("Failed to kill student submission process.")

def write_tree(root, files: dict) -> pathlib.Path:
    """Create files under root from a {relative path: content} mapping"""
    root = pathlib.Path(root)
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if not isinstance(content, str):
            content = json.dumps(content)
        path.write_text(content, encoding="utf-8")
    return root

def write_archive(path, files: dict) -> pathlib.Path:
    """Create a zip archive from a {member name: content} mapping"""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in files.items():
            if not isinstance(content, str):
                content = json.dumps(content)
            archive.writestr(name, content)
    return path

@pytest.fixture()
def console():
    return Console(file=io.StringIO(), width=200, color_system=None)

@pytest.fixture()
def fake_gradebook():
    return FakeGradebook()
