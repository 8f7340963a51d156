"""
Helpers for unpacking and inspecting a student submission.
"""

from dataclasses import dataclass, field
import json
import logging
import os
import pathlib
import re
import zipfile
from typing import Dict, List, Optional

from batchgrader.errors import SubmissionError

# Settings
MANIFEST_NAME = "package.json"
VENDOR_DIR_NAME = "node_modules"
COLLECTIONS_FILE = pathlib.Path("config") / "mongoCollections.js"
DEFAULT_MAX_UNZIP_SIZE_MB = 100
MAX_COMPRESSION_RATIO = 100

STUDENT_ID_PATTERN = re.compile(r"^[^_]*?(?:_LATE)?_([0-9]+)")
COLLECTION_PATTERN = re.compile(
    r"""^(?!.*(?://|/\*)).*getCollectionFn\(['"`](.*?)['"`]\)""",
    re.MULTILINE,
)

logger = logging.getLogger(__name__)

@dataclass
class ManifestInfo:
    """Parsed package.json

    Args:
        present (bool): Whether a readable manifest was found.
        module (bool): Whether the project uses ES module semantics.
        author (str): Declared author.
        start_command (str, optional): Declared `scripts.start`.
        dependencies (Dict[str, str]): Declared dependencies.
    """
    present: bool = False
    module: bool = False
    author: str = ""
    start_command: Optional[str] = None
    dependencies: Dict[str, str] = field(default_factory=dict)

@dataclass
class SubmissionScan:
    """What was found while walking a submission tree"""
    directory: pathlib.Path
    manifest_path: Optional[pathlib.Path] = None
    had_vendor_dir: bool = False
    missing_files: List[str] = field(default_factory=list)

def extract_student_id(archive_name: str) -> Optional[str]:
    """Get the Canvas student ID from a submission file name

    Names look like `<name>[_LATE]_<id>...`, e.g. `jdoe_LATE_123456.zip`.

    Returns:
        str: The student ID, or None if the name does not match.
    """
    match = STUDENT_ID_PATTERN.match(archive_name)
    return match.group(1) if match else None

def safe_extract(
    zip_path,
    extract_to,
    max_size: int = DEFAULT_MAX_UNZIP_SIZE_MB * 1024 * 1024,
):
    """Safely extract a zip file, checking for zip bombs and path traversal

    Raises:
        SubmissionError: If the archive is invalid or unsafe to extract.
    """
    total_size = 0

    if not zipfile.is_zipfile(zip_path):
        raise SubmissionError(f"Invalid zip file: {zip_path}")

    extract_to = pathlib.Path(extract_to)
    extract_to.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(zip_path, "r") as zip_ref:
        for member in zip_ref.infolist():

            # Check for path traversal
            if os.path.isabs(member.filename) or ".." in pathlib.PurePosixPath(member.filename).parts:
                raise SubmissionError(f"Unsafe path: {member.filename}")

            # Check compression ratio (zip bomb detection)
            if member.compress_size > 0:
                ratio = member.file_size / member.compress_size
                if ratio > MAX_COMPRESSION_RATIO:
                    raise SubmissionError(f"Suspicious compression ratio: {ratio}")

            # Check total extracted size
            total_size += member.file_size
            if total_size > max_size:
                raise SubmissionError(f"Archive too large when extracted: {total_size}")

        zip_ref.extractall(extract_to)
    logger.debug(f"Extracted {zip_path} to {extract_to}")

def scan_submission(root, required_files=()) -> SubmissionScan:
    """Walk a submission and find its working directory and required files

    The working directory is the deepest directory holding a package.json,
    else the first directory holding a required file, else the root.
    node_modules directories are recorded but never descended into.

    Args:
        root (Path): Root of the extracted submission.
        required_files (Iterable[str]): File names that must be present.

    Returns:
        SubmissionScan: The scan result.
    """
    root = pathlib.Path(root)
    remaining = set(required_files)
    scan = SubmissionScan(directory=root)
    manifest_depth = -1
    required_dir = None

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        if VENDOR_DIR_NAME in dirnames:
            scan.had_vendor_dir = True
            dirnames.remove(VENDOR_DIR_NAME)

        current = pathlib.Path(dirpath)
        depth = len(current.relative_to(root).parts)
        for name in sorted(filenames):
            if name.lower() == MANIFEST_NAME and depth > manifest_depth:
                scan.manifest_path = current / name
                manifest_depth = depth
            if name in remaining:
                remaining.discard(name)
                if required_dir is None:
                    required_dir = current

    if scan.manifest_path is not None:
        scan.directory = scan.manifest_path.parent
    elif required_dir is not None:
        scan.directory = required_dir
    scan.directory = scan.directory.resolve()
    scan.missing_files = [name for name in required_files if name in remaining]
    return scan

def load_manifest(manifest_path) -> ManifestInfo:
    """Load package.json

    Raises:
        SubmissionError: If the manifest is not valid JSON.
    """
    manifest_path = pathlib.Path(manifest_path)
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise SubmissionError(f"Malformed JSON syntax in '{manifest_path.name}'") from e
    if not isinstance(data, dict):
        raise SubmissionError(f"Malformed JSON syntax in '{manifest_path.name}'")

    author = data.get("author") or ""
    if isinstance(author, dict):
        author = author.get("name", "")
    scripts = data.get("scripts") or {}
    return ManifestInfo(
        present=True,
        module=data.get("type") == "module",
        author=str(author),
        start_command=scripts.get("start") if isinstance(scripts, dict) else None,
        dependencies=data.get("dependencies") or {},
    )

def read_collections(directory) -> List[str]:
    """Find the collection names registered in config/mongoCollections.js

    Commented-out registrations are ignored.

    Raises:
        SubmissionError: If the collections file cannot be read.
    """
    try:
        text = (pathlib.Path(directory) / COLLECTIONS_FILE).read_text(encoding="utf-8")
    except OSError as e:
        raise SubmissionError("Couldn't read collections configuration.") from e
    return COLLECTION_PATTERN.findall(text)
