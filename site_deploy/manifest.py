"""
Which files get uploaded, and under which key.

`list_files` walks the build output directory the way the deploy script always
has: every file, dot-files included, skipping excluded directories.
`build_upload_tasks` turns the listing into one `UploadTask` per file.
"""

import mimetypes
import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

# Directory names never uploaded.
EXCLUDE_DIRS: Sequence[str] = (".git",)

# `mimetypes` falls back to this for unknown binary extensions; S3 applies its
# own default when ContentType is omitted, so it is treated as unknown.
GENERIC_CONTENT_TYPE: str = "application/octet-stream"


@dataclass(frozen=True)
class FileManifest:
    """Relative POSIX paths of the files under `base_dir`."""

    base_dir: str
    files: Sequence[str]

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class UploadTask:
    local_path: str
    remote_key: str
    content_type: Optional[str] = None


def guess_content_type(filename: str) -> Optional[str]:
    """
    Returns the MIME type for `filename` based on its extension, or None.

    `index.html` gives `text/html`; `data.bin` and extension-less files give None.
    """
    content_type, _ = mimetypes.guess_type(filename)
    if content_type is None or content_type == GENERIC_CONTENT_TYPE:
        return None
    return content_type


def list_files(base_dir: str, exclude_dirs: Iterable[str] = EXCLUDE_DIRS) -> FileManifest:
    """
    Lists every file below `base_dir`, recursively.

    Simple Explanation:
    This walks through the build folder and all its sub-folders and writes down
    the path of each file relative to the folder, always with forward slashes,
    because that is what the object key in the bucket will be. Hidden files such
    as `.well-known/apple-app-site-association` are kept; directories named in
    `exclude_dirs` (like `.git`) are skipped entirely.

    Args:
        base_dir (str): The build output directory.
        exclude_dirs (Iterable[str]): Directory names to skip at any depth.

    Returns:
        FileManifest: The base directory and the sorted relative paths.
    """
    base_dir_abs: str = os.path.abspath(base_dir)
    excluded = set(exclude_dirs)
    files: List[str] = []

    for root, dirs, filenames in os.walk(base_dir_abs):
        # Prune in place so os.walk never descends into excluded directories
        dirs[:] = [d for d in dirs if d not in excluded]
        for filename in filenames:
            relative_path: str = os.path.relpath(os.path.join(root, filename), base_dir_abs)
            files.append(relative_path.replace(os.sep, "/"))

    files.sort()
    return FileManifest(base_dir=base_dir_abs, files=tuple(files))


def build_upload_tasks(manifest: FileManifest, prefix: str = "") -> List[UploadTask]:
    """Creates one UploadTask per manifest entry, optionally under a key prefix."""
    tasks: List[UploadTask] = []
    for relative_path in manifest.files:
        remote_key: str = relative_path.lstrip("/")
        if prefix:
            remote_key = f"{prefix.strip('/')}/{remote_key}"
        tasks.append(
            UploadTask(
                local_path=os.path.join(manifest.base_dir, *relative_path.split("/")),
                remote_key=remote_key,
                content_type=guess_content_type(relative_path),
            )
        )
    return tasks
