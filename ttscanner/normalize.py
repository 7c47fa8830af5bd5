from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlsplit

from .patterns import ANSI_ESCAPE_RX


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RX.sub("", text)


def positive_int(value: object) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        return None
    return number if number >= 1 else None


def normalize_prefix(prefix: str) -> str:
    value = prefix.strip().strip("/")
    return f"/{value}/" if value else "/"


def url_to_relative_path(url: str, static_prefix: str = "") -> str:
    """Map a served URL onto a build-output path relative to the project root.

    ``http://127.0.0.1:8080/static/js/app.js?v=3`` with prefix ``static``
    becomes ``js/app.js``. URLs outside the prefix keep their full path.
    """
    parsed = urlsplit(url)
    path = unquote(parsed.path)
    if not path.startswith("/"):
        path = "/" + path
    prefix = normalize_prefix(static_prefix)
    if prefix != "/" and path.startswith(prefix):
        path = path[len(prefix) - 1 :]
    parts = [p for p in PurePosixPath(path).parts if p not in ("/", "", ".", "..")]
    return "/".join(parts)


def artifact_path(project_root: Path, url: str, static_prefix: str = "") -> Optional[Path]:
    relative = url_to_relative_path(url, static_prefix)
    if not relative:
        return None
    return project_root / relative


def display_source_path(source: str, map_dir: Path, project_root: Path) -> str:
    """Render a source-map ``sources`` entry as a path relative to the project.

    ``file://`` URLs become filesystem paths, other URL-like entries
    (``webpack://...``) are kept verbatim, and anything resolving outside the
    project root is returned as an absolute POSIX path.
    """
    parsed = urlsplit(source)
    if parsed.scheme == "file":
        candidate = Path(unquote(parsed.path))
    elif parsed.scheme and len(parsed.scheme) > 1:
        return source
    else:
        candidate = Path(source)
        if not candidate.is_absolute():
            candidate = map_dir / candidate
    resolved = Path(os.path.normpath(candidate.absolute()))
    root = Path(os.path.normpath(project_root.absolute()))
    try:
        return resolved.relative_to(root).as_posix()
    except ValueError:
        return resolved.as_posix()
