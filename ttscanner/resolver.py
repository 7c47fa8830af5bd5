from __future__ import annotations

import asyncio
import base64
import threading
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import unquote

import sourcemap

from .console import RichLogger, quiet_logger
from .models import Resolution, RuntimeLocation, SourceLocation
from .normalize import artifact_path, display_source_path
from .patterns import DATA_URI_RX

MAP_SUFFIX = ".map"


class LocationResolver:
    """Resolve served-build locations to original source through source maps.

    Lookups never raise: a missing map yields ``Resolution.not_instrumented()``
    and any read, parse or lookup problem yields ``Resolution.failed()``.
    """

    def __init__(
        self,
        project_root: Path | str,
        static_prefix: str = "",
        logger: Optional[RichLogger] = None,
    ):
        self.project_root = Path(project_root).expanduser().absolute()
        self.static_prefix = static_prefix
        self.logger = logger or quiet_logger()
        self._global_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._maps: Dict[str, object] = {}

    def resolve(self, location: RuntimeLocation) -> Resolution:
        artifact = artifact_path(self.project_root, location.url, self.static_prefix)
        if artifact is None:
            self.logger.debug(f"No build artifact for {location.url}")
            return Resolution.not_instrumented()

        try:
            found = self._locate_map(artifact)
        except Exception as exc:
            self.logger.error(f"Failed to locate source map for {artifact}: {exc}")
            return Resolution.failed()
        if found is None:
            self.logger.debug(f"No source map for {artifact}")
            return Resolution.not_instrumented()
        cache_key, raw, map_dir = found

        try:
            index = self._load_index(cache_key, raw)
            token = index.lookup(location.line - 1, location.column - 1)
        except Exception as exc:
            self.logger.error(f"Failed to resolve {location} with {cache_key}: {exc!r}")
            return Resolution.failed()

        src = getattr(token, "src", None)
        src_line = getattr(token, "src_line", None)
        src_col = getattr(token, "src_col", None)
        if not src or src_line is None or src_col is None:
            self.logger.debug(f"Incomplete mapping for {location}")
            return Resolution.failed()

        path = display_source_path(src, map_dir, self.project_root)
        return Resolution.resolved(SourceLocation(path=path, line=src_line + 1, column=src_col + 1))

    async def resolve_async(self, location: RuntimeLocation) -> Resolution:
        return await asyncio.to_thread(self.resolve, location)

    def _locate_map(self, artifact: Path):
        sibling = artifact.with_name(artifact.name + MAP_SUFFIX)
        if sibling.is_file():
            return str(sibling), None, sibling.parent
        if not artifact.is_file():
            return None

        reference = sourcemap.discover(artifact.read_text(encoding="utf-8", errors="replace"))
        if not reference:
            return None
        reference = reference.strip()

        inline = DATA_URI_RX.match(reference)
        if inline:
            payload = inline.group("data")
            if ";base64" in inline.group("params"):
                raw = base64.b64decode(payload).decode("utf-8")
            else:
                raw = unquote(payload)
            return f"{artifact}#inline", raw, artifact.parent

        map_path = artifact.parent / unquote(reference.split("?", 1)[0])
        if not map_path.is_file():
            return None
        return str(map_path), None, map_path.parent

    def _lock_for(self, cache_key: str) -> threading.Lock:
        with self._global_lock:
            if cache_key not in self._locks:
                self._locks[cache_key] = threading.Lock()
            return self._locks[cache_key]

    def _load_index(self, cache_key: str, raw: Optional[str]):
        # Each map is parsed once; distinct maps do not share a lock.
        with self._lock_for(cache_key):
            index = self._maps.get(cache_key)
            if index is not None:
                return index
            if raw is None:
                raw = Path(cache_key).read_text(encoding="utf-8")
            index = sourcemap.loads(raw)
            self._maps[cache_key] = index
            return index
