"""
Resolution of Solidity `import` paths to source text.

Lookup order, first hit wins:
  1. the cache passed in by the caller
  2. a file under the contracts root
  3. the installed-package directories (literal path, then with ./ stripped)
  4. pinned raw-content URLs for @openzeppelin/contracts and @chainlink/contracts
  5. bare http(s) URLs
  6. relative imports retried under <root>/contracts
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import logging
import os
import re

import requests

logger = logging.getLogger(__name__)

DEFAULT_OPENZEPPELIN_VERSION = "v5.0.2"
DEFAULT_CHAINLINK_VERSION = "contracts-v1.3.0"

OPENZEPPELIN_PREFIX = "@openzeppelin/contracts/"
CHAINLINK_PREFIX = "@chainlink/contracts/"

_LEADING_DOT_SLASH = re.compile(r"^(\./)+")


@dataclass
class ImportResult:
    contents: Optional[str] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.contents is not None


class ImportCache:
    """Successful resolutions for one build; never shared across requests."""

    def __init__(self):
        self._entries: dict[str, str] = {}

    def get(self, path: str) -> Optional[str]:
        return self._entries.get(path)

    def put(self, path: str, contents: str) -> None:
        self._entries[path] = contents

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ImportResolver:
    def __init__(
        self,
        root: Optional[Path] = None,
        package_dirs: Optional[list[Path]] = None,
        cache: Optional[ImportCache] = None,
        http: Optional[requests.Session] = None,
        openzeppelin_version: str = DEFAULT_OPENZEPPELIN_VERSION,
        chainlink_version: str = DEFAULT_CHAINLINK_VERSION,
        timeout: float = 10,
    ):
        self.root = Path(root or os.getcwd()).resolve()
        self.package_dirs = package_dirs or [
            self.root / "node_modules",
            self.root.parent / "node_modules",
        ]
        self.cache = cache if cache is not None else ImportCache()
        self.http = http or requests.Session()
        self.timeout = timeout
        self.openzeppelin_base_url = (
            "https://raw.githubusercontent.com/OpenZeppelin/openzeppelin-contracts/"
            f"{openzeppelin_version}/"
        )
        self.chainlink_base_url = (
            "https://raw.githubusercontent.com/smartcontractkit/chainlink/"
            f"{chainlink_version}/contracts/"
        )

    def resolve(self, import_path: str) -> ImportResult:
        cached = self.cache.get(import_path)
        if cached is not None:
            return ImportResult(contents=cached)

        normalized = _LEADING_DOT_SLASH.sub("", import_path)
        contents = (
            self._read_local(self.root, normalized)
            or self._resolve_package(import_path)
            or self._resolve_package(normalized)
            or self._resolve_registry(import_path)
            or self._resolve_http(import_path)
        )

        if contents is None and import_path.startswith("."):
            contents = self._read_local(self.root / "contracts", import_path)

        if contents is None:
            logger.info(f"Import not resolved: {import_path}")
            return ImportResult(error=f"File not found: {import_path}")

        self.cache.put(import_path, contents)
        return ImportResult(contents=contents)

    def _read_local(self, base: Path, relative: str) -> Optional[str]:
        base = base.resolve()
        candidate = (base / relative).resolve()
        if not candidate.is_relative_to(base):
            logger.warning(f"Import {relative} resolves outside {base}; ignored")
            return None
        try:
            if candidate.is_file():
                return candidate.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to read import {candidate}: {e}")
        return None

    def _resolve_package(self, import_path: str) -> Optional[str]:
        for base in self.package_dirs:
            contents = self._read_local(base, import_path)
            if contents is not None:
                return contents
        return None

    def _resolve_registry(self, import_path: str) -> Optional[str]:
        if import_path.startswith(OPENZEPPELIN_PREFIX):
            relative = "contracts/" + import_path[len(OPENZEPPELIN_PREFIX):]
            return self._fetch(self.openzeppelin_base_url + relative)
        if import_path.startswith(CHAINLINK_PREFIX):
            relative = import_path[len(CHAINLINK_PREFIX):]
            return self._fetch(self.chainlink_base_url + relative)
        return None

    def _resolve_http(self, import_path: str) -> Optional[str]:
        if not import_path.startswith(("http://", "https://")):
            return None
        return self._fetch(import_path)

    def _fetch(self, url: str) -> Optional[str]:
        try:
            response = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Failed to download import from {url}: {e}")
            return None
        if 200 <= response.status_code < 300:
            return response.text
        logger.warning(f"Import download from {url} returned {response.status_code}")
        return None
