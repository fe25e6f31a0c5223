"""Locate and validate agent CLI executables."""

import logging
import os
import shutil
import subprocess
import threading
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from cli_agents.config import settings
from cli_agents.exceptions import DiscoveryError
from cli_agents.services.providers.base import BaseProvider

logger = logging.getLogger(__name__)

WELL_KNOWN_DIRS = ("~/.local/bin", "/usr/local/bin", "/opt/homebrew/bin", "/usr/bin")


class CliAvailability(BaseModel):
    """Outcome of an availability check, for health reporting."""

    available: bool
    path: Optional[str] = None
    version: Optional[str] = None
    reason: Optional[str] = None


class CliDiscovery:
    """
    Resolves a provider's executable.

    Order: explicit path, ``<PROVIDER>_CLI_PATH``, PATH lookup, well-known
    install locations. A candidate wins if it is executable and exits 0 on the
    version probe. Results are cached per instance.
    """

    def __init__(self, provider: BaseProvider, probe_timeout: Optional[float] = None):
        self.provider = provider
        self.probe_timeout = probe_timeout if probe_timeout is not None else settings.probe_timeout
        self._lock = threading.Lock()
        self._cache: Dict[Optional[str], Tuple[str, str]] = {}

    def candidates(self, explicit_path: Optional[str] = None) -> List[str]:
        """All candidate paths in resolution order, without duplicates."""
        found: List[str] = []

        def add(path: Optional[str]) -> None:
            if not path:
                return
            path = os.path.expanduser(path)
            if os.sep not in path:
                path = shutil.which(path) or path
            if path not in found:
                found.append(path)

        add(explicit_path)
        if self.provider.env_var:
            add(os.environ.get(self.provider.env_var))
        for name in self.provider.executable_names:
            add(shutil.which(name))
        for directory in WELL_KNOWN_DIRS:
            for name in self.provider.executable_names:
                add(os.path.join(directory, name))
        for path in self.provider.extra_search_paths:
            add(path)
        return found

    def probe(self, path: str) -> Optional[str]:
        """
        Run the version probe.

        Returns:
            The first line of the version output ("" if it printed nothing),
            or None when the candidate is not a working CLI
        """
        if not os.path.isfile(path) or not os.access(path, os.X_OK):
            return None
        try:
            completed = subprocess.run(
                [path, *self.provider.version_args],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Version probe timed out for {path} after {self.probe_timeout:g}s")
            return None
        except OSError as e:
            logger.debug(f"Version probe failed for {path}: {e}")
            return None

        if completed.returncode != 0:
            logger.debug(f"Version probe for {path} exited {completed.returncode}")
            return None

        lines = (completed.stdout or completed.stderr).strip().splitlines()
        return lines[0].strip() if lines else ""

    def _lookup(self, explicit_path: Optional[str]) -> Tuple[str, str]:
        with self._lock:
            cached = self._cache.get(explicit_path)
        if cached:
            return cached

        tried = self.candidates(explicit_path)
        for path in tried:
            version = self.probe(path)
            if version is None:
                if path == explicit_path:
                    logger.warning(f"Configured {self.provider.name} path {path} is not a working CLI")
                continue
            logger.info(f"{self.provider.name} CLI found at {path} ({version or 'unknown version'})")
            with self._lock:
                self._cache[explicit_path] = (path, version)
            return path, version

        raise DiscoveryError(self.provider.name, tried)

    def resolve(self, explicit_path: Optional[str] = None) -> str:
        """
        Return a working executable path.

        Raises:
            DiscoveryError: When no candidate passes the version probe
        """
        path, _ = self._lookup(explicit_path)
        return path

    def check_availability(self, explicit_path: Optional[str] = None) -> CliAvailability:
        try:
            path, version = self._lookup(explicit_path)
        except DiscoveryError as e:
            return CliAvailability(available=False, reason=str(e))
        return CliAvailability(available=True, path=path, version=version or None)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
