from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Protocol

from phasetrace.core.config import AppConfig

LOGGER = logging.getLogger(__name__)

FLUSH_TIMEOUT_SECONDS = 10.0


class CacheFlushError(Exception):
    pass


class CacheFlusher(Protocol):
    def flush(self) -> None: ...


def default_flush_command(platform: str | None = None) -> tuple[str, ...]:
    current = platform or sys.platform
    if current.startswith("win"):
        return ("ipconfig", "/flushdns")
    if current == "darwin":
        return ("dscacheutil", "-flushcache")
    return ("resolvectl", "flush-caches")


@dataclass(frozen=True)
class CommandCacheFlusher:
    command: tuple[str, ...]
    timeout_seconds: float = FLUSH_TIMEOUT_SECONDS

    def flush(self) -> None:
        LOGGER.debug("Flushing DNS cache with %s", " ".join(self.command))
        try:
            subprocess.run(
                list(self.command),
                check=True,
                capture_output=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise CacheFlushError(f"command not found: {self.command[0]}") from exc
        except subprocess.CalledProcessError as exc:
            raise CacheFlushError(
                f"{self.command[0]} exited with status {exc.returncode}"
                + _stderr_suffix(exc.stderr)
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise CacheFlushError(
                f"{self.command[0]} timed out after {self.timeout_seconds:g}s"
            ) from exc
        except OSError as exc:
            raise CacheFlushError(f"{self.command[0]} could not run: {exc}") from exc


class NoopCacheFlusher:
    def flush(self) -> None:
        return None


def build_cache_flusher(config: AppConfig) -> CacheFlusher:
    if not config.dns_flush_enabled:
        return NoopCacheFlusher()
    return CommandCacheFlusher(config.dns_flush_command or default_flush_command())


def _stderr_suffix(stderr: bytes | str | None) -> str:
    if not stderr:
        return ""
    text = stderr.decode("utf-8", "replace") if isinstance(stderr, bytes) else stderr
    text = text.strip()
    return f": {text}" if text else ""
