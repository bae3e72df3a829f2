"""File watcher: PollingObserver feeding the import pipeline.

Watches a drop folder for new statement exports (.csv, .json), waits for
file stability (size+mtime stable for 10s), validates file completeness,
then hands the bytes to ImportPipeline.process_file.

Uses PollingObserver as primary (not fallback) due to NAS/Docker volume
unreliability with inotify. 30-second polling interval.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler

if TYPE_CHECKING:
    from bankfeed.pipeline import ImportPipeline, ImportReport

logger = logging.getLogger(__name__)

# File extensions we accept
SUPPORTED_EXTENSIONS = {".csv", ".json"}

# Default stability check parameters
DEFAULT_STABILITY_SECONDS = 10
DEFAULT_CHECK_INTERVAL = 2.0

# Default polling interval for PollingObserver
DEFAULT_POLL_INTERVAL = 30


class FileStabilityError(Exception):
    """Raised when a file fails post-stability validation."""


# ── File stability & validation ──────────────────────────


def wait_for_stable(
    filepath: Path,
    stability_seconds: float = DEFAULT_STABILITY_SECONDS,
    check_interval: float = DEFAULT_CHECK_INTERVAL,
    max_wait: float = 300.0,
) -> None:
    """Block until a statement export has stopped changing.

    A file counts as settled once its (size, mtime) snapshot has been
    unchanged for ``stability_seconds``. Bank downloads and sync clients
    often write in bursts, so any change restarts the clock.

    Raises:
        TimeoutError: If the file is still changing after max_wait.
    """
    deadline = time.monotonic() + max_wait
    last_snapshot: tuple[int, int] | None = None
    unchanged_since: float | None = None

    while time.monotonic() <= deadline:
        stat = filepath.stat()
        snapshot = (stat.st_size, stat.st_mtime_ns)
        now = time.monotonic()
        if snapshot != last_snapshot:
            last_snapshot, unchanged_since = snapshot, None
        elif unchanged_since is None:
            unchanged_since = now
        if unchanged_since is not None and now - unchanged_since >= stability_seconds:
            return
        time.sleep(check_interval)

    raise TimeoutError(f"File did not stabilize within {max_wait}s: {filepath}")


def validate_file_completeness(filepath: Path) -> None:
    """Post-stability validation: ensure file content is complete.

    - Any file: must not be empty
    - CSV files: must end with a newline
    - JSON files: must end with a closing ] or }

    Raises:
        FileStabilityError: If file appears incomplete.
    """
    suffix = filepath.suffix.lower()
    with open(filepath, "rb") as f:
        f.seek(0, 2)
        size = f.tell()
        if size == 0:
            raise FileStabilityError(f"Empty file: {filepath}")
        f.seek(max(0, size - 64))
        tail = f.read()

    if suffix == ".csv" and tail[-1:] not in (b"\n", b"\r"):
        raise FileStabilityError(f"CSV file does not end with newline: {filepath}")
    if suffix == ".json" and tail.rstrip()[-1:] not in (b"]", b"}"):
        raise FileStabilityError(f"JSON file appears truncated: {filepath}")


# ── File watcher ─────────────────────────────────────────


class FileWatcher(FileSystemEventHandler):
    """Watch a drop folder for new statement files using PollingObserver.

    Files are processed sequentially on the observer thread, each through
    its own ``asyncio.run`` of the pipeline.

    Args:
        watch_dir: Directory to watch for new files.
        pipeline: ImportPipeline to process files.
        owner: Owner the imported transactions belong to.
        stability_seconds: Seconds of stability before processing.
        check_interval: Seconds between stability checks.
        poll_interval: PollingObserver interval in seconds.
    """

    def __init__(
        self,
        watch_dir: Path,
        pipeline: ImportPipeline,
        owner: str,
        stability_seconds: float = DEFAULT_STABILITY_SECONDS,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.watch_dir = Path(watch_dir)
        self.pipeline = pipeline
        self.owner = owner
        self.stability_seconds = stability_seconds
        self.check_interval = check_interval
        self.poll_interval = poll_interval
        self._observer = None

    def start(self) -> None:
        """Start watching the drop folder."""
        from watchdog.observers.polling import PollingObserver

        if not self.watch_dir.exists():
            self.watch_dir.mkdir(parents=True, exist_ok=True)

        self._observer = PollingObserver(timeout=self.poll_interval)
        self._observer.schedule(self, str(self.watch_dir), recursive=False)
        self._observer.start()
        logger.info("Watching %s for new statement files", self.watch_dir)

    def stop(self) -> None:
        """Stop watching."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("File watcher stopped")

    def on_created(self, event) -> None:
        if event.is_directory:
            return
        self._handle(Path(event.src_path))

    def on_moved(self, event) -> None:
        # Browsers and sync clients write to a temp name, then rename
        if event.is_directory:
            return
        self._handle(Path(event.dest_path))

    def _handle(self, filepath: Path) -> None:
        if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return
        logger.info("New file detected: %s", filepath.name)
        self._process_file(filepath)

    def _process_file(self, filepath: Path) -> ImportReport | None:
        """Wait for stability, validate, then import."""
        try:
            wait_for_stable(
                filepath,
                stability_seconds=self.stability_seconds,
                check_interval=self.check_interval,
            )
            validate_file_completeness(filepath)

            content = filepath.read_bytes()
            report = asyncio.run(
                self.pipeline.process_file(content, filepath.name, self.owner)
            )
            logger.info(
                "Import result for %s: %s (processed=%d, failed=%d, skipped=%d)",
                filepath.name, "success" if report.success else "error",
                report.processed, report.failed, report.skipped,
            )
            return report

        except FileStabilityError as e:
            logger.error("File validation failed: %s", e)
        except TimeoutError as e:
            logger.error("File stability timeout: %s", e)
        except Exception:
            logger.exception("Unexpected error processing %s", filepath.name)
        return None
