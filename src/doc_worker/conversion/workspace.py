import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .jobs import OutputFormat

logger = logging.getLogger(__name__)

RESULT_STEM = "file"


class Workspace:
    """Scratch directories for jobs.

    `temp/{uuid}/` holds one job's fetched input. `result/` is shared by every
    job because the renderer writes to fixed names there, so only one job may
    use it at a time.
    """

    def __init__(self, work_dir: str | Path) -> None:
        self._base = Path(work_dir).resolve()

    @property
    def temp_dir(self) -> Path:
        return self._base / "temp"

    @property
    def result_dir(self) -> Path:
        return self._base / "result"

    def job_dir(self, uuid: str) -> Path:
        return self.temp_dir / uuid

    def input_path(self, save_name: str) -> Path:
        return self.temp_dir.joinpath(*save_name.split("/"))

    def reset(self, uuid: str) -> Path:
        d = self.job_dir(uuid)
        if d.exists():
            shutil.rmtree(d)
            logger.info("Deleted dir: %s", d)
        d.mkdir(parents=True, exist_ok=True)
        logger.info("Created dir: %s", d)
        return d

    def release(self, uuid: str) -> None:
        d = self.job_dir(uuid)
        try:
            if d.exists():
                shutil.rmtree(d)
                logger.info("Deleted dir: %s", d)
        except OSError as exc:
            logger.warning("Cleanup of temp dir failed for uuid %s: %s", uuid, exc)

    @contextmanager
    def acquire(self, uuid: str) -> Iterator[Path]:
        """Reset the job dir and release it on every exit path."""
        self.reset(uuid)
        try:
            yield self.job_dir(uuid)
        finally:
            self.release(uuid)

    def result_path(self, fmt: OutputFormat) -> Path:
        self.result_dir.mkdir(parents=True, exist_ok=True)
        return self.result_dir / f"{RESULT_STEM}.{fmt.value}"

    def sidecar_dir(self) -> Path:
        return self.result_dir / f"{RESULT_STEM}.files"

    def clear_result(self) -> None:
        for fmt in OutputFormat:
            p = self.result_dir / f"{RESULT_STEM}.{fmt.value}"
            try:
                if p.exists():
                    p.unlink()
                    logger.info("Deleted result file: %s", p)
            except OSError as exc:
                logger.warning("Failed to delete result file %s: %s", p, exc)
        sidecar = self.sidecar_dir()
        if sidecar.exists():
            shutil.rmtree(sidecar, ignore_errors=True)
            logger.info("Deleted result assets: %s", sidecar)
