from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np
from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from app.api.v1.schemas import JobStatus
from app.config import get_settings
from app.models.ads import FormatSpec
from app.models.jobs import Job
from app.services.adaptation import adapt_all
from app.services.analysis import ContentAnalyzer, get_content_analyzer
from app.services.catalog import get_catalog
from app.services.images import decode_image
from app.services.renderers import Renderer, build_renderer


logger = logging.getLogger(__name__)


class JobStorageError(RuntimeError):
    """Raised when a storage operation fails in a non-recoverable way."""


class InvalidSourceImage(ValueError):
    """Raised when the uploaded source cannot be decoded as an image."""


class JobStore:
    """
    Simple in-memory job store with filesystem-backed asset storage.

    Each job writes its source under `<base_dir>/<job_id>/` and, once the
    adaptation run finishes, one `<format key>.png` per successful format.
    """

    def __init__(
        self,
        base_dir: Path,
        analyzer: ContentAnalyzer,
        renderer: Renderer,
        catalog: Sequence[FormatSpec],
        max_workers: int | None = None,
    ) -> None:
        self._base_dir = base_dir
        self._jobs: Dict[str, Job] = {}
        self.analyzer = analyzer
        self.renderer = renderer
        self.catalog = tuple(catalog)
        self.max_workers = max_workers
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    async def create_job(self, job_id: str, source_image: UploadFile) -> Job:
        """
        Persist the uploaded source, then analyze and adapt it to every format.

        The CPU-bound pipeline runs in a worker thread so the event loop stays
        responsive. Raises InvalidSourceImage for undecodable uploads and
        JobStorageError when files cannot be written.
        """
        job_dir = self._base_dir / job_id
        contents = await source_image.read()
        try:
            image = decode_image(contents)
        except ValueError as exc:
            raise InvalidSourceImage(str(exc)) from exc

        try:
            job_dir.mkdir(parents=True, exist_ok=True)
            source_ext = os.path.splitext(source_image.filename or "")[1] or ".bin"
            source_path = job_dir / f"source{source_ext}"
            source_path.write_bytes(contents)
        except OSError as exc:  # noqa: PERF203
            raise JobStorageError("Failed to persist job files to disk.") from exc

        job = Job(
            id=job_id,
            status=JobStatus.PENDING,
            source_path=str(source_path),
            source_width=int(image.shape[1]),
            source_height=int(image.shape[0]),
            renderer=self.renderer.name,
        )
        self._jobs[job.id] = job
        await run_in_threadpool(self.run_pipeline, job, image)
        return job

    def run_pipeline(self, job: Job, image: np.ndarray) -> None:
        """Analyze the source, adapt it to every catalog format and persist outputs."""
        job.status = JobStatus.ANALYZING
        job.touch()
        job.analysis = self.analyzer.analyze(image)

        job.status = JobStatus.GENERATING
        job.touch()

        def on_progress(format_name: str, percent: int) -> None:
            job.progress[format_name] = percent
            job.touch()

        job.results = adapt_all(
            image,
            job.analysis,
            self.catalog,
            on_progress=on_progress,
            renderer=self.renderer,
            max_workers=self.max_workers,
        )

        job_dir = Path(job.source_path).parent
        for key, result in job.results.items():
            if not result.ok:
                continue
            output_path = job_dir / f"{key}.png"
            try:
                output_path.write_bytes(result.image)
            except OSError as exc:
                logger.error("Failed to persist %s for job %s: %s", key, job.id, exc)
                continue
            job.output_paths[key] = str(output_path)

        succeeded = sum(1 for result in job.results.values() if result.ok)
        if succeeded == len(job.results):
            job.status = JobStatus.COMPLETED
        elif succeeded:
            job.status = JobStatus.PARTIAL
        else:
            job.status = JobStatus.FAILED
            job.error = "All formats failed."
        job.touch()
        logger.info(
            "Job %s finished: %s (%d/%d formats)",
            job.id,
            job.status.value,
            succeeded,
            len(job.results),
        )

    async def get_job(self, job_id: str) -> Job | None:
        """Retrieve a job by its identifier, if it exists."""
        return self._jobs.get(job_id)

    async def list_jobs(self) -> List[Job]:
        """Return all known jobs. Intended for debugging and admin tooling."""
        return list(self._jobs.values())


_default_store: JobStore | None = None


def get_job_store() -> JobStore:
    """
    Return the process-wide job store instance.

    Abstracted behind a function to make it easy to later swap out the
    implementation or inject different stores in tests.
    """
    global _default_store
    if _default_store is None:
        settings = get_settings()
        _default_store = JobStore(
            base_dir=Path(settings.storage_dir),
            analyzer=get_content_analyzer(),
            renderer=build_renderer(settings),
            catalog=get_catalog(),
            max_workers=settings.max_workers,
        )
    return _default_store
