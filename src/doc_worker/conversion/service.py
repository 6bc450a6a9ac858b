import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

from .errors import (
    Disposition,
    DecodeError,
    MissingOutputError,
    RenderTimeoutError,
    Verdict,
    classify,
    decide,
)
from .interfaces import BlobStore, OutcomeSink, Renderer, SourceFetcher
from .jobs import ConversionJob, OutputFormat, decode_job
from .locator import collapse_separators, pdf_upload_key, resolve_source
from .workspace import Workspace

logger = logging.getLogger(__name__)

HTML_UPLOAD_NAME = "presentation.html"


class JobState:
    RECEIVED = "received"
    RESOLVED = "resolved"
    FETCHED = "fetched"
    RENDERED = "rendered"
    UPLOADED = "uploaded"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobResult:
    verdict: Verdict
    disposition: Disposition
    state: str
    job: ConversionJob | None = None
    error: BaseException | None = None
    uploaded_keys: list[str] = field(default_factory=list)

    @property
    def uuid(self) -> str | None:
        return self.job.uuid if self.job is not None else None


class ConversionPipeline:
    """Runs one job from message body to a terminal JobResult.

    The pipeline never settles the delivery itself: it returns the
    disposition computed by `decide` and the consumer applies it. Callers
    must serialize calls, since every job renders into the shared result
    directory.
    """

    def __init__(
        self,
        workspace: Workspace,
        fetcher: SourceFetcher,
        renderer: Renderer,
        blob_store: BlobStore,
        publisher: OutcomeSink,
        *,
        drop_malformed: bool = True,
        max_deliveries: int = 0,
        render_timeout: float | None = None,
    ) -> None:
        self._workspace = workspace
        self._fetcher = fetcher
        self._renderer = renderer
        self._blob_store = blob_store
        self._publisher = publisher
        self._drop_malformed = drop_malformed
        self._max_deliveries = max_deliveries
        self._render_timeout = render_timeout
        self._current: ConversionJob | None = None

    @property
    def current_uuid(self) -> str | None:
        return self._current.uuid if self._current is not None else None

    async def process(self, body: bytes, *, delivery_count: int = 1) -> JobResult:
        try:
            job = decode_job(body)
        except DecodeError as e:
            logger.error("Rejecting malformed message: %s", e)
            verdict = classify(e)
            return JobResult(
                verdict=verdict,
                disposition=decide(verdict, drop_malformed=self._drop_malformed),
                state=JobState.FAILED,
                error=e,
            )
        self._current = job
        try:
            return await self.run(job, delivery_count=delivery_count)
        finally:
            self._current = None

    async def run(self, job: ConversionJob, *, delivery_count: int = 1) -> JobResult:
        state = JobState.RECEIVED
        error: Exception | None = None
        uploaded: list[str] = []
        logger.info(
            "Job %s received: file=%s extension=%s output=%s delivery=%d",
            job.uuid, job.encoded_file_name, job.extension, job.output.value, delivery_count,
        )
        try:
            with self._workspace.acquire(job.uuid):
                source = resolve_source(job)
                state = JobState.RESOLVED
                logger.info("source=%s | saveName=%s", source.fetch_locator, source.save_name)

                input_path = self._workspace.input_path(source.save_name)
                await asyncio.to_thread(self._fetcher.fetch, source.fetch_locator, input_path)
                state = JobState.FETCHED

                output_path = await self._render(job, input_path)
                state = JobState.RENDERED

                uploaded = await self._upload(job, output_path)
                state = JobState.UPLOADED
        except asyncio.CancelledError:
            logger.warning("Job %s cancelled in state %s; leaving delivery unsettled", job.uuid, state)
            raise
        except Exception as e:
            error = e

        verdict = classify(error)
        exhausted = self._max_deliveries > 0 and delivery_count >= self._max_deliveries
        disposition = decide(verdict, drop_malformed=self._drop_malformed, attempts_exhausted=exhausted)

        if error is None:
            logger.info("Job %s succeeded; uploaded %d object(s)", job.uuid, len(uploaded))
        elif verdict is Verdict.UNKNOWN:
            logger.error("Job %s failed in state %s", job.uuid, state, exc_info=error)
        else:
            logger.warning("Job %s failed in state %s (%s): %s", job.uuid, state, verdict.value, error)
        if exhausted and verdict in (Verdict.TRANSIENT, Verdict.UNKNOWN):
            logger.error("Job %s dropped after %d deliveries", job.uuid, delivery_count)

        if verdict in (Verdict.SUCCESS, Verdict.NOT_FOUND, Verdict.RENDER_FAILURE):
            self._workspace.clear_result()

        if disposition.outcome is not None:
            await self._publisher.publish(job.uuid, disposition.outcome)

        return JobResult(
            verdict=verdict,
            disposition=disposition,
            state=JobState.SUCCEEDED if error is None else JobState.FAILED,
            job=job,
            error=error,
            uploaded_keys=uploaded,
        )

    async def _render(self, job: ConversionJob, input_path: Path) -> Path:
        # A stale artifact from an earlier job must not pass verification.
        self._workspace.clear_result()
        output_path = self._workspace.result_path(job.output)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._renderer.render, input_path, job.output, output_path),
                timeout=self._render_timeout,
            )
        except asyncio.TimeoutError as e:
            # The render thread cannot be interrupted and is abandoned.
            raise RenderTimeoutError(f"render exceeded {self._render_timeout} seconds") from e
        if not output_path.exists():
            logger.warning("Rendered file not found at expected path: %s", output_path)
            raise MissingOutputError(f"renderer produced no output at {output_path}")
        logger.info("Rendered file saved: %s", output_path)
        return output_path

    async def _upload(self, job: ConversionJob, output_path: Path) -> list[str]:
        if job.output is OutputFormat.PDF:
            key = pdf_upload_key(job)
            await asyncio.to_thread(self._blob_store.put, output_path, key, "application/pdf")
            return [key]

        if not job.is_slide_deck:
            logger.info("Job %s: html output for .%s is not uploaded", job.uuid, job.extension)
            return []

        uploads = [(output_path, collapse_separators(f"{job.uuid}/{HTML_UPLOAD_NAME}"), "text/html")]
        sidecar = self._workspace.sidecar_dir()
        if sidecar.is_dir():
            for p in sorted(sidecar.rglob("*")):
                if not p.is_file():
                    continue
                rel = p.relative_to(sidecar).as_posix()
                key = collapse_separators(f"{job.uuid}/{sidecar.name}/{rel}")
                content_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
                uploads.append((p, key, content_type))

        keys: list[str] = []
        for local, key, content_type in uploads:
            await asyncio.to_thread(self._blob_store.put, local, key, content_type)
            keys.append(key)
        return keys
