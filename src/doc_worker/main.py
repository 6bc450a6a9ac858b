import asyncio
import logging
import signal

from doc_worker.config import WorkerConfig, get_config
from doc_worker.consumer import JobConsumer
from doc_worker.conversion import ConversionPipeline, OutputFormat, Workspace
from doc_worker.conversion.adapters import (
    DoclingHtmlRenderer,
    FormatRouter,
    HttpSourceFetcher,
    S3BlobStore,
    SofficeRenderer,
)
from doc_worker.publisher import OutcomePublisher

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_consumer(config: WorkerConfig) -> JobConsumer:
    """Wire the production adapters into a consumer for `config`."""
    soffice = SofficeRenderer(config.soffice_bin, timeout=config.render_timeout_sec)
    renderer = FormatRouter({
        OutputFormat.PDF: soffice,
        OutputFormat.HTML: DoclingHtmlRenderer(slide_converter=soffice),
    })
    pipeline = ConversionPipeline(
        workspace=Workspace(config.work_dir),
        fetcher=HttpSourceFetcher(config.download_base, timeout=config.fetch_timeout_sec),
        renderer=renderer,
        blob_store=S3BlobStore(
            config.s3_endpoint,
            config.s3_access_key_id,
            config.s3_secret_access_key,
            config.s3_bucket,
            public_read=config.s3_public_read,
        ),
        publisher=OutcomePublisher(config.amqp_url, config.outcome_queue),
        drop_malformed=config.drop_malformed,
        max_deliveries=config.max_deliveries,
        render_timeout=config.render_timeout_sec,
    )
    return JobConsumer(config, pipeline)


async def serve(config: WorkerConfig, stop_event: asyncio.Event | None = None) -> None:
    """Consume until SIGINT/SIGTERM (or `stop_event`), then shut down gracefully."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform/thread; rely on stop_event.
            pass

    consumer = build_consumer(config)
    try:
        await consumer.start()
        await stop_event.wait()
    finally:
        logger.info("Shutdown requested; waiting for in-flight job")
        await consumer.stop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def run() -> None:
    """Run the worker without the HTTP surface."""
    config = get_config()
    configure_logging(config.log_level)
    asyncio.run(serve(config))


if __name__ == "__main__":
    run()
