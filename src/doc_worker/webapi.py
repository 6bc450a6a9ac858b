import os

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from doc_worker.config import get_config
from doc_worker.consumer import JobConsumer
from doc_worker.main import build_consumer, configure_logging

app = FastAPI(
    title="Document Conversion Worker",
    version=os.getenv("DOC_WORKER_VERSION", "0.1.0"),
    description=(
        "Queue-driven worker converting office documents to PDF/HTML. "
        "Exposes health and consumer status for the process host."
    ),
)

WORKER: JobConsumer | None = None


@app.on_event("startup")
async def _startup() -> None:
    global WORKER
    config = get_config()
    configure_logging(config.log_level)
    WORKER = build_consumer(config)
    await WORKER.start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    global WORKER
    if WORKER is not None:
        await WORKER.stop()


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/status")
async def status() -> JSONResponse:
    """Consumer state: whether it is subscribed, the job in flight, and counts per verdict."""
    if WORKER is None:
        raise HTTPException(status_code=503, detail={"code": "not_ready", "message": "consumer not started"})
    snapshot = WORKER.snapshot()
    code = 200 if snapshot["running"] else 503
    return JSONResponse(status_code=code, content=snapshot)


def run() -> None:
    """Serve the app with uvicorn on `WorkerConfig.host` and `WorkerConfig.port`."""
    import uvicorn

    config = get_config()
    uvicorn.run("doc_worker.webapi:app", host=config.host, port=config.port)


if __name__ == "__main__":
    run()
