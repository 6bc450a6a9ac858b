import json
from pathlib import Path

import pytest

from doc_worker.conversion import ConversionPipeline, OutputFormat, Workspace
from doc_worker.conversion.errors import SourceNotFoundError


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def job_body(**overrides) -> bytes:
    payload = {"uuid": "a1", "urlEncodedFileName": "report.docx", "extension": "docx"}
    payload.update(overrides)
    return json.dumps({k: v for k, v in payload.items() if v is not None}).encode("utf-8")


class FakeFetcher:
    def __init__(self, missing: bool = False, error: Exception | None = None) -> None:
        self.missing = missing
        self.error = error
        self.calls: list[tuple[str, Path]] = []

    def fetch(self, locator: str, destination: Path) -> None:
        self.calls.append((locator, destination))
        if self.missing:
            raise SourceNotFoundError(f"{locator} returned 404")
        if self.error is not None:
            raise self.error
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"source")


class FakeRenderer:
    """Writes the expected output unless told to silently do nothing."""

    def __init__(self, produce: bool = True, images: tuple[str, ...] = (), error: Exception | None = None) -> None:
        self.produce = produce
        self.images = images
        self.error = error
        self.calls: list[tuple[Path, OutputFormat, Path]] = []

    def render(self, source: Path, output_format: OutputFormat, destination: Path) -> None:
        self.calls.append((source, output_format, destination))
        assert source.exists()
        if self.error is not None:
            raise self.error
        if not self.produce:
            return
        destination.write_bytes(b"rendered")
        if output_format is OutputFormat.HTML and self.images:
            sidecar = destination.with_suffix(".files")
            sidecar.mkdir(exist_ok=True)
            for name in self.images:
                (sidecar / name).write_bytes(b"img")


class FakeBlobStore:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.puts: list[tuple[str, str]] = []

    def put(self, local_path: Path, key: str, content_type: str) -> str:
        if self.error is not None:
            raise self.error
        assert local_path.exists()
        self.puts.append((key, content_type))
        return f"https://s3.example/bucket/{key}"


class FakePublisher:
    def __init__(self) -> None:
        self.outcomes: list[tuple[str, bool]] = []

    async def publish(self, uuid: str, success: bool) -> bool:
        self.outcomes.append((uuid, success))
        return True


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path / "work")


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def pipeline(workspace, fetcher, renderer, blob_store, publisher) -> ConversionPipeline:
    return ConversionPipeline(workspace, fetcher, renderer, blob_store, publisher, max_deliveries=5)
