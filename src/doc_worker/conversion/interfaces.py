from pathlib import Path
from typing import Protocol

from .jobs import OutputFormat


class SourceFetcher(Protocol):
    def fetch(self, locator: str, destination: Path) -> None:
        """Download the document at `locator` to `destination`.

        Raises SourceNotFoundError when the locator names a missing resource.
        This is a blocking call; callers should offload to threads if needed.
        """


class Renderer(Protocol):
    def render(self, source: Path, output_format: OutputFormat, destination: Path) -> None:
        """Render `source` into `destination` synchronously.

        Not safe to call concurrently: implementations may share automation
        state and write to fixed paths.
        """


class BlobStore(Protocol):
    def put(self, local_path: Path, key: str, content_type: str) -> str:
        """Upload a local file under `key` and return its public URL."""


class OutcomeSink(Protocol):
    async def publish(self, uuid: str, success: bool) -> bool:
        """Report a job outcome; must never raise for delivery failures."""
