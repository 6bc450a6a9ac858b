import logging
import subprocess
from pathlib import Path
from urllib.parse import quote

import boto3
import requests
from botocore.client import Config as BotoConfig

from .errors import (
    MissingOutputError,
    RenderError,
    RenderTimeoutError,
    SourceNotFoundError,
    UnsupportedSourceError,
)
from .interfaces import BlobStore, Renderer, SourceFetcher
from .jobs import SLIDE_DECK_EXTENSIONS, OutputFormat
from .locator import is_http_url

logger = logging.getLogger(__name__)

WORD_EXTENSIONS = frozenset({"doc", "docx", "odt", "rtf"})
SOFFICE_EXTENSIONS = WORD_EXTENSIONS | SLIDE_DECK_EXTENSIONS
DOCLING_EXTENSIONS = frozenset({"docx", "pptx", "xlsx", "html", "htm", "md", "pdf"})
LEGACY_SLIDE_EXTENSIONS = SLIDE_DECK_EXTENSIONS - DOCLING_EXTENSIONS

CHUNK = 1024 * 1024


class HttpSourceFetcher(SourceFetcher):
    def __init__(
        self,
        base_download_url: str,
        *,
        timeout: float = 60,
        session: requests.Session | None = None,
    ) -> None:
        self._base = base_download_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def url_for(self, locator: str) -> str:
        if is_http_url(locator):
            return locator
        return f"{self._base}/{locator.lstrip('/')}"

    def fetch(self, locator: str, destination: Path) -> None:
        url = self.url_for(locator)
        logger.info("Downloading from: %s", url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp = destination.with_name(destination.name + ".part")
        with self._session.get(url, stream=True, timeout=(5, self._timeout)) as resp:
            if resp.status_code in (404, 410):
                raise SourceNotFoundError(f"{url} returned {resp.status_code}")
            resp.raise_for_status()
            with tmp.open("wb") as f_out:
                for chunk in resp.iter_content(chunk_size=CHUNK):
                    if chunk:
                        f_out.write(chunk)
        tmp.replace(destination)


class S3BlobStore(BlobStore):
    def __init__(
        self,
        endpoint: str | None,
        access_key_id: str | None,
        secret_access_key: str | None,
        bucket: str | None,
        *,
        public_read: bool = True,
        client=None,
    ) -> None:
        self._endpoint = endpoint
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._bucket = bucket
        self._public_read = public_read
        self._client = client

    def _get_client(self):
        if self._client is not None:
            return self._client
        required = [self._endpoint, self._access_key_id, self._secret_access_key, self._bucket]
        if any(not v for v in required):
            raise RuntimeError("S3 configuration is incomplete; check env vars.")
        session = boto3.session.Session()
        self._client = session.client(
            service_name="s3",
            aws_access_key_id=self._access_key_id,
            aws_secret_access_key=self._secret_access_key,
            endpoint_url=self._endpoint,
            config=BotoConfig(signature_version="s3v4"),
        )
        return self._client

    def public_url(self, key: str) -> str:
        endpoint = (self._endpoint or "").rstrip("/")
        return f"{endpoint}/{self._bucket}/{quote(key, safe='/')}"

    def put(self, local_path: Path, key: str, content_type: str) -> str:
        client = self._get_client()
        extra = {"ContentType": content_type, "CacheControl": "max-age=31536000"}
        if self._public_read:
            extra["ACL"] = "public-read"
        logger.info("S3 put: endpoint=%s bucket=%s key=%s", self._endpoint, self._bucket, key)
        client.upload_file(str(local_path), self._bucket, key, ExtraArgs=extra)
        logger.info("Uploaded to s3://%s/%s", self._bucket, key)
        return self.public_url(key)


class SofficeRenderer(Renderer):
    """Renders office documents to PDF with headless LibreOffice."""

    def __init__(self, binary: str = "soffice", *, timeout: float = 600) -> None:
        self._binary = binary
        self._timeout = timeout

    def convert(self, source: Path, target_ext: str, outdir: Path) -> Path:
        """Run `soffice --convert-to target_ext` and return the produced file."""
        cmd = [
            self._binary,
            "--headless",
            "--norestore",
            "--nolockcheck",
            "--convert-to", target_ext,
            "--outdir", str(outdir),
            str(source),
        ]
        try:
            subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as e:
            raise RenderTimeoutError(f"soffice timed out after {self._timeout} seconds") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "unknown error").strip()
            raise RenderError(f"soffice failed: {detail[:500]}") from e
        # soffice names its output after the source stem.
        return outdir / f"{source.stem}.{target_ext}"

    def render(self, source: Path, output_format: OutputFormat, destination: Path) -> None:
        ext = source.suffix.lstrip(".").lower()
        if output_format is not OutputFormat.PDF or ext not in SOFFICE_EXTENSIONS:
            raise UnsupportedSourceError(f"cannot render .{ext} to {output_format.value}")

        produced = self.convert(source, "pdf", destination.parent)
        if produced != destination and produced.exists():
            produced.replace(destination)


class DoclingHtmlRenderer(Renderer):
    """Renders documents to HTML with Docling, writing images next to the page.

    Pictures go to `{stem}.files/` beside the HTML file and are referenced
    relatively, so the page and its assets can be uploaded side by side.
    Slide formats Docling cannot read (ppt, pps, ppsx, odp) are first turned
    into pptx by `slide_converter`, next to the source.
    """

    def __init__(self, slide_converter: SofficeRenderer | None = None) -> None:
        self._converter = None
        self._slide_converter = slide_converter

    def _get_converter(self):
        if self._converter is None:
            from docling.document_converter import DocumentConverter  # type: ignore
            self._converter = DocumentConverter()
        return self._converter

    def _readable_source(self, source: Path) -> Path:
        ext = source.suffix.lstrip(".").lower()
        if ext in DOCLING_EXTENSIONS:
            return source
        if ext in LEGACY_SLIDE_EXTENSIONS and self._slide_converter is not None:
            converted = self._slide_converter.convert(source, "pptx", source.parent)
            if not converted.exists():
                raise MissingOutputError(f"soffice produced no pptx for {source.name}")
            return converted
        raise UnsupportedSourceError(f"cannot render .{ext} to html")

    def render(self, source: Path, output_format: OutputFormat, destination: Path) -> None:
        if output_format is not OutputFormat.HTML:
            raise UnsupportedSourceError(f"cannot render {source.suffix} to {output_format.value}")
        readable = self._readable_source(source)

        from docling.exceptions import ConversionError as DoclingConversionError  # type: ignore
        from docling_core.types.doc import ImageRefMode

        try:
            result = self._get_converter().convert(str(readable))
        except DoclingConversionError as e:
            raise RenderError(f"docling failed: {e}") from e
        artifacts = Path(destination.with_suffix(".files").name)
        result.document.save_as_html(
            destination,
            artifacts_dir=artifacts,
            image_mode=ImageRefMode.REFERENCED,
        )


class FormatRouter(Renderer):
    """Dispatches to the renderer registered for the requested output format."""

    def __init__(self, renderers: dict[OutputFormat, Renderer]) -> None:
        self._renderers = dict(renderers)

    def render(self, source: Path, output_format: OutputFormat, destination: Path) -> None:
        renderer = self._renderers.get(output_format)
        if renderer is None:
            raise UnsupportedSourceError(f"no renderer for {output_format.value} output")
        renderer.render(source, output_format, destination)
