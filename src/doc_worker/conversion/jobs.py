import json
from dataclasses import dataclass
from enum import Enum

from .errors import DecodeError


SLIDE_DECK_EXTENSIONS = frozenset({"ppt", "pptx", "pps", "ppsx", "odp"})


class OutputFormat(str, Enum):
    PDF = "pdf"
    HTML = "html"


@dataclass(frozen=True)
class ConversionJob:
    uuid: str
    encoded_file_name: str
    extension: str
    output: OutputFormat = OutputFormat.PDF

    @property
    def normalized_extension(self) -> str:
        return self.extension.lower()

    @property
    def is_slide_deck(self) -> bool:
        return self.normalized_extension in SLIDE_DECK_EXTENSIONS


_REQUIRED_FIELDS = (
    ("uuid", "uuid"),
    ("urlEncodedFileName", "encoded_file_name"),
    ("extension", "extension"),
)


def decode_job(body: bytes | str) -> ConversionJob:
    """Parse a broker message body into a ConversionJob.

    Raises DecodeError when the body is not a JSON object or a required field
    is missing/blank. An unknown `output` value is rejected rather than
    defaulted.
    """
    try:
        text = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body
        data = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"message is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError("message must be a JSON object")

    fields: dict[str, str] = {}
    for key, attr in _REQUIRED_FIELDS:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise DecodeError(f"{key} missing")
        fields[attr] = value.strip()

    uuid = fields["uuid"]
    # The uuid names a directory under temp/.
    if uuid in {".", ".."} or "/" in uuid or "\\" in uuid:
        raise DecodeError(f"uuid is not a safe directory name: {uuid!r}")

    # Object keys are case-sensitive; the raw extension is kept for the fetch key.
    extension = fields["extension"].lstrip(".")
    if not extension:
        raise DecodeError("extension missing")

    raw_output = data.get("output")
    if raw_output is None:
        output = OutputFormat.PDF
    elif isinstance(raw_output, str):
        try:
            output = OutputFormat(raw_output.strip().lower())
        except ValueError:
            raise DecodeError(f"unsupported output format: {raw_output!r}") from None
    else:
        raise DecodeError(f"unsupported output format: {raw_output!r}")

    return ConversionJob(
        uuid=uuid,
        encoded_file_name=fields["encoded_file_name"],
        extension=extension,
        output=output,
    )
