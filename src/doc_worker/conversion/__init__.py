"""
Domain layer for queued document conversion.
Provides the job model, locator resolution, workspace handling, failure
classification, and the pipeline that orchestrates one job, abstracting the
broker, HTTP, object storage, and renderers behind gateways.
"""

from .errors import Disposition, Verdict, classify, decide
from .interfaces import BlobStore, OutcomeSink, Renderer, SourceFetcher
from .jobs import ConversionJob, OutputFormat, decode_job
from .locator import ResolvedSource, resolve_source
from .service import ConversionPipeline, JobResult, JobState
from .workspace import Workspace
