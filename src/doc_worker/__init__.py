"""
Document Conversion Worker package.

Consumes conversion requests from RabbitMQ, renders documents to PDF or HTML,
uploads the results to S3-compatible storage, and reports outcomes on a
secondary queue. A FastAPI app exposes `/health` and `/status`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
