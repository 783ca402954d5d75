"""
Manuscript Formatter Backend - REST API for manuscript conversion jobs

This package provides a FastAPI-based web service that turns manuscript text
into journal-ready documents. It enables:

- Asynchronous conversion job submission and status polling
- DOCX generation, either plain or by filling a journal template
- PDF generation through a headless browser print pipeline
- Durable job records with bounded retention
- Artifact storage on the local filesystem or in S3

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - job_manager: Job gateway and worker pool coordinator
    - job_store: Durable, thread-safe job state machine
    - worker: Per-job conversion pipeline
    - document_renderer: DOCX rendering (plain and template paths)
    - print_renderer: HTML intermediate and PDF rendering
    - storage: Artifact persistence backends
    - configuration: Config loading and merging logic
    - models: Pydantic models for request/response validation

Usage:
    Run the API server with:
        uvicorn manuscript_formatter_backend.main:app --reload --host 0.0.0.0 --port 8000

    Or use the development script:
        uv run uvicorn manuscript_formatter_backend.main:app --reload

Architecture Principles:
    - Job submission never blocks on rendering
    - One job's failure never stops the worker pool
    - Thread-safe job state management
    - Configuration transparency and reproducibility
"""

__version__ = "0.1.0"
