# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
SiteCast REST API.

A thin HTTP front for the JobScheduler:

- ``POST /api/record``: queue a recording
- ``GET /api/job/{id}``: one job
- ``GET /api/queue``: every job plus per-state counts
- ``GET /api/recordings``: finished video files, newest first
- ``GET /health``: liveness and scheduler statistics

Example:
    ```bash
    curl -X POST http://localhost:8000/api/record \\
      -H "Content-Type: application/json" \\
      -d '{"url": "https://example.com", "duration": 10000}'
    ```
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sitecast import __version__
from sitecast.core.pipeline import Pipeline, PipelineConfig, list_recordings
from sitecast.core.scheduler import JobScheduler, JobStatus, SchedulerConfig
from sitecast.exceptions import InvalidRequestError, JobStateError
from sitecast.service.models import (
    ErrorResponse,
    HealthResponse,
    QueueResponse,
    RecordBody,
    RecordResponse,
    RecordingFile,
)
from sitecast.utils.logger import logger

# Global state
scheduler: JobScheduler = None
start_time: float = 0
output_dir: Path = Path("./recordings")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the scheduler on startup and wind it down on shutdown.

    In-flight recordings get ``SITECAST_SHUTDOWN_TIMEOUT`` seconds to finish
    before their browsers and encoders are torn down.
    """
    global scheduler, start_time, output_dir

    logger.info("Starting SiteCast service...")
    pipeline = Pipeline(PipelineConfig.from_env())
    scheduler = JobScheduler(pipeline.run, SchedulerConfig.from_env())
    output_dir = pipeline.config.output_dir
    start_time = time.time()
    logger.info(f"SiteCast service started (output dir: {pipeline.config.output_dir})")

    yield

    logger.info("Shutting down SiteCast service...")
    await scheduler.shutdown()
    logger.info("SiteCast service shut down")


app = FastAPI(
    title="SiteCast API",
    description="Record live web pages to video files.",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Service status"},
        {"name": "Recording", "description": "Submit and inspect recording jobs"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Report malformed bodies the same way as invalid requests."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _error(status.HTTP_400_BAD_REQUEST, message)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred")


@app.get("/health", response_model=HealthResponse, tags=["Health"], summary="Health check")
async def health_check():
    """Service version, uptime and scheduler counts."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        uptime_seconds=time.time() - start_time,
        scheduler=scheduler.get_stats(),
    )


@app.post(
    "/api/record",
    response_model=RecordResponse,
    tags=["Recording"],
    summary="Queue a recording",
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def start_recording(body: RecordBody):
    """
    Queue a recording of ``url``.

    The job starts as soon as one of the scheduler's slots is free. Poll
    ``GET /api/job/{jobId}`` for its outcome.
    """
    try:
        job_id = scheduler.submit(body.model_dump(by_alias=True, exclude_none=True))
    except InvalidRequestError as e:
        return _error(status.HTTP_400_BAD_REQUEST, str(e))
    except JobStateError as e:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(e))

    return RecordResponse(success=True, job_id=job_id, status=JobStatus.QUEUED.value)


@app.get(
    "/api/job/{job_id}",
    tags=["Recording"],
    summary="Get a job",
    responses={404: {"description": "Job not found"}},
)
async def get_job(job_id: str):
    """Return one job, or 404 when the id is unknown."""
    job = scheduler.get_job(int(job_id)) if job_id.isdigit() else None
    if job is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Job not found"})
    return job.to_dict()


@app.get("/api/queue", response_model=QueueResponse, tags=["Recording"], summary="List jobs")
async def get_queue():
    """Every job (most recent first) and per-state counts."""
    return QueueResponse(
        jobs=[job.to_dict() for job in scheduler.list_jobs()],
        status=scheduler.get_stats(),
    )


@app.get(
    "/api/recordings",
    response_model=List[RecordingFile],
    tags=["Recording"],
    summary="List recordings",
)
async def get_recordings():
    """Finished video files in the output directory, newest first."""
    return list_recordings(output_dir)
