"""
Script to run a bulk trail import and follow its progress.

Usage:
    python scripts/run_import.py hiking_project openstreetmap --max-per-source 500
    python scripts/run_import.py usgs --state CO --lat 39.74 --lng -104.99
    python scripts/run_import.py parks_canada --api-url http://localhost:8000
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import engine, async_session_maker
from core.exceptions import ImportPipelineError
from core.logging import setup_logging
from schemas.imports import ImportRequest, LocationFilter
from trail_import.orchestrator import ImportOrchestrator
from trail_import.progress import ProgressReporter
import httpx

setup_logging()
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run a bulk trail import")
    parser.add_argument("sources", nargs="+", help="Provider tags to import")
    parser.add_argument("--max-per-source", type=int, default=settings.MAX_TRAILS_PER_SOURCE)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lng", type=float, default=None)
    parser.add_argument("--radius", type=float, default=50.0, help="Radius in miles")
    parser.add_argument("--city", default=None)
    parser.add_argument("--state", default=None)
    parser.add_argument(
        "--api-url",
        default=None,
        help="Trigger through a running API and poll its job endpoint instead of importing in-process",
    )
    return parser.parse_args(argv)


def build_request(args) -> ImportRequest:
    location = None
    if args.lat is not None and args.lng is not None:
        location = LocationFilter(
            lat=args.lat, lng=args.lng, radius=args.radius, city=args.city, state=args.state
        )
    return ImportRequest(
        sources=args.sources,
        max_trails_per_source=args.max_per_source,
        batch_size=args.batch_size,
        concurrency=args.concurrency,
        location=location,
        background=args.api_url is not None,
    )


async def run_local(request: ImportRequest) -> int:
    """Import in-process and report the finished job"""
    orchestrator = ImportOrchestrator(async_session_maker)
    try:
        job, created = await orchestrator.execute(request)
    except ImportPipelineError as e:
        logger.error(f"Import could not start: {e}")
        return 1
    finally:
        await engine.dispose()

    if not created:
        logger.warning(f"Import already running as job {job.id}")
        return 1

    logger.info(
        f"Job {job.id} {job.status.value}: processed={job.trails_processed}, "
        f"added={job.trails_added}, updated={job.trails_updated}, failed={job.trails_failed}"
    )
    for source, error in (job.source_errors or {}).items():
        logger.warning(f"  {source}: {error}")
    return 0 if job.status.value == "completed" else 1


async def run_remote(request: ImportRequest, api_url: str) -> int:
    """Trigger through the API in the background and poll until done"""
    headers = {"X-API-Key": settings.API_KEY} if settings.API_KEY else {}
    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        response = await client.post(
            f"{api_url.rstrip('/')}/imports",
            json=request.model_dump(mode="json", by_alias=True, exclude_none=True),
            headers=headers,
        )
        response.raise_for_status()
        body = response.json()
        logger.info(f"{body['message']} (job {body['jobId']})")

        reporter = ProgressReporter.from_http(api_url, client=client, api_key=settings.API_KEY)
        final = await reporter.watch(body["jobId"])

    return 0 if final and final.status.value == "completed" else 1


def main(argv=None) -> int:
    args = parse_args(argv)
    request = build_request(args)
    if args.api_url:
        return asyncio.run(run_remote(request, args.api_url))
    return asyncio.run(run_local(request))


if __name__ == "__main__":
    sys.exit(main())
