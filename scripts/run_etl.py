"""
Run one pipeline once: create a batch, then run attempts until it
completes or runs out of attempts.

Usage:
    python scripts/run_etl.py shipments_realtime
    python scripts/run_etl.py --schedule      # start the scheduler for every pipeline
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from typing import Optional
from core.config import settings
from core.database import registry
from core.logging import setup_logging
from etl.pipelines import default_pipelines
from etl.scheduler import EtlScheduler

logger = logging.getLogger(__name__)


async def run_once(pipeline_name: str, scheduler: Optional[EtlScheduler] = None) -> int:
    """Run a pipeline in the foreground, sleeping through the backoff schedule"""
    pipelines = default_pipelines(settings)
    if pipeline_name not in pipelines:
        logger.error(f"Unknown pipeline: {pipeline_name} (known: {', '.join(pipelines)})")
        return 2
    
    scheduler = scheduler or EtlScheduler()
    try:
        batch_id, result = await scheduler.run_to_completion(
            pipeline_name, pipelines[pipeline_name], triggered_by="cli"
        )
    finally:
        await scheduler.cache.close()
        await registry.dispose()
    
    if result is None:
        return 1
    logger.info(
        f"Batch {batch_id}: processed={result.records_processed}, "
        f"successful={result.records_successful}, failed={result.records_failed}"
    )
    return 0 if result.success else 1


async def run_scheduler():
    """Register every default pipeline and keep the scheduler running"""
    scheduler = EtlScheduler()
    for name, config in default_pipelines(settings).items():
        scheduler.register_pipeline(name, config)
    
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        await registry.dispose()


def main():
    parser = argparse.ArgumentParser(description="Run ETL pipelines")
    parser.add_argument("pipeline", nargs="?", help="Pipeline name to run once")
    parser.add_argument("--schedule", action="store_true", help="Start the scheduler")
    args = parser.parse_args()
    
    setup_logging()
    
    if args.schedule:
        asyncio.run(run_scheduler())
    elif args.pipeline:
        sys.exit(asyncio.run(run_once(args.pipeline)))
    else:
        parser.print_help()
        sys.exit(2)


if __name__ == "__main__":
    main()
