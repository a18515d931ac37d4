#!/usr/bin/env python3
"""
Create the booking tables without running the API.
Optionally loads the sample tour catalog into an empty database.
"""

import argparse
import asyncio
import logging
import sys

from sqlalchemy import inspect

from tourbook.api.seed import load_sample_tours
from tourbook.db import crud
from tourbook.db.session import db_manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_database(with_sample_tours: bool = False) -> None:
    """Initialize database tables"""
    try:
        logger.info("Connecting to database...")
        await db_manager.initialize()

        async with db_manager.engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        logger.info(f"Tables present: {', '.join(sorted(tables))}")

        if with_sample_tours:
            async with db_manager.get_session() as session:
                if await crud.count_tours(session):
                    logger.info("Tours already present, skipping sample catalog")
                else:
                    provider = await crud.get_first_active_provider(session)
                    rows = [
                        {
                            **tour,
                            "price": crud.to_decimal(tour["price"]),
                            "provider_id": provider.id if provider else None,
                        }
                        for tour in load_sample_tours()
                    ]
                    inserted = await crud.insert_tours(session, rows)
                    logger.info(f"Loaded {len(inserted)} sample tours")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
    finally:
        await db_manager.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--sample-tours", action="store_true", help="load the sample tour catalog")
    args = parser.parse_args()
    asyncio.run(init_database(with_sample_tours=args.sample_tours))
