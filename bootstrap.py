import asyncio
import logging
import sys

from docere.app_state import build_store
from docere.config import settings
from docere.core.time_provider import default_time_provider
from docere.metrics import run_timed_job
from docere.services.bootstrap_service import run_bootstrap


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


async def _run(seed_file: str | None) -> dict:
    store = build_store(settings, default_time_provider)
    try:
        return await run_bootstrap(store, seed_file)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    seed_file = argv[0] if argv else None
    if settings.store_backend == 'memory':
        logger.warning('bootstrap_memory_store users seeded here are lost when this process exits')
    result = run_timed_job('bootstrap_seed_users', lambda: asyncio.run(_run(seed_file)))
    if result.get('ran'):
        logger.info('Bootstrap executed: %s', result)
    else:
        logger.info('Bootstrap skipped: %s', result)


if __name__ == '__main__':
    main()
