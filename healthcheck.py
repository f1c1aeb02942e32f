import asyncio
import sys

from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from docere.app_state import build_context
from docere.config import settings
from docere.db import build_engine
from docere.scheduler import EXPIRY_SWEEP_JOB_ID, start_scheduler, stop_scheduler
from docere.store.sql import SqlDocumentStore
from sdk.client import DocereClient


EXPECTED_SCHEDULER_JOBS = {EXPIRY_SWEEP_JOB_ID}

GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_store_round_trip():
    async def _probe():
        ctx = build_context()
        try:
            if isinstance(ctx.store, SqlDocumentStore):
                await asyncio.to_thread(ctx.store.ping)
            await ctx.store.set('_healthcheck', 'probe', {'note': 'probe'})
            snapshot = await ctx.store.get('_healthcheck', 'probe')
            if snapshot.get('note') != 'probe':
                raise RuntimeError('Probe document did not read back')
            return f'backend={type(ctx.store).__name__} version={snapshot.version}'
        finally:
            await ctx.close()

    return asyncio.run(_probe())


def check_alembic_head():
    if settings.store_backend != 'sql':
        return 'skipped (memory backend)'
    cfg = Config('alembic.ini')
    script = ScriptDirectory.from_config(cfg)
    heads = set(script.get_heads())
    if not heads:
        raise RuntimeError('No alembic heads found in repository')

    engine = build_engine(settings.database_url)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()

    if current is None:
        raise RuntimeError('No migration version in DB (run alembic upgrade head)')
    if current not in heads:
        raise RuntimeError(f'DB revision {current} is not at head {sorted(heads)}')
    return f'current={current}'


def check_required_env():
    required = {
        'DATABASE_URL': settings.database_url if settings.store_backend == 'sql' else 'n/a',
        'AUTH_SECRET': '' if settings.auth_secret == 'change-me' and settings.app_env == 'production' else settings.auth_secret,
        'APP_TIMEZONE': settings.app_timezone,
    }
    missing = [key for key, value in required.items() if not str(value).strip()]
    if missing:
        raise RuntimeError(f'Missing env vars: {", ".join(missing)}')
    return 'all required vars present'


def check_scheduler_jobs_registered():
    async def _probe():
        ctx = build_context()
        scheduler = start_scheduler(ctx)
        try:
            if scheduler is None:
                return 'skipped (ENABLE_EXPIRY_SWEEP=false)'
            registered = {job.id for job in scheduler.get_jobs()}
            missing = sorted(EXPECTED_SCHEDULER_JOBS - registered)
            if missing:
                raise RuntimeError(f'Missing jobs: {missing}')
            return f'jobs={sorted(registered)}'
        finally:
            stop_scheduler()
            await ctx.close()

    return asyncio.run(_probe())


def check_api_health():
    if not settings.app_base_url:
        return 'skipped (APP_BASE_URL not set)'
    payload = DocereClient(settings.app_base_url, timeout=8).health()
    if payload.get('status') != 'ok':
        raise RuntimeError(f'API responded not ok: {payload}')
    return f"store={payload.get('store')}"


def main():
    checks = [
        ('Document store connectivity and write access', check_store_round_trip),
        ('Alembic migration status at head', check_alembic_head),
        ('Required environment variables present', check_required_env),
        ('Scheduler jobs registered', check_scheduler_jobs_registered),
        ('API health endpoint reachable', check_api_health),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    if not all_ok:
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
