"""Run ARQ worker. Usage: python -m creditledger.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from creditledger.core.config import get_settings
from creditledger.core.logging import configure_logging
from creditledger.worker.tasks import deliver_notification, get_redis_settings, reconcile_accounts, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [deliver_notification]
    cron_jobs = [
        cron(reconcile_accounts, hour=3, minute=0),  # nightly
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    configure_logging(debug=get_settings().debug)
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
