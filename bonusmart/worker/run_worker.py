"""Run the ARQ re-poll worker. Usage: python -m bonusmart.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from bonusmart.worker.tasks import get_redis_settings, repoll_pending_orders, shutdown, startup


class WorkerSettings:
    functions: list = []
    cron_jobs = [
        cron(repoll_pending_orders, second=0, run_at_startup=True),  # every minute at :00
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    run_worker(WorkerSettings, redis_settings=get_redis_settings())


if __name__ == "__main__":
    main()
