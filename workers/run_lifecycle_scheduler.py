import argparse

from common.workers.launcher import WorkerLauncher
from packages.billing.workers.lifecycle_worker import LifecycleSchedulerWorker


def _parse_cli():
    parser = argparse.ArgumentParser(description="Subscription lifecycle scheduler")
    parser.add_argument(
        "--once", action="store_true", help="Run the passes once and exit (cron mode)"
    )
    parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between runs"
    )
    parser.add_argument(
        "--batch-size", type=int, default=None, help="Rows claimed per batch"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args()
    factory_kwargs = {
        "interval_seconds": args.interval,
        "batch_size": args.batch_size,
        "run_once_only": args.once,
    }
    return args, (), factory_kwargs


if __name__ == "__main__":
    WorkerLauncher().run_with_cli(
        worker_factory=LifecycleSchedulerWorker,
        worker_name="Lifecycle Scheduler",
        cli_setup_func=_parse_cli,
    )
