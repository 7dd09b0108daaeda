import argparse

from common.workers.launcher import WorkerLauncher
from packages.billing.workers.billing_scheduler_worker import BillingSchedulerWorker


def _parse_args():
    parser = argparse.ArgumentParser(description="Run the billing scheduler")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between ticks (defaults to BILLING_SCHEDULER_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--once", action="store_true", help="Run a single tick and exit"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args()
    return args, (), {"interval_seconds": args.interval, "run_once": args.once}


def main():
    WorkerLauncher().run_with_cli(
        worker_factory=BillingSchedulerWorker,
        worker_name="Billing Scheduler",
        cli_setup_func=_parse_args,
    )


if __name__ == "__main__":
    main()
