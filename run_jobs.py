"""
Run scheduled jobs once (for an external cron instead of the in-process scheduler).

    python run_jobs.py sweep
    python run_jobs.py materialize
    python run_jobs.py all
"""
import argparse
import logging
import sys

from agenda.application.scheduler import run_status_sweep, run_materialization

JOBS = {
    "sweep": [run_status_sweep],
    "materialize": [run_materialization],
    "all": [run_materialization, run_status_sweep],
}


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("job", choices=sorted(JOBS))
    args = parser.parse_args(argv)

    for job in JOBS[args.job]:
        if job() is None:
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
