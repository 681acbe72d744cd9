"""
Optional in-process cron for containers without crond.

Every firing starts a fresh ``python -m walg_runner <mode>`` process, so each
run is still a separate short-lived process coordinated by the file locks.
"""

import sys
import logging
import subprocess

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

EXIT_CODE_NAMES = {0: 'success', 1: 'failure', 2: 'environment invalid', 3: 'skipped (lock busy)'}


def launch_run(mode: str) -> int:
    """
    Run one mode in a child process and wait for it.

    Args:
        mode: 'backup', 'clean' or 'combo'

    Returns:
        Child exit code
    """
    cmd = [sys.executable, '-m', 'walg_runner', mode]
    logger.info(f"Launching scheduled run: {' '.join(cmd)}")

    completed = subprocess.run(cmd)
    outcome = EXIT_CODE_NAMES.get(completed.returncode, 'unexpected exit code')
    if completed.returncode in (0, 3):
        logger.info(f"Scheduled {mode} run finished: {outcome} ({completed.returncode})")
    else:
        logger.error(f"Scheduled {mode} run finished: {outcome} ({completed.returncode})")
    return completed.returncode


def build_scheduler(cron_expression: str, mode: str, timezone: str = 'UTC') -> BlockingScheduler:
    """
    Create a blocking scheduler with one cron job.

    Args:
        cron_expression: Standard 5-field crontab expression
        mode: Runner mode to launch
        timezone: Scheduler timezone

    Raises:
        ValueError: If the cron expression is invalid
    """
    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone=timezone)
    scheduler.add_job(
        func=launch_run,
        args=[mode],
        trigger=CronTrigger.from_crontab(cron_expression, timezone=timezone),
        id=f'walg_{mode}',
        name=f'wal-g {mode}',
        replace_existing=True
    )
    return scheduler
