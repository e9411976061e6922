"""
Standalone Clock Process for the UniFi traffic collector
Runs the collection job with a BlockingScheduler, independently from the Flask gateway
"""
import signal
import sys
import threading
from datetime import datetime, timezone

from apscheduler.events import (
    EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED,
    EVENT_SCHEDULER_START, EVENT_SCHEDULER_SHUTDOWN
)
from apscheduler.schedulers.blocking import BlockingScheduler

from config import CONFIG_WARNINGS, COLLECTION_INTERVAL, RESTART_DELAY, SHUTDOWN_LOGOUT_TIMEOUT, validate_config
from logger import debug, error, exception, info, warning
from traffic_collector import get_collector, init_collector
from utils import sleep_ms

COLLECTION_JOB_ID = 'collect_traffic'

# Scheduler execution tracking
scheduler_stats = {
    'total_executions': 0,
    'total_errors': 0,
    'last_execution': None,
    'last_error': None,
    'state': 'stopped',
}


def _utcnow():
    return datetime.now(timezone.utc).isoformat()


# APScheduler event listeners
def on_job_executed(event):
    """Called when a job completes."""
    scheduler_stats['total_executions'] += 1
    scheduler_stats['last_execution'] = _utcnow()
    debug("Clock job '%s' executed (total: %d)", event.job_id, scheduler_stats['total_executions'])


def on_job_error(event):
    """Called when a job raises an exception."""
    scheduler_stats['total_errors'] += 1
    scheduler_stats['last_error'] = str(event.exception)
    error("Clock job '%s' failed with error: %s", event.job_id, event.exception)


def on_job_missed(event):
    """Called when a run is skipped, e.g. the previous cycle is still running."""
    warning("Clock job '%s' missed its scheduled execution time", event.job_id)


def on_scheduler_start(event):
    print(f"[CLOCK EVENT] Scheduler STARTED at {_utcnow()}")
    info("Clock process scheduler started")


def on_scheduler_shutdown(event):
    print(f"[CLOCK EVENT] Scheduler SHUTDOWN at {_utcnow()}")
    info("Clock process scheduler shutdown (total executions: %d, errors: %d)",
         scheduler_stats['total_executions'], scheduler_stats['total_errors'])


def log_final_stats():
    collector = get_collector()
    if collector:
        health = collector.health
        info("Final stats: %d collections, %d errors", health.total_collections, health.total_errors)


def shutdown_handler(signum, frame):
    """
    Handle SIGTERM/SIGINT: log out of the controller (bounded), close the InfluxDB client, then exit.

    Args:
        signum: Signal number
        frame: Current stack frame
    """
    signal_name = 'SIGTERM' if signum == signal.SIGTERM else 'SIGINT'
    print(f"\n[CLOCK SHUTDOWN] Received {signal_name} signal")
    info("Received %s, shutting down...", signal_name)
    scheduler_stats['state'] = 'stopping'

    log_final_stats()

    collector = get_collector()
    if collector:
        # logout() swallows its own failures
        collector.unifi.logout(timeout=SHUTDOWN_LOGOUT_TIMEOUT)
        collector.storage.close()

    sys.exit(0)


def _log_uncaught(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, (KeyboardInterrupt, SystemExit)):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    error("Uncaught exception: %s", exc_value, exc_info=(exc_type, exc_value, exc_traceback))


def _log_thread_exception(args):
    if args.exc_type is SystemExit:
        return
    thread_name = args.thread.name if args.thread else 'unknown'
    error("Uncaught exception in thread %s: %s", thread_name, args.exc_value,
          exc_info=(args.exc_type, args.exc_value, args.exc_traceback))


def install_exception_hooks():
    """Log uncaught exceptions (main and worker threads) instead of dying silently."""
    sys.excepthook = _log_uncaught
    threading.excepthook = _log_thread_exception


def run_collection():
    """Scheduled job: one collection cycle."""
    collector = get_collector()
    if not collector:
        error("Collector not initialized, skipping collection")
        return None
    return collector.run_cycle()


def build_scheduler(interval_ms=COLLECTION_INTERVAL):
    """
    Create the scheduler with the recurring collection job.

    max_instances=1 means a tick that fires while a cycle is still running is
    skipped (reported as missed), so cycles never overlap.
    """
    scheduler = BlockingScheduler(
        timezone='UTC',
        jobstores={'default': {'type': 'memory'}},
        executors={'default': {'type': 'threadpool', 'max_workers': 1}},
        job_defaults={
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 60
        }
    )

    scheduler.add_listener(on_job_executed, EVENT_JOB_EXECUTED)
    scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)
    scheduler.add_listener(on_scheduler_start, EVENT_SCHEDULER_START)
    scheduler.add_listener(on_scheduler_shutdown, EVENT_SCHEDULER_SHUTDOWN)

    scheduler.add_job(
        func=run_collection,
        trigger='interval',
        seconds=interval_ms / 1000.0,
        id=COLLECTION_JOB_ID,
        name='UniFi Traffic Collection',
        replace_existing=True
    )
    return scheduler


def main():
    """Main clock process entry point."""
    print("=" * 60)
    print("UniFi Traffic Collector Clock Process Starting...")
    print("=" * 60)

    problems = validate_config()
    if problems:
        for problem in problems:
            error("ERROR: %s", problem)
        sys.exit(1)

    for message in CONFIG_WARNINGS:
        warning("Config: %s", message)

    install_exception_hooks()

    # Health survives a restart of main(); only a new process resets it
    collector = get_collector() or init_collector()
    collector.reset_lifecycle()

    # Register early so a signal during the startup wait still logs out
    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    # Blocks until both InfluxDB and the controller are reachable
    collector.initialize()

    print("[CLOCK INIT] Running initial data collection...")
    run_collection()

    scheduler = build_scheduler(COLLECTION_INTERVAL)
    scheduler_stats['state'] = 'running'
    print(f"[CLOCK INIT] Job '{COLLECTION_JOB_ID}' registered with {COLLECTION_INTERVAL // 1000}-second interval")
    info("Collector running. Press Ctrl+C to stop.")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        print("\n[CLOCK SHUTDOWN] Received shutdown signal")
        scheduler_stats['state'] = 'stopped'
        if scheduler.running:
            scheduler.shutdown(wait=False)
        raise


def run():
    """
    Run main() forever: a fatal error restarts it after RESTART_DELAY.
    Only SystemExit / KeyboardInterrupt end the process.
    """
    while True:
        try:
            main()
            return
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:
            exception("Fatal error: %s", e)
            info("Attempting to restart in %d seconds...", RESTART_DELAY // 1000)
            sleep_ms(RESTART_DELAY)


if __name__ == '__main__':
    run()
