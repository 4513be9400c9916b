"""
Background scheduler for subscription renewal.
Graph drive subscriptions are created with a short lifetime, so the job
runs on a fixed interval and renews whatever has lapsed since the last tick.
"""
import atexit
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler

JOB_ID = "renew_onedrive_subscriptions"


def setup_scheduler(app):
    """Start APScheduler with the renewal job bound to ``app``."""
    renewer = app.extensions["subscription_renewer"]
    interval = app.config["RENEWAL_INTERVAL_MINUTES"]
    scheduler = BackgroundScheduler(timezone="UTC")

    def renew_subscriptions():
        with app.app_context():
            renewer.run()

    job_kwargs = {}
    if app.config.get("RUN_ON_STARTUP"):
        job_kwargs["next_run_time"] = datetime.now(timezone.utc)

    scheduler.add_job(
        func=renew_subscriptions,
        trigger="interval",
        minutes=interval,
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        **job_kwargs
    )
    scheduler.start()

    def _shutdown():
        if scheduler.running:
            scheduler.shutdown(wait=False)

    # Shut down scheduler when app exits
    atexit.register(_shutdown)

    app.extensions["renewal_scheduler"] = scheduler
    app.logger.info("⏰ Subscription renewal scheduler started (every %s minutes)", interval)
    return scheduler
