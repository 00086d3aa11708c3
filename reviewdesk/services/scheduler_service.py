"""
ReviewDesk - Background Scheduler
Runs the review sync for every connected integration on an interval
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'review_sync'

scheduler = None


def init_scheduler(app):
    """Start the sync job; a second call returns the running scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    minutes = app.config.get('SYNC_INTERVAL_MINUTES', 60)
    scheduler = BackgroundScheduler(job_defaults={
        'coalesce': True,
        'max_instances': 1,
        'misfire_grace_time': minutes * 60 // 4
    })
    scheduler.add_job(
        func=run_review_sync,
        trigger=IntervalTrigger(minutes=minutes),
        id=SYNC_JOB_ID,
        name='Review sync',
        replace_existing=True,
        kwargs={'app': app}
    )
    scheduler.start()

    logger.info(f"Review sync scheduled every {minutes} minute(s)")
    return scheduler


def run_review_sync(app):
    with app.app_context():
        from reviewdesk.services.pipeline import get_review_pipeline

        try:
            summaries = get_review_pipeline().sync_all()
        except Exception as e:
            logger.error(f"Scheduled review sync failed: {e}")
            return

        admitted = sum(len(s.admitted) for s in summaries)
        failing = [f"{s.business_id}/{s.platform}" for s in summaries if s.status != 'ok']
        logger.info(f"Scheduled review sync: {admitted} new review(s) across {len(summaries)} integration(s)")
        if failing:
            logger.warning(f"Integrations failing this run: {', '.join(failing)}")


def get_scheduler_status():
    if scheduler is None:
        return {'status': 'not_initialized', 'jobs': []}

    return {
        'status': 'running' if scheduler.running else 'stopped',
        'jobs': [
            {
                'id': job.id,
                'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
                'trigger': str(job.trigger)
            }
            for job in scheduler.get_jobs()
        ]
    }


def shutdown_scheduler():
    global scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")
