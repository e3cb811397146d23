"""RQ queue setup — shared by API (enqueue) and worker (dequeue)."""

from typing import Optional

import redis
from rq import Queue

from app.settings import settings

_redis_conn: redis.Redis | None = None
_queue: Queue | None = None


def get_redis() -> redis.Redis:
    global _redis_conn
    if _redis_conn is None:
        _redis_conn = redis.from_url(settings.redis_url)
    return _redis_conn


def get_queue() -> Queue:
    global _queue
    if _queue is None:
        _queue = Queue(settings.rq_queue_name, connection=get_redis())
    return _queue


def enqueue_reconciliation() -> str:
    """
    Enqueue one clearing-house poll cycle.

    The fixed job id keeps at most one cycle queued or running: RQ refuses a
    second job with the same id while the first still exists.
    """
    from app.workers.reconcile import RECONCILE_JOB_ID, poll_clearing_house

    queue = get_queue()
    existing = queue.fetch_job(RECONCILE_JOB_ID)
    if existing is not None and existing.get_status() in ("queued", "started", "deferred"):
        return existing.id

    job = queue.enqueue(
        poll_clearing_house,
        job_id=RECONCILE_JOB_ID,
        job_timeout=600,  # 10 minutes per cycle
        result_ttl=3600,
        failure_ttl=86400,
    )
    return job.id


def enqueue_submission(invoice_id: str, actor_id: Optional[str] = None) -> str:
    """
    Enqueue an invoice submission job.
    Returns the job ID for status tracking.
    """
    from app.services.submission.submitter import process_submission  # avoid circular import

    job = get_queue().enqueue(
        process_submission,
        args=(invoice_id, actor_id),
        job_timeout=120,  # invoice upload plus patient copy
        result_ttl=3600,  # keep result for 1 hour
        failure_ttl=86400,  # keep failed job info for 24 hours
    )
    return job.id
