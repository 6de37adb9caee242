import argparse
from datetime import timedelta

from . import config
from .factory import build_queue
from .jobqueue import JobQueue
from .utils.dates import iso_z, parse_iso_utc, utcnow
from .utils.log import setup_logging


def cmd_summary(queue: JobQueue) -> None:
    s = queue.get_summary()
    nxt = iso_z(s.next_job_time) if s.next_job_time else "-"
    print(f"pending={s.total_pending}  running={s.total_running}  "
          f"completed={s.total_completed}  failed={s.total_failed}  next={nxt}")


def cmd_retry(queue: JobQueue, job_id: str, at: str = None) -> None:
    when = parse_iso_utc(at) if at else utcnow()
    queue.retry_job(job_id, when)
    print(f"✔ job {job_id} back to pending, scheduled {iso_z(when)}")


def cmd_cleanup(queue: JobQueue, days: int) -> None:
    n = queue.cleanup_older_than(days)
    print(f"✔ removed {n} finished jobs older than {days} days")


def cmd_sweep(queue: JobQueue) -> None:
    n = queue.requeue_expired_leases()
    print(f"✔ requeued {n} jobs with expired leases")


def cmd_metrics(queue: JobQueue, start: str, end: str) -> None:
    rows = queue.get_metrics(start, end)
    if not rows:
        print("no metrics in range")
        return
    for m in rows:
        print(f"{m.date}  {m.league_id:<28} scheduled={m.jobs_scheduled:<4} "
              f"completed={m.jobs_completed:<4} failed={m.jobs_failed:<4} "
              f"requests={m.api_requests:<4} cost={m.api_cost_tokens}")


def main():
    ap = argparse.ArgumentParser(description="Inspect and maintain the collection job queue")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("summary", help="Job counts by status and the next due time")

    ap_r = sub.add_parser("retry", help="Put a job back to pending")
    ap_r.add_argument("job_id")
    ap_r.add_argument("--at", help='ISO time, e.g. "2025-11-30T13:30:00Z" (default: now)')

    ap_c = sub.add_parser("cleanup", help="Delete completed/failed jobs past an age threshold")
    ap_c.add_argument("--days", type=int, default=config.CLEANUP_DAYS)

    sub.add_parser("sweep", help="Requeue running jobs whose lease expired")

    today = utcnow().date()
    ap_m = sub.add_parser("metrics", help="Per league/day collection metrics")
    ap_m.add_argument("--start", default=(today - timedelta(days=7)).isoformat())
    ap_m.add_argument("--end", default=today.isoformat())

    args = ap.parse_args()
    setup_logging()
    queue = build_queue()

    if args.cmd == "summary":
        cmd_summary(queue)
    elif args.cmd == "retry":
        cmd_retry(queue, args.job_id, args.at)
    elif args.cmd == "cleanup":
        cmd_cleanup(queue, args.days)
    elif args.cmd == "sweep":
        cmd_sweep(queue)
    elif args.cmd == "metrics":
        cmd_metrics(queue, args.start, args.end)


if __name__ == "__main__":
    main()
