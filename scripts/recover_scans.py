from app.db.session import SessionLocal
from app.scans import queue
from app.scans.cleanup import recover_scan_jobs

# run after a broker outage: fails scans whose worker is gone, re-submits queued ones


def main():
    db = SessionLocal()
    try:
        result = recover_scan_jobs(db)
        resumed = queue.resume_queued_jobs(db, result["queued"])
        print(f"OK: {result['fixed_processing']} stale scans failed, {resumed} queued scans re-submitted")
    finally:
        db.close()

if __name__ == "__main__":
    main()
