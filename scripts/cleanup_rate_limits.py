"""Script to delete expired rate limit records."""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import configure_logging
from app.database import SessionLocal
from app.services.rate_limiter import RateLimiter


def cleanup_rate_limits(grace_minutes=None) -> int:
    """
    Delete rate limit rows whose window ended more than ``grace_minutes`` ago.

    Args:
        grace_minutes: Minutes to keep ended windows; configured default when None

    Returns:
        Number of rows deleted
    """
    db = SessionLocal()
    try:
        deleted = RateLimiter(db).cleanup_expired(grace_minutes)
        print(f"Removed {deleted} expired rate limit records.")
        return deleted
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete expired notification rate limit records")
    parser.add_argument("--grace-minutes", type=int, default=None, help="Minutes to keep ended windows")
    args = parser.parse_args()

    configure_logging()
    cleanup_rate_limits(args.grace_minutes)
