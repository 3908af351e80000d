"""Script to run one reminder tick now."""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import configure_logging
from app.database import init_db
from app.services.reminder_service import ReminderService


def send_reminders(days=None) -> int:
    """
    Dispatch upcoming event reminders.

    Args:
        days: Override the lead time in days for this run

    Returns:
        Number of reminders sent
    """
    init_db()
    summary = ReminderService().run_tick(override_days=days)
    print(f"{summary.sent} reminders sent ({summary}).")
    return summary.sent


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send notifications for upcoming events")
    parser.add_argument("--days", type=int, default=None, help="Override the lead time in days for this run")
    args = parser.parse_args()

    if args.days is not None and args.days < 0:
        parser.error("--days must be non-negative")

    configure_logging()
    print("Dispatching upcoming event reminders...")
    send_reminders(args.days)
