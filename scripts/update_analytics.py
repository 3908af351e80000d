"""Script to generate notification analytics reports."""
from datetime import timedelta
import argparse
import csv
import json
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import configure_logging
from app.database import SessionLocal
from app.models.user import User
from app.services.analytics_service import AnalyticsService


FORMATS = ("table", "json", "csv")


def print_rows(title, rows) -> None:
    print(f"{title}:")
    width = max((len(str(label)) for label, _ in rows), default=0)
    for label, value in rows:
        print(f"  {str(label).ljust(width)}  {value}")


def print_table(analytics, title) -> None:
    if title:
        print(f"=== {title} ===")
    print_rows("Overview", [
        ("Total Notifications", analytics["total_notifications"]),
        ("Success Rate", f"{analytics['success_rate']}%"),
        ("Average per Day", f"{analytics['average_per_day']:.2f}"),
    ])
    if "user_id" in analytics:
        print_rows("User Information", [
            ("User ID", analytics["user_id"]),
            ("Most Active Day", analytics["most_active_day"] or "N/A"),
        ])
    if "total_users" in analytics:
        print_rows("System Information", [
            ("Total Users", analytics["total_users"]),
            ("Active Users", analytics["active_users"]),
            ("Average per User", f"{analytics['average_per_user']:.2f}"),
        ])
    if analytics["by_channel"]:
        print_rows("Channel Breakdown", list(analytics["by_channel"].items()))
    if analytics["by_day"]:
        print_rows("Daily Breakdown (last 10 days)", list(analytics["by_day"].items())[-10:])
    if analytics.get("top_users"):
        print_rows("Top Users by Notification Count", list(analytics["top_users"].items()))
    if analytics.get("channel_distribution"):
        print_rows("Channel Distribution (users)", list(analytics["channel_distribution"].items()))


def print_csv(analytics) -> None:
    writer = csv.writer(sys.stdout)
    writer.writerow(["metric", "value"])
    for key in ("total_notifications", "success_rate", "average_per_day",
                "total_users", "active_users", "average_per_user"):
        if key in analytics:
            writer.writerow([key, analytics[key]])
    for channel, count in analytics["by_channel"].items():
        writer.writerow([f"channel_{channel}", count])


def display(analytics, output_format, title) -> None:
    if output_format == "json":
        print(json.dumps(analytics, indent=2, default=str))
    elif output_format == "csv":
        print_csv(analytics)
    else:
        print_table(analytics, title)


def display_comparison(comparison, output_format, period) -> None:
    if output_format == "json":
        print(json.dumps(comparison, indent=2, default=str))
        return

    print(f"=== Comparative Analytics (Last {period} days vs Previous {period} days) ===")
    changes = comparison["changes"]
    print_rows("Changes", [
        ("Total Notifications", f"{changes['total_notifications']:.2f}%"),
        ("Active Users", f"{changes['active_users']:.2f}%"),
        ("Average per Day", f"{changes['average_per_day']:.2f}%"),
    ])
    print("Period 1 (Most Recent):")
    print_table(comparison["period1"], "")
    print("Period 2 (Previous):")
    print_table(comparison["period2"], "")


def update_analytics(period=30, user_id=None, compare=False, output_format="table") -> int:
    """
    Generate a notification analytics report.

    Args:
        period: Days to analyze, counted back from now
        user_id: Report on this user only
        compare: Compare with the preceding period of the same length
        output_format: table, json or csv

    Returns:
        Process exit code
    """
    db = SessionLocal()
    try:
        analytics = AnalyticsService(db)
        end = analytics.clock.now()
        start = end - timedelta(days=period)

        if user_id:
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                print(f"User with ID {user_id} not found.")
                return 1
            if output_format == "table":
                print(f"Generating analytics for user: {user.name} (ID: {user.id})")
            display(analytics.user_analytics(user, start, end), output_format, f"User Analytics: {user.name}")
            return 0

        if compare:
            comparison = analytics.comparative_analytics(start, end, start - timedelta(days=period), start)
            display_comparison(comparison, output_format, period)
            return 0

        if output_format == "table":
            print(f"Generating system analytics for the last {period} days...")
        display(analytics.system_analytics(start, end), output_format, f"System Analytics (Last {period} days)")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate notification analytics reports")
    parser.add_argument("--period", type=int, default=30, help="Time period in days to analyze")
    parser.add_argument("--user", default=None, help="Generate analytics for a specific user ID")
    parser.add_argument("--compare", action="store_true", help="Compare with the previous period")
    parser.add_argument("--format", default="table", choices=FORMATS, help="Output format")
    args = parser.parse_args()

    if args.period <= 0:
        parser.error("--period must be positive")

    configure_logging()
    sys.exit(update_analytics(args.period, args.user, args.compare, args.format))
