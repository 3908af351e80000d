"""Script to check the health of users' notification channels."""
import argparse
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import configure_logging
from app.database import SessionLocal
from app.models.notification_setting import Channel
from app.models.user import User
from app.services.health_service import HealthService


def print_check(check) -> None:
    print(f"  Channel: {check.channel}")
    print(f"    Status: {check.status.value}")
    print(f"    Connectivity: {'ok' if check.connectivity else 'failed'}")
    print(f"    Success Rate: {check.success_rate}%")
    print(f"    Total Attempts: {check.total_attempts}")
    if check.last_used:
        print(f"    Last Used: {check.last_used.isoformat()}")
    if check.details:
        print(f"    Details: {', '.join(check.details)}")


def check_user_health(health: HealthService, user_id: str, channel=None, log_issues=False) -> int:
    """
    Check one user's channels, or just ``channel`` when given.

    Returns:
        Exit code: 1 when the user does not exist, else 0
    """
    user = health.db.query(User).filter(User.id == user_id).first()
    if user is None:
        print(f"User with ID {user_id} not found.")
        return 1

    print(f"Checking health for user: {user.name} (ID: {user.id})")
    checks = {channel: health.check_channel(user, channel)} if channel else health.check_all_channels(user)
    for name, check in checks.items():
        print_check(check)
        if log_issues and check.is_unhealthy:
            health.log_health_issue(user, name, "Health check failed")
    return 0


def check_system_health(health: HealthService, channel=None, log_issues=False) -> int:
    """Print per-channel status counts for all users."""
    overview = health.system_overview()

    print(f"Total users: {overview['total_users']}")
    print(f"Active users: {overview['active_users']}")
    print(f"Last check: {overview['last_check']}")
    print("Channel Health Summary:")
    for name, counts in overview["channels"].items():
        if channel and name != channel:
            continue
        print(f"  {name}:")
        print(f"    Healthy: {counts['healthy']}")
        print(f"    Unhealthy: {counts['unhealthy']}")
        print(f"    Inactive: {counts['inactive']}")

    if log_issues:
        logged = health.log_unhealthy_channels()
        print(f"Logged {logged} channel health issues.")
    return 0


def health_report(health: HealthService) -> int:
    """Print the detailed system health report."""
    overview = health.system_overview()
    unhealthy_users = health.users_with_unhealthy_channels()

    print("=== SYSTEM HEALTH REPORT ===")
    print(f"Generated at: {overview['last_check']}")
    print("Overview:")
    print(f"  Total Users: {overview['total_users']}")
    print(f"  Active Users: {overview['active_users']}")
    print(f"  Users with Issues: {len(unhealthy_users)}")
    print("Channel Status:")
    for name, counts in overview["channels"].items():
        total = sum(counts.values())
        healthy_percentage = round(counts["healthy"] / total * 100, 2) if total else 0
        print(f"  {name}:")
        print(f"    Total: {total}")
        print(f"    Healthy: {counts['healthy']} ({healthy_percentage}%)")
        print(f"    Unhealthy: {counts['unhealthy']}")
        print(f"    Inactive: {counts['inactive']}")

    if unhealthy_users:
        print("Users with Unhealthy Channels:")
        for user in unhealthy_users:
            print(f"  - {user.name} (ID: {user.id}, Email: {user.email})")
    return 0


def check_channel_health(user_id=None, channel=None, report=False, log_issues=False) -> int:
    """
    Check notification channel health.

    Args:
        user_id: Only check this user's channels
        channel: Only check or show this channel
        report: Print the detailed system report
        log_issues: Log every unhealthy channel found

    Returns:
        Process exit code
    """
    db = SessionLocal()
    try:
        health = HealthService(db)
        if user_id:
            return check_user_health(health, user_id, channel, log_issues)
        if report:
            return health_report(health)
        return check_system_health(health, channel, log_issues)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Check the health of notification channels")
    parser.add_argument("--user", default=None, help="Check health for a specific user ID")
    parser.add_argument("--channel", default=None, choices=[c.value for c in Channel], help="Check a specific channel")
    parser.add_argument("--report", action="store_true", help="Generate a detailed health report")
    parser.add_argument("--log-issues", action="store_true", help="Log unhealthy channels")
    args = parser.parse_args()

    configure_logging()
    print("Checking notification channel health...")
    sys.exit(check_channel_health(args.user, args.channel, args.report, args.log_issues))
