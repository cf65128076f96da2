#!/usr/bin/env python3
"""
Setup Verification Script

Validates configuration and connections before running the service.
Run this after setting up your .env file.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


def check_env_file() -> bool:
    env_path = project_root / ".env"
    if not env_path.exists():
        print_result(".env file", False, "File not found. Copy .env.example to .env")
        return False
    print_result(".env file", True, "Found")
    return True


def check_dependencies() -> bool:
    """Check that runtime packages import."""
    missing = []
    for package in ("fastapi", "uvicorn", "pydantic", "pydantic_settings",
                    "sqlalchemy", "asyncpg", "redis", "httpx", "email_validator"):
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    print_result("Python packages", True, "All required packages installed")
    return True


def check_scheduling_config() -> bool:
    """Validate booking-related settings."""
    from app.config import get_settings
    settings = get_settings()
    ok = True

    try:
        ZoneInfo(settings.schedule_timezone)
        print_result("SCHEDULE_TIMEZONE", True, settings.schedule_timezone)
    except ZoneInfoNotFoundError:
        print_result("SCHEDULE_TIMEZONE", False, f"Unknown timezone '{settings.schedule_timezone}'")
        ok = False

    if settings.booking_cap < 1:
        print_result("BOOKING_CAP", False, f"Must be at least 1, got {settings.booking_cap}")
        ok = False
    else:
        print_result("BOOKING_CAP", True, str(settings.booking_cap))

    exempt = sorted(settings.cap_exempt_requesters)
    print_result("BOOKING_CAP_EXEMPT_REQUESTERS", True, ", ".join(exempt) if exempt else "(none)")
    print_result("MODERATOR_ROLE", True, settings.moderator_role)
    print_result(
        "NOTIFICATION_WEBHOOK_URL",
        True,
        settings.notification_webhook_url or "(unset - notifications are logged only)",
    )
    return ok


async def check_database() -> bool:
    try:
        from app.infra.database import check_db_health
        healthy = await check_db_health()
        print_result("Database", healthy, "Connection successful" if healthy else "Connection failed")
        return healthy
    except Exception as e:
        print_result("Database", False, str(e)[:50])
        return False


async def check_redis() -> bool:
    try:
        from app.infra.redis import check_redis_health
        healthy = await check_redis_health()
        print_result(
            "Redis",
            healthy,
            "Connection successful" if healthy else "Unavailable (rate limiting fails open)",
        )
        return healthy
    except Exception as e:
        print_result("Redis", False, str(e)[:50])
        return False


async def main() -> int:
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Session Booking - Setup Verification")
    print("="*60)

    critical_failed = False

    print_header("Environment File")
    check_env_file()

    print_header("Python Dependencies")
    if not check_dependencies():
        print("\n  Install with: pip install -e .[test]\n")
        return 1

    print_header("Scheduling Configuration")
    if not check_scheduling_config():
        critical_failed = True

    print_header("Service Connections")
    if not os.getenv("DATABASE_URL"):
        print_result("DATABASE_URL", True, "Not set, using default")
    if not await check_database():
        critical_failed = True
    await check_redis()  # Non-critical

    print_header("Summary")
    if critical_failed:
        print("\n  \033[91mCRITICAL: Some required checks failed.\033[0m")
        print("  Please fix the issues above before running the application.\n")
        return 1

    print("\n  \033[92mAll required checks passed!\033[0m")
    print("  You can start the application with:")
    print("    uvicorn app.main:app --reload\n")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
