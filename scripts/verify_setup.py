#!/usr/bin/env python3
"""
Setup Verification Script

Validates configuration and connections before running the safety service.
Run this after setting up your .env file.

Usage:
    python scripts/verify_setup.py
"""

import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

project_root = Path(__file__).parent.parent

# Load environment variables
load_dotenv(project_root / ".env")


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
    """Check if .env file exists."""
    exists = (project_root / ".env").exists()
    print_result(".env file", exists, "Found" if exists else "File not found; defaults will be used")
    return exists


def mask(value: str) -> str:
    return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"


def check_required_vars() -> dict[str, bool]:
    """Check variables the service cannot escalate without."""
    results = {}

    required = [
        ("ESCALATION_WEBHOOK_URL", "Required to page on-call professionals"),
        ("REDIS_URL", "Required for cross-worker locking"),
    ]

    for var, description in required:
        value = os.getenv(var, "")
        if not value:
            print_result(var, False, f"Not set - {description}")
            results[var] = False
        else:
            print_result(var, True, f"Set ({mask(value)})")
            results[var] = True

    return results


def check_optional_vars() -> dict[str, bool]:
    """Check optional environment variables."""
    optional = [
        ("APP_ENV", "development"),
        ("DEBUG", "false"),
        ("PORT", "8000"),
        ("USE_DATABASE_PERSISTENCE", "false"),
        ("DEEP_ANALYSIS_ENABLED", "true"),
        ("CLAUDE_ANALYSIS_MODEL", "claude-3-5-haiku-latest"),
        ("DEFAULT_JURISDICTION", "US"),
    ]

    for var, default in optional:
        print_result(var, True, os.getenv(var, default))

    api_key = os.getenv("ANTHROPIC_API_KEY", "")
    if api_key:
        print_result("ANTHROPIC_API_KEY", True, f"Set ({mask(api_key)})")
    else:
        print_result("ANTHROPIC_API_KEY", False, "Not set - deep analysis disabled")

    return {
        "ANTHROPIC_API_KEY": bool(api_key),
        "USE_DATABASE_PERSISTENCE": os.getenv("USE_DATABASE_PERSISTENCE", "false").lower()
        in ("1", "true", "yes"),
    }


async def check_postgres() -> bool:
    """Verify database connection."""
    try:
        from sparq_safety.config import Settings
        from sparq_safety.infra.database import (
            check_db_health,
            close_db,
            create_engine_from_settings,
            create_session_factory,
        )

        engine = create_engine_from_settings(Settings())
        try:
            healthy = await check_db_health(create_session_factory(engine))
        finally:
            await close_db(engine)

        print_result("Database", healthy, "Connection successful" if healthy else "Connection failed")
        return healthy

    except Exception as e:
        print_result("Database", False, str(e)[:50])
        return False


async def check_redis() -> bool:
    """Verify Redis connection."""
    try:
        from sparq_safety.infra.redis import RedisClient, check_redis_health

        client = await RedisClient.get_client(os.getenv("REDIS_URL", "redis://localhost:6379/0"))
        healthy = await check_redis_health(client)
        await RedisClient.close()

        if healthy:
            print_result("Redis", True, "Connection successful")
        else:
            print_result("Redis", False, "Connection failed (locks will be process-local)")
        return healthy

    except Exception as e:
        print_result("Redis", False, str(e)[:50])
        return False


async def check_anthropic() -> bool:
    """Verify the Anthropic API key works."""
    try:
        from anthropic import AsyncAnthropic

        client = AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))

        # Minimal call to verify the key
        await client.messages.create(
            model=os.getenv("CLAUDE_ANALYSIS_MODEL", "claude-3-5-haiku-latest"),
            max_tokens=10,
            messages=[{"role": "user", "content": "Hi"}],
        )

        await client.close()

        print_result("Anthropic API", True, "Key validated successfully")
        return True

    except Exception as e:
        error_msg = str(e)
        if "authentication" in error_msg.lower() or "api_key" in error_msg.lower():
            print_result("Anthropic API", False, "Invalid API key")
        elif "rate" in error_msg.lower():
            print_result("Anthropic API", True, "Key valid (rate limited)")
            return True
        else:
            print_result("Anthropic API", False, error_msg[:50])
        return False


async def check_escalation_webhook() -> bool:
    """Check the on-call webhook host answers at all (no alert is sent)."""
    url = os.getenv("ESCALATION_WEBHOOK_URL", "")

    try:
        import httpx

        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.request("OPTIONS", url)

        print_result("Escalation webhook", True, f"Reachable (status {response.status_code})")
        return True

    except Exception:
        print_result("Escalation webhook", False, f"Not reachable at {mask(url)}")
        return False


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "redis",
        "httpx",
        "anthropic",
        "sparq_safety",
    ]

    missing = []
    for package in required_packages:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)

    if missing:
        print_result("Python packages", False, f"Missing: {', '.join(missing)}")
        return False
    print_result("Python packages", True, "All required packages installed")
    return True


async def main():
    """Run all verification checks."""
    print("\n" + "="*60)
    print(" Sparq Safety - Setup Verification")
    print("="*60)

    all_passed = True
    critical_failed = False

    print_header("Environment File")
    check_env_file()

    print_header("Python Dependencies")
    if not check_dependencies():
        print("\n  Install with: pip install -e .[test]\n")
        return 1

    print_header("Required Environment Variables")
    var_results = check_required_vars()
    if not var_results.get("ESCALATION_WEBHOOK_URL"):
        critical_failed = True

    print_header("Optional Environment Variables")
    optional = check_optional_vars()

    print_header("Service Connections")

    if optional["USE_DATABASE_PERSISTENCE"]:
        if not await check_postgres():
            all_passed = False
            critical_failed = True
    else:
        print_result("Database", True, "Skipped - in-memory persistence")

    if var_results.get("REDIS_URL"):
        if not await check_redis():
            all_passed = False
    else:
        print_result("Redis", False, "Skipped - REDIS_URL not set")

    if optional["ANTHROPIC_API_KEY"]:
        if not await check_anthropic():
            all_passed = False
    else:
        print_result("Anthropic API", True, "Skipped - rule-based detection only")

    if var_results.get("ESCALATION_WEBHOOK_URL"):
        if not await check_escalation_webhook():
            all_passed = False

    print_header("Summary")

    if critical_failed:
        print("\n  \033[91mCRITICAL: Escalations cannot be delivered.\033[0m")
        print("  Alerts will land on the manual-intervention queue.")
        print("\n  Quick fixes:")
        if not var_results.get("ESCALATION_WEBHOOK_URL"):
            print("  1. Add to .env: ESCALATION_WEBHOOK_URL=https://oncall.example.org/hooks/crisis")
        print()
        return 1
    elif not all_passed:
        print("\n  \033[93mWARNING: Some optional checks failed.\033[0m")
        print("  The service will run with limited functionality.")
        print()
        return 0
    else:
        print("\n  \033[92mAll checks passed!\033[0m")
        print("  You can start the service with:")
        print("    uvicorn sparq_safety.main:app --reload")
        print()
        return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
