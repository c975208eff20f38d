#!/usr/bin/env python3
"""
Check the backend setup and dependencies.
Run this script from backend/ to see whether the API can start.
"""

import sys
import os
from dotenv import load_dotenv

def check_imports():
    """Check that the required packages can be imported."""
    print("Checking imports...")

    packages = [
        ("fastapi", "FastAPI"),
        ("uvicorn", "Uvicorn"),
        ("httpx", "HTTPX"),
        ("passlib", "Passlib"),
        ("jose", "python-jose"),
        ("email_validator", "email-validator"),
    ]

    ok = True
    for module, label in packages:
        try:
            __import__(module)
            print(f"✓ {label} imported successfully")
        except ImportError as e:
            print(f"✗ Failed to import {label}: {e}")
            ok = False

    return ok

def check_environment():
    """Check environment variables. Missing ones fall back to local defaults."""
    print("\nChecking environment variables...")

    load_dotenv()

    expected_vars = [
        "JWT_SECRET_KEY",
        "PRICE_API_URL",
        "EXCHANGE_RATE_API_URL",
    ]

    all_present = True
    for var in expected_vars:
        if os.getenv(var):
            print(f"✓ {var} is set")
        else:
            print(f"✗ {var} is not set (using default)")
            all_present = False

    return all_present

def check_app_import():
    """Check that the FastAPI app can be imported."""
    print("\nChecking FastAPI app import...")

    try:
        from stockfolio.main import app
        print("✓ FastAPI app imported successfully")
        print(f"✓ App title: {app.title}")
        return True
    except Exception as e:
        print(f"✗ Failed to import FastAPI app: {e}")
        return False

def check_services():
    """Check that services can be instantiated."""
    print("\nChecking services...")

    try:
        from stockfolio.services.auth import AuthService
        AuthService().hash_password("setup-check")
        print("✓ Auth service created successfully")
    except Exception as e:
        print(f"✗ Failed to create auth service: {e}")
        return False

    try:
        from stockfolio.utils.price_client import get_price_client
        from stockfolio.utils.rate_client import get_rate_client
        print(f"✓ Price API: {get_price_client().base_url}")
        print(f"✓ Exchange rate API: {get_rate_client().base_url}")
    except Exception as e:
        print(f"✗ Failed to create upstream clients: {e}")
        return False

    return True

def main():
    """Run all checks."""
    print("Stockfolio API - Setup Check\n")

    checks = [
        ("Package Imports", check_imports),
        ("Environment Variables", check_environment),
        ("FastAPI App", check_app_import),
        ("Services", check_services)
    ]

    results = []
    for name, check in checks:
        print(f"\n{'='*50}")
        print(f"Running {name} check...")
        print('='*50)
        results.append((name, check()))

    print(f"\n{'='*50}")
    print("SUMMARY")
    print('='*50)

    all_passed = True
    for name, result in results:
        status = "✓ PASS" if result else "✗ FAIL"
        print(f"{name}: {status}")
        if not result:
            all_passed = False

    print(f"\n{'='*50}")
    if all_passed:
        print("All checks passed. Start the server with:")
        print("uvicorn stockfolio.main:app --reload")
    else:
        print("Some checks failed.")
        print("1. Install the package: pip install -e '.[test]'")
        print("2. Set up environment variables: cp .env.example .env")
    print('='*50)

    return 0 if all_passed else 1

if __name__ == "__main__":
    sys.exit(main())
