#!/usr/bin/env python3
"""Development scripts for formatting, linting and testing."""

import subprocess
import sys

SOURCES = ["main.py", "scripts.py", "api", "config", "models", "services", "utils", "tests"]


def format_code():
    """Format code using isort and black."""
    print("Running isort...")
    subprocess.run(["uv", "run", "isort", *SOURCES], check=True)

    print("Running black...")
    subprocess.run(["uv", "run", "black", *SOURCES], check=True)

    print("✅ Code formatting complete!")


def lint_code():
    """Run pylint on the code."""
    print("Running pylint...")
    result = subprocess.run(["uv", "run", "pylint", *SOURCES[:-1]])

    if result.returncode == 0:
        print("✅ Pylint passed!")
    else:
        print("❌ Pylint found issues")
        sys.exit(result.returncode)


def run_tests():
    """Run the test suite."""
    print("Running pytest...")
    result = subprocess.run(["uv", "run", "pytest", "-q"])
    if result.returncode != 0:
        sys.exit(result.returncode)


def check_all():
    """Run all formatting, linting and tests."""
    format_code()
    lint_code()
    run_tests()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Development scripts")
    parser.add_argument(
        "action", choices=["format", "lint", "test", "check"], help="Action to perform"
    )

    args = parser.parse_args()

    if args.action == "format":
        format_code()
    elif args.action == "lint":
        lint_code()
    elif args.action == "test":
        run_tests()
    elif args.action == "check":
        check_all()
