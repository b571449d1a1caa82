#!/usr/bin/env python3
"""
Test runner for the MeteoGrid test suite.

Runs pytest on the tests directory, forwarding any extra command line
arguments (for example -k or -x), and prints a short summary.
"""

import sys
import subprocess
from pathlib import Path


def run_tests(extra_args):
    """Run the test suite and return True when every test passed"""
    test_dir = Path(__file__).parent / "tests"

    if not test_dir.exists():
        print("Error: tests directory not found")
        return False

    test_files = sorted(test_dir.glob("test_*.py"))
    if not test_files:
        print("Error: no test files found")
        return False

    print("MeteoGrid Test Suite")
    print("=" * 40)
    print(f"Found {len(test_files)} test files")
    for test_file in test_files:
        print(f"  {test_file.name}")
    print()

    result = subprocess.run([sys.executable, "-m", "pytest", str(test_dir), "-v", "--tb=short"] + extra_args)
    return result.returncode == 0


def main():
    print(f"Python executable: {sys.executable}")
    print()

    success = run_tests(sys.argv[1:])

    print()
    if success:
        print("✓ All tests passed!")
        sys.exit(0)
    else:
        print("✗ Some tests failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
