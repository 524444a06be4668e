#!/usr/bin/env python3
"""
Test runner for the quiz bot.
Runs every test module and prints a summary report.
"""
import sys
import time
import unittest
from pathlib import Path

# Project root on the path so `quizbot` and `tests` import
sys.path.insert(0, str(Path(__file__).parent.parent))

TEST_MODULES = [
    'tests.test_quiz_engine',
    'tests.test_session_registry',
    'tests.test_delivery_queue',
    'tests.test_score_store',
    'tests.test_callback_token',
    'tests.test_progress_feed',
    'tests.test_messages',
    'tests.test_data_manager',
    'tests.test_config_manager',
    'tests.test_session_controller',
    'tests.test_bot_discord_integration',
    'tests.test_integration',
]


def run_test_suite():
    """Run the complete test suite and report results."""
    print("=" * 70)
    print("Discord Quiz Bot - Test Suite")
    print("=" * 70)

    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    for module_name in TEST_MODULES:
        try:
            suite.addTest(loader.loadTestsFromName(module_name))
            print(f"✓ Loaded tests from {module_name}")
        except (ImportError, AttributeError) as e:
            print(f"✗ Failed to load {module_name}: {e}")

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout, buffer=True)

    start_time = time.time()
    result = runner.run(suite)
    elapsed = time.time() - start_time

    total_tests = result.testsRun
    failures = len(result.failures)
    errors = len(result.errors)
    skipped = len(result.skipped)
    passed = total_tests - failures - errors - skipped

    print("\n" + "=" * 70)
    print("Test Summary Report")
    print("=" * 70)
    print(f"Total Tests Run: {total_tests}")
    print(f"Passed: {passed}")
    print(f"Failed: {failures}")
    print(f"Errors: {errors}")
    print(f"Skipped: {skipped}")
    print(f"Success Rate: {(passed / total_tests) * 100:.1f}%" if total_tests > 0 else "N/A")
    print(f"Execution Time: {elapsed:.2f} seconds")

    return result.wasSuccessful()


if __name__ == '__main__':
    sys.exit(0 if run_test_suite() else 1)
