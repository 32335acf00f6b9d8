"""
Test runner for the Wozap connections project.

Usage:
    python run_tests.py              # connection lifecycle suites
    python run_tests.py all          # every test in the project
    python run_tests.py <module>     # a single test module
"""

import os
import sys
import django
from django.conf import settings
from django.test.utils import get_runner


def _runner():
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'base.settings')
    django.setup()
    TestRunner = get_runner(settings)
    return TestRunner()


def run_connection_tests():
    """Run the instance lifecycle and webhook suites."""
    test_patterns = [
        'connections.tests.test_state_store',
        'connections.tests.test_poller',
        'connections.tests.test_observers',
        'connections.tests.test_manager',
        'aiengine.tests.test_webhook',
    ]
    return _runner().run_tests(test_patterns)


def run_specific_test_module(module_name):
    """Run tests for a specific module."""
    return _runner().run_tests([module_name])


def run_all_tests():
    """Run all tests in the project."""
    return _runner().run_tests(['core', 'aiengine', 'connections'])


if __name__ == '__main__':
    if len(sys.argv) > 1:
        if sys.argv[1] == 'all':
            failures = run_all_tests()
        else:
            failures = run_specific_test_module(sys.argv[1])
    else:
        failures = run_connection_tests()

    if failures:
        sys.exit(1)
    else:
        print("All tests passed!")
        sys.exit(0)
