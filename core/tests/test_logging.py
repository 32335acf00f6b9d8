"""
Tests for request-aware logging and the log viewer command.
"""
import logging
import tempfile
from io import StringIO
from pathlib import Path

from django.contrib.auth.models import AnonymousUser, User
from django.core.management import call_command
from django.core.management.base import CommandError
from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, TestCase, override_settings

from core.logging_filters import RequestLoggingMiddleware, UserInfoFilter, get_current_request


def _record():
    return logging.LogRecord('connections', logging.INFO, __file__, 1, 'message', None, None)


class UserInfoFilterTestCase(TestCase):

    def setUp(self):
        self.factory = RequestFactory()
        self.filter = UserInfoFilter()

    def test_outside_a_request(self):
        record = _record()
        self.assertTrue(self.filter.filter(record))
        self.assertEqual(record.user, 'system')
        self.assertEqual(record.request_id, 'no-request-id')

    def test_inside_a_request(self):
        user = User.objects.create_user(username='owner', password='testpass123')
        seen = {}

        def view(request):
            record = _record()
            self.filter.filter(record)
            seen['user'] = record.user
            seen['request_id'] = record.request_id
            seen['current'] = get_current_request()
            return HttpResponse('ok')

        request = self.factory.get('/')
        request.user = user
        response = RequestLoggingMiddleware(view)(request)

        self.assertEqual(seen['user'], 'owner')
        self.assertEqual(len(seen['request_id']), 8)
        self.assertIs(seen['current'], request)
        self.assertEqual(response['X-Request-ID'], seen['request_id'])
        self.assertIsNone(get_current_request())

    def test_anonymous_request(self):
        request = self.factory.get('/')
        request.user = AnonymousUser()
        request.request_id = 'abcd1234'
        record = _record()
        record.request = request
        self.filter.filter(record)
        self.assertEqual(record.user, 'anonymous')
        self.assertEqual(record.request_id, 'abcd1234')


class ViewLogsCommandTestCase(SimpleTestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.logs_dir = Path(self.tmp.name)

    def test_tail(self):
        (self.logs_dir / 'connections.log').write_text('\n'.join(f'line {i}' for i in range(10)) + '\n')
        out = StringIO()
        with override_settings(LOGS_DIR=self.logs_dir):
            call_command('view_logs', '--log-type', 'connections', '--lines', '3', stdout=out)
        output = out.getvalue()
        self.assertIn('Showing last 3 lines from connections.log', output)
        self.assertIn('line 9', output)
        self.assertNotIn('line 6', output)

    def test_missing_file(self):
        out = StringIO()
        with override_settings(LOGS_DIR=self.logs_dir):
            call_command('view_logs', '--log-type', 'errors', stdout=out)
        self.assertIn('does not exist', out.getvalue())

    def test_lines_must_be_positive(self):
        with override_settings(LOGS_DIR=self.logs_dir):
            with self.assertRaises(CommandError):
                call_command('view_logs', '--lines', '0', stdout=StringIO())
