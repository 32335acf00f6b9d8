"""
Tests for the reply cache: normalization, TTL expiry and FIFO eviction.
"""
import threading

from django.test import SimpleTestCase, override_settings

from aiengine.response_cache import ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class ResponseCacheTestCase(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.cache = ResponseCache(ttl=300, max_size=3, clock=self.clock)

    def test_normalize(self):
        self.assertEqual(ResponseCache.normalize('  Hello, World!!  '), 'hello world')
        self.assertEqual(ResponseCache.normalize('Qual o preço?'), 'qual o preço')
        self.assertEqual(len(ResponseCache.normalize('a' * 500)), 100)
        self.assertEqual(ResponseCache.normalize(None), '')

    def test_get_after_put(self):
        self.assertTrue(self.cache.put(7, 'What are your hours?', 'We open at 9.'))
        self.assertEqual(self.cache.get(7, 'what are your hours'), 'We open at 9.')

    def test_entries_are_per_agent(self):
        self.cache.put(7, 'What are your hours?', 'We open at 9.')
        self.assertIsNone(self.cache.get(8, 'What are your hours?'))

    def test_expired_entry_is_dropped(self):
        self.cache.put(7, 'What are your hours?', 'We open at 9.')
        self.clock.now += 299
        self.assertEqual(self.cache.get(7, 'What are your hours?'), 'We open at 9.')
        self.clock.now += 2
        self.assertIsNone(self.cache.get(7, 'What are your hours?'))
        self.assertEqual(len(self.cache), 0)

    def test_oldest_entry_is_evicted_first(self):
        for i in range(3):
            self.cache.put(7, f'question number {i}', f'answer {i}')
        # A hit does not refresh position: eviction is insertion ordered
        self.assertEqual(self.cache.get(7, 'question number 0'), 'answer 0')

        self.cache.put(7, 'question number 3', 'answer 3')

        self.assertIsNone(self.cache.get(7, 'question number 0'))
        self.assertEqual(self.cache.get(7, 'question number 1'), 'answer 1')
        self.assertEqual(self.cache.get(7, 'question number 3'), 'answer 3')
        self.assertEqual(len(self.cache), 3)

    def test_overwrite_keeps_insertion_position(self):
        for i in range(3):
            self.cache.put(7, f'question number {i}', f'answer {i}')
        self.cache.put(7, 'Question number 0?', 'new answer 0')
        self.assertEqual(self.cache.get(7, 'question number 0'), 'new answer 0')

        self.cache.put(7, 'question number 3', 'answer 3')

        self.assertIsNone(self.cache.get(7, 'question number 0'))
        self.assertEqual(self.cache.get(7, 'question number 1'), 'answer 1')
        self.assertEqual(len(self.cache), 3)

    def test_short_messages_are_not_stored(self):
        self.assertFalse(self.cache.put(7, 'oi', 'Olá! Como posso ajudar?'))
        self.assertIsNone(self.cache.get(7, 'oi'))

    def test_long_replies_are_not_stored(self):
        self.assertFalse(self.cache.put(7, 'Tell me everything', 'x' * 1001))
        self.assertTrue(self.cache.put(7, 'Tell me everything', 'x' * 1000))

    def test_empty_reply_is_not_stored(self):
        self.assertFalse(self.cache.put(7, 'What are your hours?', ''))

    def test_stats_and_clear(self):
        self.cache.put(7, 'What are your hours?', 'We open at 9.')
        self.cache.get(7, 'What are your hours?')
        self.cache.get(7, 'Where are you?')
        self.assertEqual(self.cache.get_stats(), {'size': 1, 'max_size': 3, 'hits': 1, 'misses': 1})

        self.cache.clear()
        self.assertEqual(self.cache.get_stats(), {'size': 0, 'max_size': 3, 'hits': 0, 'misses': 0})

    @override_settings(WHATSAPP_RESPONSE_CACHE_TTL=10.0, WHATSAPP_RESPONSE_CACHE_SIZE=2)
    def test_defaults_come_from_settings(self):
        cache = ResponseCache(clock=self.clock)
        self.assertEqual(cache.ttl, 10.0)
        self.assertEqual(cache.max_size, 2)

    def test_capacity_holds_under_concurrent_puts(self):
        cache = ResponseCache(ttl=300, max_size=50)

        def writer(offset):
            for i in range(200):
                cache.put(1, f'message number {offset}-{i}', 'reply')

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(cache), 50)
