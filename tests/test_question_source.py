"""
Unit tests for the Open Trivia DB question source.
"""
import unittest
import asyncio

import httpx

from trivia_quiz.models import QuestionRequest
from trivia_quiz.question_source import (
    OpenTriviaClient, QuestionSourceError, RESPONSE_CODE_RATE_LIMIT,
    describe_response_code, parse_batch,
)
from tests.test_fixtures import TestFixtures


def async_test(coro):
    """Decorator to run async test methods."""
    def wrapper(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(coro(self))
        finally:
            loop.close()
    return wrapper


class TestParseBatch(unittest.TestCase):

    def test_parse_valid_payload(self):
        batch = parse_batch(TestFixtures.create_api_payload(10))
        self.assertEqual(batch.response_code, 0)
        self.assertEqual(len(batch.results), 10)
        self.assertEqual(batch.results[0].correct_answer, "Right 1")

    def test_parse_non_zero_code_without_results(self):
        batch = parse_batch({"response_code": 1, "results": []})
        self.assertEqual(batch.response_code, 1)
        self.assertEqual(batch.results, ())

    def test_parse_rejects_malformed_payloads(self):
        for payload in (
            [],
            {"results": []},
            {"response_code": "0", "results": []},
            {"response_code": 0, "results": "nope"},
            {"response_code": 0, "results": ["nope"]},
            {"response_code": 0, "results": [{"category": "x"}]},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(QuestionSourceError):
                    parse_batch(payload)

    def test_describe_response_codes(self):
        messages = {describe_response_code(code) for code in range(1, 6)}
        self.assertEqual(len(messages), 5)
        self.assertIn("99", describe_response_code(99))


class TestOpenTriviaClient(unittest.TestCase):

    def _client(self, handler, **kwargs):
        return OpenTriviaClient(transport=httpx.MockTransport(handler), **kwargs)

    def test_endpoint_appends_api_path(self):
        self.assertEqual(OpenTriviaClient("https://opentdb.com/").endpoint, "https://opentdb.com/api.php")
        self.assertEqual(OpenTriviaClient("http://localhost:8000").endpoint, "http://localhost:8000/api.php")

    @async_test
    async def test_fetch_sends_query_and_parses(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=TestFixtures.create_api_payload(10))

        batch = await self._client(handler).fetch(QuestionRequest(amount=10, category=9, difficulty="easy"))

        self.assertTrue(batch.is_success)
        self.assertEqual(len(batch.results), 10)
        params = seen[0].url.params
        self.assertEqual(params["amount"], "10")
        self.assertEqual(params["category"], "9")
        self.assertEqual(params["difficulty"], "easy")
        self.assertNotIn("type", params)
        self.assertEqual(seen[0].url.path, "/api.php")

    @async_test
    async def test_fetch_returns_non_zero_code(self):
        def handler(request):
            return httpx.Response(200, json={"response_code": 1, "results": []})

        batch = await self._client(handler).fetch(QuestionRequest())
        self.assertEqual(batch.response_code, 1)
        self.assertFalse(batch.is_success)

    @async_test
    async def test_fetch_maps_http_429_to_rate_limit(self):
        def handler(request):
            return httpx.Response(429)

        batch = await self._client(handler).fetch(QuestionRequest())
        self.assertEqual(batch.response_code, RESPONSE_CODE_RATE_LIMIT)

    @async_test
    async def test_fetch_http_error_raises(self):
        def handler(request):
            return httpx.Response(503)

        with self.assertRaises(QuestionSourceError) as context:
            await self._client(handler).fetch(QuestionRequest())
        self.assertIn("503", str(context.exception))

    @async_test
    async def test_fetch_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with self.assertRaises(QuestionSourceError) as context:
            await self._client(handler).fetch(QuestionRequest())
        self.assertIn("timed out", str(context.exception))

    @async_test
    async def test_fetch_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(QuestionSourceError):
            await self._client(handler).fetch(QuestionRequest())

    @async_test
    async def test_fetch_invalid_json_raises(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>not json</html>")

        with self.assertRaises(QuestionSourceError) as context:
            await self._client(handler).fetch(QuestionRequest())
        self.assertIn("Invalid JSON", str(context.exception))


if __name__ == '__main__':
    unittest.main()
