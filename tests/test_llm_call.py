import json
import unittest
from unittest.mock import patch

import requests

import coach


class _FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)


class LlmFallbackUnitTests(unittest.TestCase):
    def setUp(self):
        self._prev_send_flag = coach.SEND_MAX_TOKENS
        coach.SEND_MAX_TOKENS = True

    def tearDown(self):
        coach.SEND_MAX_TOKENS = self._prev_send_flag

    def test_fallback_retries_with_expected_payloads(self):
        messages = [{"role": "user", "content": "Hello"}]

        expected_timeout = coach._safe_int("LLM_TIMEOUT", 60)
        expected_base_payload = {
            "model": coach.MODEL_ID,
            "messages": messages,
            **coach._base_params(),
            "max_tokens": 99,
        }
        minimal_payload = {
            "model": coach.MODEL_ID,
            "messages": messages,
            "max_tokens": 99,
        }

        calls = []

        def _fake_post(url, json=None, headers=None, timeout=None):
            calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
            if len(calls) == 1:
                return _FakeResponse(400, {"error": "invalid"})
            return _FakeResponse(200, {"choices": [{"message": {"content": "Answer"}}]})

        with patch("coach.requests.post", side_effect=_fake_post):
            result = coach._llm_call(messages, max_tokens=99)

        self.assertEqual(result, "Answer")
        self.assertEqual(len(calls), 2)

        first_call, second_call = calls
        self.assertEqual(first_call["url"], coach.LLM_URL)
        self.assertEqual(first_call["json"], expected_base_payload)
        self.assertEqual(first_call["json"]["response_format"], {"type": "json_object"})
        self.assertEqual(first_call["timeout"], expected_timeout)

        self.assertEqual(second_call["url"], coach.LLM_URL)
        self.assertEqual(second_call["json"], minimal_payload)
        self.assertEqual(second_call["timeout"], expected_timeout)

    def test_max_tokens_omitted_when_disabled(self):
        coach.SEND_MAX_TOKENS = False
        captured = {}

        def _fake_post(url, json=None, headers=None, timeout=None):
            captured.update(json)
            return _FakeResponse(200, {"choices": [{"message": {"content": "{}"}}]})

        with patch("coach.requests.post", side_effect=_fake_post):
            coach._llm_call([{"role": "user", "content": "Hi"}], max_tokens=50)

        self.assertNotIn("max_tokens", captured)

    def test_bearer_key_sent_when_configured(self):
        captured = {}

        def _fake_post(url, json=None, headers=None, timeout=None):
            captured.update(headers)
            return _FakeResponse(200, {"choices": [{"message": {"content": "ok"}}]})

        with patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}), patch(
            "coach.requests.post", side_effect=_fake_post
        ):
            coach._llm_call([{"role": "user", "content": "Hi"}], max_tokens=None)

        self.assertEqual(captured["Authorization"], "Bearer sk-test")

    def test_text_completion_shape_is_accepted(self):
        with patch(
            "coach.requests.post",
            return_value=_FakeResponse(200, {"choices": [{"text": "legacy"}]}),
        ):
            self.assertEqual(coach._llm_call([], max_tokens=None), "legacy")

    def test_http_error_raises_llm_error(self):
        with patch(
            "coach.requests.post",
            return_value=_FakeResponse(500, {"error": "boom"}),
        ):
            with self.assertRaises(coach.LLMError) as ctx:
                coach._llm_call([], max_tokens=None)
        self.assertIn("LLM-HTTP 500", str(ctx.exception))

    def test_transport_error_raises_llm_error(self):
        with patch("coach.requests.post", side_effect=requests.ConnectionError("refused")):
            with self.assertRaises(coach.LLMError):
                coach._llm_call([], max_tokens=None)

    def test_empty_or_malformed_content_raises(self):
        for payload in ({"choices": [{"message": {"content": ""}}]}, {"unexpected": True}):
            with patch("coach.requests.post", return_value=_FakeResponse(200, payload)):
                with self.assertRaises(coach.LLMError):
                    coach._llm_call([], max_tokens=None)

    def test_call_is_logged_as_json_line(self):
        with patch(
            "coach.requests.post",
            return_value=_FakeResponse(
                200,
                {
                    "choices": [{"message": {"content": "ok"}}],
                    "usage": {"prompt_tokens": 12, "completion_tokens": 3},
                },
            ),
        ), patch.object(coach._LLM_LOGGER, "info") as log_info:
            coach._llm_call([], max_tokens=None, operation="verify", prompt_version="verify.v1")

        record = json.loads(log_info.call_args[0][0])
        self.assertEqual(record["event"], "llm_call")
        self.assertEqual(record["operation"], "verify")
        self.assertEqual(record["prompt_version"], "verify.v1")
        self.assertEqual(record["tokens_in"], 12)
        self.assertEqual(record["tokens_out"], 3)
        self.assertEqual(record["status"], "ok")


if __name__ == "__main__":
    unittest.main()
