"""
Tests for the Google Text-to-Speech REST client.
"""

import base64
import unittest
from unittest.mock import patch, MagicMock

import requests

from text_synthesis.client import GoogleSynthesisClient, SynthesisResult
from text_synthesis.jobs import SynthesisRequest, ConfigurationError, TransientAPIError


def make_response(status_code=200, body=None, reason="OK"):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


class TestGoogleSynthesisClient(unittest.TestCase):
    """Request building, response decoding and error mapping"""

    def setUp(self):
        self.client = GoogleSynthesisClient(
            endpoint="https://tts.example.com/v1beta1/",
            api_key="secret",
            timeout=12
        )
        self.request = SynthesisRequest.from_dict({
            "input": {"text": "Hello"},
            "voice": {"languageCode": "en-US"},
            "audioConfig": {"audioEncoding": "MP3"},
        })

    def tearDown(self):
        self.client.close()

    @patch.object(requests.Session, 'post')
    def test_success_decodes_audio(self, mock_post):
        audio = b"ID3\x03fake-mp3"
        mock_post.return_value = make_response(body={
            "audioContent": base64.b64encode(audio).decode("ascii"),
            "timepoints": [],
        })

        result = self.client.synthesize(self.request)

        self.assertIsInstance(result, SynthesisResult)
        self.assertEqual(result.audio_content, audio)
        self.assertEqual(result.audio_encoding, "MP3")
        self.assertEqual(result.extra, {"timepoints": []})

        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://tts.example.com/v1beta1/text:synthesize")
        self.assertEqual(kwargs["params"], {"key": "secret"})
        self.assertEqual(kwargs["json"], self.request.to_dict())
        self.assertEqual(kwargs["timeout"], 12)

    @patch.object(requests.Session, 'post')
    def test_null_audio_config_falls_back_to_requested_encoding(self, mock_post):
        mock_post.return_value = make_response(body={
            "audioContent": base64.b64encode(b"audio").decode("ascii"),
            "audioConfig": None,
        })

        result = self.client.synthesize(self.request)

        self.assertEqual(result.audio_content, b"audio")
        self.assertEqual(result.audio_encoding, "MP3")

    @patch.object(requests.Session, 'post')
    def test_endpoint_without_trailing_slash(self, mock_post):
        mock_post.return_value = make_response(body={"audioContent": ""})
        self.client.endpoint = "https://tts.example.com/v1"

        self.client.synthesize(self.request)

        self.assertEqual(mock_post.call_args[0][0], "https://tts.example.com/v1/text:synthesize")

    @patch.object(requests.Session, 'post')
    def test_api_error_message_is_used(self, mock_post):
        mock_post.return_value = make_response(
            status_code=429,
            reason="Too Many Requests",
            body={"error": {"code": 429, "message": "Quota exceeded for quota metric"}}
        )

        with self.assertRaises(TransientAPIError) as ctx:
            self.client.synthesize(self.request)

        self.assertEqual(str(ctx.exception), "Quota exceeded for quota metric")
        self.assertEqual(ctx.exception.status_code, 429)

    @patch.object(requests.Session, 'post')
    def test_http_error_without_json_body(self, mock_post):
        mock_post.return_value = make_response(
            status_code=502,
            reason="Bad Gateway",
            body=ValueError("No JSON")
        )

        with self.assertRaises(TransientAPIError) as ctx:
            self.client.synthesize(self.request)

        self.assertEqual(str(ctx.exception), "HTTP 502: Bad Gateway")

    @patch.object(requests.Session, 'post')
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.Timeout("read timed out")

        with self.assertRaises(TransientAPIError) as ctx:
            self.client.synthesize(self.request)

        self.assertEqual(str(ctx.exception), "Synthesis request timed out after 12s")

    @patch.object(requests.Session, 'post')
    def test_connection_failure(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("Name or service not known")

        with self.assertRaises(TransientAPIError) as ctx:
            self.client.synthesize(self.request)

        self.assertIn("Name or service not known", str(ctx.exception))

    @patch.object(requests.Session, 'post')
    def test_malformed_body(self, mock_post):
        mock_post.return_value = make_response(body={"unexpected": True})

        with self.assertRaises(TransientAPIError) as ctx:
            self.client.synthesize(self.request)

        self.assertTrue(str(ctx.exception).startswith("Unexpected synthesis response"))

    @patch.object(requests.Session, 'post')
    def test_invalid_base64_audio(self, mock_post):
        mock_post.return_value = make_response(body={"audioContent": "not base64!"})

        with self.assertRaises(TransientAPIError):
            self.client.synthesize(self.request)

    @patch.object(requests.Session, 'post')
    def test_missing_api_key(self, mock_post):
        self.client.api_key = ""

        with self.assertRaises(ConfigurationError) as ctx:
            self.client.synthesize(self.request)

        self.assertEqual(str(ctx.exception), "No API key configured for the synthesis API")
        mock_post.assert_not_called()

    @patch.object(requests.Session, 'post')
    def test_invalid_endpoint(self, mock_post):
        self.client.endpoint = "tts.example.com"

        with self.assertRaises(ConfigurationError):
            self.client.synthesize(self.request)

        mock_post.assert_not_called()


def test_jobs_fail_without_api_key(db_path, clock):
    """A manager with the real client and no key records the error on each job"""
    from text_synthesis.config import QueueConfig
    from text_synthesis.jobs import JobManager, JobStatus

    manager = JobManager(QueueConfig(db_path=db_path, parallel_calls=0), clock=clock)
    try:
        ids = [manager.submit_job({"input": {"text": f"job {i}"}}, "1", "audio") for i in range(2)]
        result = manager.run_queue()

        assert result.ok
        for job_id in ids:
            job = manager.get_job(job_id)
            assert job.status == JobStatus.ERROR
            assert job.error == "No API key configured for the synthesis API"
    finally:
        manager.close()


if __name__ == "__main__":
    unittest.main()
