"""
Shared pytest fixtures and configuration for the text synthesis queue tests
"""
import sys
import threading
import time
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from text_synthesis.client import SynthesisResult
from text_synthesis.config import QueueConfig
from text_synthesis.jobs import JobStorage, JobManager, SynthesisRequest, TransientAPIError


class FakeClock:
    """Controllable time source"""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeClient:
    """
    Synthesis client double.

    Fails every call with ``fail_with`` (if set) or calls whose text is a key
    of ``failures``. Tracks how many calls run at the same time.
    """

    def __init__(self, fail_with=None, failures=None, delay=0.0, gate=None):
        self.fail_with = fail_with
        self.failures = failures or {}
        self.delay = delay
        self.gate = gate
        self.started = threading.Event()
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def synthesize(self, request):
        with self._lock:
            self.calls.append(request)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()

        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.delay:
                time.sleep(self.delay)

            message = self.failures.get(request.input.text, self.fail_with)
            if message is not None:
                raise TransientAPIError(message)
            return SynthesisResult(audio_content=b"RIFF....WAVE", audio_encoding="LINEAR16")
        finally:
            with self._lock:
                self.in_flight -= 1

    def texts(self):
        return [request.input.text for request in self.calls]


def text_request(text):
    return SynthesisRequest.from_dict({"input": {"text": text}})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "jobs.db")


@pytest.fixture
def storage(db_path, clock):
    storage = JobStorage(db_path, clock=clock)
    yield storage
    storage.close()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def make_manager(db_path, clock):
    """Factory for JobManager instances sharing the test database"""
    managers = []

    def factory(client=None, **settings):
        config = QueueConfig(db_path=db_path, api_key="test-key", **settings)
        manager = JobManager(config, client=client or FakeClient(), clock=clock)
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        manager.close()


@pytest.fixture
def sample_request():
    """Request with every optional setting filled in"""
    return {
        "input": {"ssml": "<speak>Hello <break time=\"200ms\"/> world</speak>"},
        "voice": {
            "languageCode": "de-DE",
            "name": "de-DE-Wavenet-B",
            "ssmlGender": "MALE",
            "naturalSampleRateHertz": 24000,
        },
        "audioConfig": {
            "audioEncoding": "MP3",
            "speakingRate": 1.25,
            "pitch": -2.0,
            "volumeGainDb": 3.5,
            "sampleRateHertz": 22050,
        },
    }
