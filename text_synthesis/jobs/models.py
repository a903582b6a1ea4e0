"""
Data models for the synthesis job queue.

Requests are validated once, when they are built from the host's payload,
and are immutable afterwards. Jobs serialize to plain dictionaries for
storage in SQLite.
"""

import json
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, Mapping

from bs4 import BeautifulSoup, Tag

from .errors import ValidationError


class JobStatus(str, Enum):
    """Job execution status."""
    WAITING = "waiting"          # Waiting to be processed
    PROCESSING = "processing"    # Claimed by a runner
    COMPLETED = "completed"      # Audio synthesized
    ERROR = "error"              # Synthesis failed


class BulkSelector(str, Enum):
    """Job groups that can be deleted in one operation."""
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    ALL = "all"

    @property
    def status(self) -> Optional[JobStatus]:
        """Status matched by this selector (None matches every job)."""
        return {
            BulkSelector.PENDING: JobStatus.WAITING,
            BulkSelector.COMPLETED: JobStatus.COMPLETED,
            BulkSelector.ERROR: JobStatus.ERROR,
            BulkSelector.ALL: None,
        }[self]


SSML_GENDERS = ("SSML_VOICE_GENDER_UNSPECIFIED", "MALE", "FEMALE", "NEUTRAL")

AUDIO_ENCODINGS = (
    "AUDIO_ENCODING_UNSPECIFIED",
    "LINEAR16",
    "MP3",
    "MP3_64_KBPS",
    "OGG_OPUS",
    "MULAW",
    "ALAW",
)


def _require_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"'{name}' must be an object")
    return value


def _reject_unknown(data: Mapping[str, Any], allowed, name: str):
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown {name} properties: {', '.join(unknown)}")


def _string(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{name}' must be a non-empty string")
    return value


def _number(value: Any, name: str, low: float, high: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError(f"'{name}' must be a number")
    if not low <= value <= high:
        raise ValidationError(f"'{name}' must be between {low:g} and {high:g}")
    return float(value)


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"'{name}' must be a positive integer")
    return value


def _choice(value: Any, name: str, choices) -> str:
    if value not in choices:
        raise ValidationError(f"'{name}' must be one of: {', '.join(choices)}")
    return value


@dataclass(frozen=True)
class SynthesisInput:
    """
    What to synthesize: either plain text or an SSML document.

    Exactly one of ``text`` and ``ssml`` is set.
    """
    text: Optional[str] = None
    ssml: Optional[str] = None

    def __post_init__(self):
        if (self.text is None) == (self.ssml is None):
            raise ValidationError("input must contain exactly one of 'text' or 'ssml'")
        if self.text is not None:
            _string(self.text, "input.text")
        else:
            _string(self.ssml, "input.ssml")
            _check_ssml(self.ssml)

    @property
    def kind(self) -> str:
        return "ssml" if self.ssml is not None else "text"

    def to_dict(self) -> Dict[str, str]:
        if self.ssml is not None:
            return {"ssml": self.ssml}
        return {"text": self.text}

    @classmethod
    def from_dict(cls, data: Any) -> 'SynthesisInput':
        data = _require_mapping(data, "input")
        _reject_unknown(data, ("text", "ssml"), "input")
        return cls(text=data.get("text"), ssml=data.get("ssml"))


def _check_ssml(markup: str):
    """Require a single <speak> root element."""
    soup = BeautifulSoup(markup, "html.parser")
    roots = [node for node in soup.contents if isinstance(node, Tag)]
    if len(roots) != 1 or roots[0].name != "speak":
        raise ValidationError("input.ssml must be a document with a single <speak> root element")


@dataclass(frozen=True)
class VoiceSelection:
    """Voice parameters passed through to the synthesis API."""
    language_code: Optional[str] = None
    name: Optional[str] = None
    ssml_gender: Optional[str] = None
    natural_sample_rate_hertz: Optional[int] = None

    _KEYS = {
        "languageCode": "language_code",
        "name": "name",
        "ssmlGender": "ssml_gender",
        "naturalSampleRateHertz": "natural_sample_rate_hertz",
    }

    def __post_init__(self):
        if self.language_code is not None:
            _string(self.language_code, "voice.languageCode")
        if self.name is not None:
            _string(self.name, "voice.name")
        if self.ssml_gender is not None:
            _choice(self.ssml_gender, "voice.ssmlGender", SSML_GENDERS)
        if self.natural_sample_rate_hertz is not None:
            _positive_int(self.natural_sample_rate_hertz, "voice.naturalSampleRateHertz")

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: getattr(self, attr)
            for key, attr in self._KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'VoiceSelection':
        data = _require_mapping(data, "voice")
        _reject_unknown(data, cls._KEYS, "voice")
        return cls(**{attr: data.get(key) for key, attr in cls._KEYS.items()})


@dataclass(frozen=True)
class AudioConfig:
    """Output audio parameters passed through to the synthesis API."""
    audio_encoding: Optional[str] = None
    speaking_rate: Optional[float] = None
    pitch: Optional[float] = None
    volume_gain_db: Optional[float] = None
    sample_rate_hertz: Optional[int] = None

    _KEYS = {
        "audioEncoding": "audio_encoding",
        "speakingRate": "speaking_rate",
        "pitch": "pitch",
        "volumeGainDb": "volume_gain_db",
        "sampleRateHertz": "sample_rate_hertz",
    }

    def __post_init__(self):
        if self.audio_encoding is not None:
            _choice(self.audio_encoding, "audioConfig.audioEncoding", AUDIO_ENCODINGS)
        if self.speaking_rate is not None:
            _number(self.speaking_rate, "audioConfig.speakingRate", 0.25, 4.0)
        if self.pitch is not None:
            _number(self.pitch, "audioConfig.pitch", -20.0, 20.0)
        if self.volume_gain_db is not None:
            _number(self.volume_gain_db, "audioConfig.volumeGainDb", -96.0, 16.0)
        if self.sample_rate_hertz is not None:
            _positive_int(self.sample_rate_hertz, "audioConfig.sampleRateHertz")

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: getattr(self, attr)
            for key, attr in self._KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'AudioConfig':
        data = _require_mapping(data, "audioConfig")
        _reject_unknown(data, cls._KEYS, "audioConfig")
        return cls(**{attr: data.get(key) for key, attr in cls._KEYS.items()})


@dataclass(frozen=True)
class SynthesisRequest:
    """
    Immutable payload of one synthesis call.

    The dictionary form matches the body of the Text-to-Speech
    ``text:synthesize`` call: ``{input, voice?, audioConfig?}``.
    """
    input: SynthesisInput
    voice: Optional[VoiceSelection] = None
    audio_config: Optional[AudioConfig] = None

    @property
    def mode(self) -> str:
        """Display name of the input kind."""
        return "SSML" if self.input.kind == "ssml" else "Text"

    def to_dict(self) -> Dict[str, Any]:
        data = {"input": self.input.to_dict()}
        if self.voice is not None:
            data["voice"] = self.voice.to_dict()
        if self.audio_config is not None:
            data["audioConfig"] = self.audio_config.to_dict()
        return data

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> 'SynthesisRequest':
        """
        Build a request from the host's payload.

        Raises:
            ValidationError: If the payload is malformed
        """
        data = _require_mapping(data, "request")
        _reject_unknown(data, ("input", "voice", "audioConfig"), "request")
        if "input" not in data:
            raise ValidationError("request must contain 'input'")

        voice = data.get("voice")
        audio_config = data.get("audioConfig")
        return cls(
            input=SynthesisInput.from_dict(data["input"]),
            voice=VoiceSelection.from_dict(voice) if voice is not None else None,
            audio_config=AudioConfig.from_dict(audio_config) if audio_config is not None else None,
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'SynthesisRequest':
        """Deserialize from JSON string."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValidationError(f"request is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def describe(self) -> str:
        """Summarize voice and audio settings, e.g. ``Language: de-DE, Speed: 1.0``."""
        properties = []
        if self.voice is not None:
            properties += [
                ("Language", self.voice.language_code),
                ("Name", self.voice.name),
                ("Gender", self.voice.ssml_gender),
                ("Natural samplerate", self.voice.natural_sample_rate_hertz),
            ]
        if self.audio_config is not None:
            sample_rate = self.audio_config.sample_rate_hertz
            properties += [
                ("Encoding", self.audio_config.audio_encoding),
                ("Speed", self.audio_config.speaking_rate),
                ("Pitch", self.audio_config.pitch),
                ("Volume", self.audio_config.volume_gain_db),
                ("Samplerate", f"{sample_rate} Hz" if sample_rate is not None else None),
            ]
        return ", ".join(f"{name}: {value}" for name, value in properties if value is not None)


@dataclass
class SynthesisJob:
    """
    One queued synthesis request and its processing state.

    ``page_ref`` and ``field_ref`` identify where the host stores the
    result. They are opaque to the queue and never resolved here.
    """
    request: SynthesisRequest
    page_ref: str = ""
    field_ref: str = ""

    id: Optional[int] = None
    status: JobStatus = JobStatus.WAITING
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database storage."""
        return {
            'id': self.id,
            'page_ref': self.page_ref,
            'field_ref': self.field_ref,
            'request': self.request.to_json(),
            'status': self.status.value,
            'error': self.error,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SynthesisJob':
        """Create from a database row."""
        return cls(
            id=data['id'],
            page_ref=data['page_ref'],
            field_ref=data['field_ref'],
            request=SynthesisRequest.from_json(data['request']),
            status=JobStatus(data['status']),
            error=data.get('error'),
            created_at=data['created_at'],
            started_at=data.get('started_at'),
            completed_at=data.get('completed_at'),
        )

    def to_record(self) -> Dict[str, Any]:
        """Logical job record: ``{id, pageRef, fieldRef, request, status, error?, createdAt, completedAt?}``."""
        record = {
            'id': self.id,
            'pageRef': self.page_ref,
            'fieldRef': self.field_ref,
            'request': self.request.to_dict(),
            'status': self.status.value,
            'createdAt': self.created_at,
        }
        if self.error:
            record['error'] = self.error
        if self.completed_at is not None:
            record['completedAt'] = self.completed_at
        return record

    def format_status_message(self) -> str:
        """Format a user-friendly status message."""
        if self.status == JobStatus.WAITING:
            return "Waiting"
        elif self.status == JobStatus.PROCESSING:
            return "Processing"
        elif self.status == JobStatus.COMPLETED:
            return "Completed"
        else:
            return f"Error: {self.error}"

    def can_be_run(self) -> bool:
        """Jobs already claimed by a runner cannot be re-run until they finish."""
        return self.status != JobStatus.PROCESSING


@dataclass
class ActionResult:
    """Outcome of a manual action, reported back to the host."""
    success: bool
    message: str = ""
    affected: int = 0

    def __bool__(self) -> bool:
        return self.success


# Type aliases for clarity
JobID = int
