"""Speech recognition with Google Cloud Speech-to-Text and transcript assembly.

The recognizer submits a long-running recognition request for a ``gs://``
MP3 and blocks until the operation finishes. Results are assembled into
speaker-attributed utterances: one line per run of words from the same
speaker, each line ended by the soft separator ``|`` except the last,
which ends with ``\\n``.
"""

import concurrent.futures
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import speech

from transcript_pipeline.errors import BadMediaUri, ExternalPermanent, ExternalTransient

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 2
LANGUAGE_CODE = "en-US"
MODEL = "phone_call"
SPEECH_CONTEXT_PHRASES = ["$MONEY", "$MONTH", "$POSTALCODE", "$FULLPHONENUM"]
SUPPORTED_SCHEME = "gs://"
SUPPORTED_EXTENSION = ".mp3"

SOFT_SEPARATOR = "|"


@dataclass
class Word:
    word: str
    speaker_tag: int


@dataclass
class Transcript:
    """Per-alternative recognition output for one request."""

    raw_transcript: list[str] = field(default_factory=list)
    raw_confidence: list[float] = field(default_factory=list)
    raw_words: list[list[Word]] = field(default_factory=list)
    attributed_strings: list[list[str]] = field(default_factory=list)

    @property
    def working_transcript(self) -> str:
        """The primary alternative's utterances, concatenated."""
        if not self.attributed_strings:
            return ""
        return "".join(self.attributed_strings[0])


class Recognizer(Protocol):
    def recognize(self, media_uri: str) -> Sequence[Any]:
        """Return the recognition results for `media_uri`."""


def validate_media_uri(media_uri: str) -> None:
    """Only ``gs://`` MP3 files can be recognized. Raises BadMediaUri otherwise."""
    if len(media_uri) < len(SUPPORTED_SCHEME) or not media_uri.startswith(SUPPORTED_SCHEME):
        raise BadMediaUri(f"Bad media_uri: only {SUPPORTED_SCHEME} URIs supported: {media_uri!r}")
    if not media_uri.lower().endswith(SUPPORTED_EXTENSION):
        raise BadMediaUri(f"Bad media_uri: only {SUPPORTED_EXTENSION} files supported: {media_uri!r}")


def build_recognition_request(media_uri: str) -> dict[str, Any]:
    """Keyword arguments for ``SpeechClient.long_running_recognize``.

    No encoding or sample rate is set; the service infers both for MP3.
    """
    config = speech.RecognitionConfig(
        language_code=LANGUAGE_CODE,
        use_enhanced=True,
        model=MODEL,
        enable_automatic_punctuation=True,
        diarization_config=speech.SpeakerDiarizationConfig(enable_speaker_diarization=True),
        max_alternatives=MAX_ALTERNATIVES,
        speech_contexts=[speech.SpeechContext(phrases=SPEECH_CONTEXT_PHRASES)],
    )
    audio = speech.RecognitionAudio(uri=media_uri)
    return {"config": config, "audio": audio}


def words_to_attributed_strings(words: Iterable[Word]) -> list[str]:
    """Group words into "[Speaker n] ..." utterances, one per run of the same speaker.

    Words without a speaker tag (0) continue the current utterance. An
    utterance with no words is never emitted.
    """
    lines: list[str] = []
    speaker = 1
    current = "[Speaker 1]"
    has_words = False

    for w in words:
        tag = int(w.speaker_tag)
        if tag >= 1 and tag != speaker:
            if has_words:
                lines.append(current + SOFT_SEPARATOR)
            current = f"[Speaker {tag}]"
            speaker = tag
        current = f"{current} {w.word}"
        has_words = True

    if has_words:
        lines.append(current + "\n")
    return lines


def assemble_transcript(results: Iterable[Any]) -> Transcript:
    """Build a Transcript from recognition results.

    Transcripts and confidences accumulate per alternative index. With
    diarization enabled the service repeats every word, speaker-tagged, in
    the final result, so each alternative keeps the words of the last
    result that carried any.
    """
    transcript = Transcript()
    slots = MAX_ALTERNATIVES + 1

    for result in results:
        for index, alternative in enumerate(list(result.alternatives)[:slots]):
            while len(transcript.raw_transcript) <= index:
                transcript.raw_transcript.append("")
                transcript.raw_confidence.append(0.0)
                transcript.raw_words.append([])

            transcript.raw_transcript[index] += alternative.transcript
            transcript.raw_confidence[index] = alternative.confidence
            words = [Word(word=w.word, speaker_tag=w.speaker_tag) for w in alternative.words]
            if words:
                transcript.raw_words[index] = words

    transcript.attributed_strings = [words_to_attributed_strings(words) for words in transcript.raw_words]
    return transcript


class GoogleSpeechRecognizer:
    """Long-running recognition on Google Cloud Speech-to-Text."""

    def __init__(self, timeout: float = 600.0, client: speech.SpeechClient | None = None) -> None:
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> speech.SpeechClient:
        """Lazy-load the client so stages that never recognize don't need credentials."""
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def recognize(self, media_uri: str) -> Sequence[Any]:
        request = build_recognition_request(media_uri)
        try:
            operation = self._get_client().long_running_recognize(**request)
            logger.info("Recognition submitted for %s", media_uri)
            response = operation.result(timeout=self.timeout)
        except api_exceptions.InvalidArgument as e:
            raise ExternalPermanent(f"recognition rejected {media_uri}: {e}", cause=e) from e
        except concurrent.futures.TimeoutError as e:
            raise ExternalTransient(f"recognition of {media_uri} timed out after {self.timeout}s", cause=e) from e
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise ExternalTransient(f"recognition of {media_uri} failed: {e}", cause=e) from e

        logger.info("Recognition complete for %s: %d results", media_uri, len(response.results))
        return list(response.results)


def transcribe(recognizer: Recognizer, media_uri: str) -> Transcript:
    """Validate, recognize and assemble the transcript for `media_uri`."""
    validate_media_uri(media_uri)
    return assemble_transcript(recognizer.recognize(media_uri))
