"""
Speech-to-Text Provider

This module defines the transcription port the speaking pipeline depends on
and the adapter that wraps a vendor client with the remote call executor:
1. Audio reference and transcription result value objects
2. ``TranscriptionProvider`` (what the pipeline calls) and
   ``TranscriptionClient`` (the vendor SDK boundary)
3. ``RemoteTranscriptionProvider``: audio limits, deadline, cancellation,
   error classification and result validation
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from linguaiq.common.config import get_config
from linguaiq.common.error_handling import ProviderErrorCode, TranscriptionProviderError
from linguaiq.common.logger import app_logger
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import clean_text, is_finite_number
from linguaiq.providers.remote_call import (
    CancellationSignal,
    LoggerLike,
    RemoteCallContext,
    RemoteCallExecutor,
    RemoteCallOptions,
)

logger = app_logger.getChild("providers.transcription")


@dataclass(frozen=True)
class ShortAudioFileRef(SerializableMixin):
    """Location and known metadata of a stored audio answer."""
    uri: str
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    duration_ms: Optional[int] = None


@dataclass(frozen=True)
class WordTimestamp(SerializableMixin):
    word: str
    start_ms: int
    end_ms: int
    confidence: Optional[float] = None


@dataclass(frozen=True)
class TranscriptionUsage(SerializableMixin):
    audio_ms: int
    billed_ms: Optional[int] = None
    request_units: Optional[int] = None


@dataclass(frozen=True)
class TranscriptionResult(SerializableMixin):
    transcript: str
    duration_ms: float
    language: Optional[str] = None
    words: List[WordTimestamp] = field(default_factory=list)
    usage: Optional[TranscriptionUsage] = None


class TranscriptionProvider(ABC):
    """Port used by the speaking pipeline to turn audio into text."""

    @abstractmethod
    async def transcribe(
        self,
        audio: ShortAudioFileRef,
        locale_hint: Optional[str] = None,
        prompt: Optional[str] = None,
        options: Optional[RemoteCallOptions] = None
    ) -> TranscriptionResult:
        """
        Transcribe a short audio answer.

        Args:
            audio: Reference to the stored audio
            locale_hint: BCP-47 language hint, e.g. ``en-US``
            prompt: Context steering vocabulary recognition
            options: Deadline, cancellation and log metadata overrides

        Returns:
            The transcript and the measured audio duration

        Raises:
            TranscriptionProviderError: for every failure
        """
        pass


class TranscriptionClient(ABC):
    """
    Vendor SDK boundary.

    Implementations should stop work when ``signal`` is cancelled; the
    executor cancels the awaiting task either way.
    """

    @abstractmethod
    async def transcribe_short_audio(
        self,
        audio: ShortAudioFileRef,
        locale_hint: Optional[str] = None,
        prompt: Optional[str] = None,
        signal: Optional[CancellationSignal] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> TranscriptionResult:
        pass


class RemoteTranscriptionProvider(TranscriptionProvider):
    """
    ``TranscriptionProvider`` backed by a ``TranscriptionClient``.

    Audio over the configured duration or size limits is rejected with
    ``BAD_REQUEST`` before the client is called. A result without a numeric
    duration or with a blank transcript is rejected with ``INVALID_RESPONSE``.
    """

    SERVICE_NAME = "Transcription provider"

    def __init__(
        self,
        client: TranscriptionClient,
        default_timeout_ms: Optional[int] = None,
        max_duration_ms: Optional[int] = None,
        max_size_bytes: Optional[int] = None,
        logger_instance: Optional[LoggerLike] = None
    ):
        remote_call = get_config().remote_call
        self.client = client
        self.default_timeout_ms = (
            default_timeout_ms if default_timeout_ms is not None else remote_call.transcription_timeout_ms
        )
        self.max_duration_ms = max_duration_ms if max_duration_ms is not None else remote_call.max_audio_duration_ms
        self.max_size_bytes = max_size_bytes if max_size_bytes is not None else remote_call.max_audio_size_bytes
        self.logger = logger_instance or logger
        self.executor = RemoteCallExecutor(self.SERVICE_NAME, error_class=TranscriptionProviderError)

    async def transcribe(
        self,
        audio: ShortAudioFileRef,
        locale_hint: Optional[str] = None,
        prompt: Optional[str] = None,
        options: Optional[RemoteCallOptions] = None
    ) -> TranscriptionResult:
        self._enforce_limits(audio)

        async def perform(context: RemoteCallContext) -> TranscriptionResult:
            return await self.client.transcribe_short_audio(
                audio,
                locale_hint=locale_hint,
                prompt=prompt,
                signal=context.signal,
                metadata=options.metadata if options else None,
            )

        result = await self.executor.execute(
            "transcribe_short_audio",
            self.default_timeout_ms,
            perform,
            options=options,
            logger=self.logger,
        )
        self._validate_result(result)
        return result

    def _enforce_limits(self, audio: ShortAudioFileRef) -> None:
        if self.max_duration_ms is not None and audio.duration_ms is not None:
            if audio.duration_ms > self.max_duration_ms:
                details = {"duration_ms": audio.duration_ms, "limit_ms": self.max_duration_ms}
                self.logger.warning("Audio duration is above configured limit", extra={"data": details})
                raise TranscriptionProviderError(
                    "Audio duration exceeds supported limit",
                    provider_code=ProviderErrorCode.BAD_REQUEST,
                    details=details,
                )

        if self.max_size_bytes is not None and audio.size_bytes is not None:
            if audio.size_bytes > self.max_size_bytes:
                details = {"size_bytes": audio.size_bytes, "limit_bytes": self.max_size_bytes}
                self.logger.warning("Audio size is above configured limit", extra={"data": details})
                raise TranscriptionProviderError(
                    "Audio size exceeds supported limit",
                    provider_code=ProviderErrorCode.BAD_REQUEST,
                    details=details,
                )

    def _validate_result(self, result: TranscriptionResult) -> None:
        duration = getattr(result, "duration_ms", None)
        if not is_finite_number(duration):
            self.logger.error(
                "Transcription provider returned invalid duration",
                extra={"data": {"duration": repr(duration)}}
            )
            raise TranscriptionProviderError(
                "Transcription provider returned invalid duration",
                provider_code=ProviderErrorCode.INVALID_RESPONSE,
                details={"duration": duration},
            )

        if not clean_text(getattr(result, "transcript", None)):
            self.logger.error("Transcription provider returned an empty transcript")
            raise TranscriptionProviderError(
                "Transcription provider returned an empty transcript",
                provider_code=ProviderErrorCode.INVALID_RESPONSE,
            )
