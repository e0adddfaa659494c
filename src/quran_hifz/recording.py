"""
Audio capture as an explicitly owned resource.

A RecordingSession acquires its source on start and releases it exactly once,
whether recording stops normally, fails, or the owner tears it down.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Protocol, Union

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from .exceptions import MicrophoneUnavailableError

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
DEFAULT_CHUNK_SIZE = 64 * 1024

_MIME_TO_FORMAT = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/flac": "flac",
}


@dataclass(frozen=True)
class RecordedAudio:
    """Audio captured by one recording."""
    data: bytes
    mime_type: str = "audio/webm"

    @property
    def is_empty(self) -> bool:
        return not self.data

    def to_wav(self, sample_rate: int = TARGET_SAMPLE_RATE) -> "RecordedAudio":
        """
        Transcode to mono WAV at the given sample rate.

        Raises:
            MicrophoneUnavailableError: If the captured bytes cannot be decoded as audio
        """
        base_mime = self.mime_type.split(";")[0].strip().lower()
        try:
            segment = AudioSegment.from_file(io.BytesIO(self.data), format=_MIME_TO_FORMAT.get(base_mime))
        except (CouldntDecodeError, IndexError, OSError) as e:
            raise MicrophoneUnavailableError(f"captured audio could not be decoded: {e}")
        segment = segment.set_frame_rate(sample_rate).set_channels(1)

        buffer = io.BytesIO()
        segment.export(buffer, format="wav")
        logger.debug(f"Transcoded {len(self.data)} bytes of {base_mime} to {len(buffer.getvalue())} bytes of WAV")
        return RecordedAudio(data=buffer.getvalue(), mime_type="audio/wav")


class AudioSource(Protocol):
    """Something that produces audio chunks between start() and stop()."""

    def start(self) -> None: ...

    def read_chunks(self, chunk_size: int) -> Iterator[bytes]: ...

    def stop(self) -> None: ...


class FileAudioSource:
    """Audio source over an already captured file or file-like object."""

    def __init__(self, file: Union[str, Path, BinaryIO]):
        self._file = file
        self._handle: Optional[BinaryIO] = None
        self._owns_handle = False

    def start(self) -> None:
        if isinstance(self._file, (str, Path)):
            try:
                self._handle = open(self._file, "rb")
            except OSError as e:
                raise MicrophoneUnavailableError(str(e))
            self._owns_handle = True
        else:
            self._handle = self._file
            self._handle.seek(0)

    def read_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        if self._handle is None:
            return
        while True:
            chunk = self._handle.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def stop(self) -> None:
        if self._handle is not None and self._owns_handle:
            self._handle.close()
        self._handle = None


class RecordingSession:
    """
    One recording of one recitation.

    Usage:
        with RecordingSession(source, mime_type="audio/webm") as recording:
            recording.capture()
            audio = recording.stop()
    """

    def __init__(self, source: AudioSource, mime_type: str = "audio/webm"):
        self.source = source
        self.mime_type = mime_type
        self._chunks: List[bytes] = []
        self._recording = False
        self._released = True

    @property
    def is_recording(self) -> bool:
        return self._recording

    def start(self) -> "RecordingSession":
        """Acquire the source. Raises MicrophoneUnavailableError when it cannot be acquired."""
        if self._recording:
            return self
        self._chunks = []
        try:
            self.source.start()
        except MicrophoneUnavailableError:
            logger.error("Audio input unavailable")
            raise
        except OSError as e:
            logger.error(f"Audio input unavailable: {e}")
            raise MicrophoneUnavailableError(str(e))
        self._released = False
        self._recording = True
        logger.debug("Recording started")
        return self

    def add_chunk(self, chunk: bytes) -> None:
        if self._recording and chunk:
            self._chunks.append(chunk)

    def capture(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
        """Pull everything the source currently has. Returns the number of bytes captured."""
        captured = 0
        try:
            for chunk in self.source.read_chunks(chunk_size):
                self.add_chunk(chunk)
                captured += len(chunk)
        except Exception:
            self.close()
            raise
        return captured

    def stop(self) -> RecordedAudio:
        """Finish recording, release the source and return what was captured."""
        audio = RecordedAudio(data=b"".join(self._chunks), mime_type=self.mime_type)
        self.close()
        logger.debug(f"Recording stopped with {len(audio.data)} bytes")
        return audio

    def close(self) -> None:
        """Release the source. Safe to call any number of times."""
        self._recording = False
        if self._released:
            return
        self._released = True
        try:
            self.source.stop()
        except OSError as e:
            logger.warning(f"Error releasing audio source: {e}")

    def __enter__(self) -> "RecordingSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def record_file(file: Union[str, Path, BinaryIO], mime_type: str = "audio/webm") -> RecordedAudio:
    """Capture a whole uploaded file through a RecordingSession."""
    with RecordingSession(FileAudioSource(file), mime_type=mime_type) as recording:
        recording.capture()
        return recording.stop()
