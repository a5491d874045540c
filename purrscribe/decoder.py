"""Audio decoding for arbitrary input files.

Files that libsndfile understands (wav, flac, ogg, aiff, ...) are streamed
with ``soundfile``. Everything else (mp3, m4a, mp4, webm, ...) is decoded by
an ``ffmpeg`` subprocess writing interleaved float32 PCM to a pipe. Either
way the caller receives a lazy, single-use sequence of PCM chunks and the
underlying file handle or process is released on every exit path.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple, Union

import ffmpeg
import numpy as np
import soundfile as sf

from .errors import DecodeError, ErrorCode

logger = logging.getLogger(__name__)

_BYTES_PER_SAMPLE = 4  # float32


@dataclass
class PcmChunk:
    """Decoded PCM at the source rate and channel layout.

    Attributes:
        samples: float32 array with shape [frames, channels]
    """
    samples: np.ndarray

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])


class DecodeSession:
    """A single-use decoding pass over one file.

    Attributes:
        path: Source file path
        sample_rate: Native sample rate in Hz
        channels: Native channel count
        frames: Total frame count when the container reports it, else None
    """

    def __init__(
        self,
        path: str,
        sample_rate: int,
        channels: int,
        frames: Optional[int],
        reader: Iterator[np.ndarray],
        closer: Callable[[], None],
    ):
        self.path = path
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames = frames
        self._reader = reader
        self._closer = closer
        self._started = False
        self._closed = False

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.frames is None or self.sample_rate <= 0:
            return None
        return self.frames / self.sample_rate

    def __iter__(self) -> Iterator[PcmChunk]:
        if self._started or self._closed:
            raise DecodeError(
                "decode session already consumed; open a new session to re-read",
                ErrorCode.SESSION_EXHAUSTED,
                path=self.path,
            )
        self._started = True
        return self._iter_chunks()

    def _iter_chunks(self) -> Iterator[PcmChunk]:
        try:
            for block in self._reader:
                if block.shape[0]:
                    yield PcmChunk(samples=block)
        except DecodeError:
            raise
        except (RuntimeError, OSError, ValueError) as e:
            raise DecodeError(
                f"Failed while decoding audio: {e}",
                ErrorCode.DECODE_FAILED,
                path=self.path,
            ) from e
        finally:
            self.close()

    def close(self):
        if not self._closed:
            self._closed = True
            self._closer()
            logger.debug(f"Closed decode session for '{self.path}'")


class AudioDecoder:
    """Opens audio files as streaming decode sessions.

    Attributes:
        block_frames: Number of source frames per emitted PCM chunk
    """

    def __init__(self, block_frames: int = 65536):
        """Initialize audio decoder.

        Args:
            block_frames: Source frames per PCM chunk (default: 65536)

        Raises:
            ValueError: If block_frames is not positive
        """
        if block_frames <= 0:
            raise ValueError(
                f"block_frames must be positive, got {block_frames}"
            )
        self.block_frames = block_frames

    @staticmethod
    def ensure_readable(path: Union[str, Path]) -> str:
        """Return ``path`` as a string, or raise if it is not a file.

        Raises:
            DecodeError: If the file does not exist or cannot be read
        """
        path = str(path)
        if not Path(path).is_file():
            raise DecodeError(
                f"Audio file '{path}' not found. Check file path and permissions",
                ErrorCode.FILE_NOT_FOUND,
                path=path,
            )
        if not os.access(path, os.R_OK):
            raise DecodeError(
                f"Audio file '{path}' is not readable. Check file permissions",
                ErrorCode.PERMISSION_DENIED,
                path=path,
            )
        return path

    @contextmanager
    def open(self, path: Union[str, Path]) -> Iterator[DecodeSession]:
        """Open ``path`` for streaming decode.

        Yields:
            DecodeSession whose iteration produces PcmChunk objects

        Raises:
            DecodeError: If the file is missing, unreadable or unsupported
        """
        path = self.ensure_readable(path)
        session = self._open_soundfile(path)
        if session is None:
            session = self._open_ffmpeg(path)

        logger.debug(
            f"Opened '{path}': {session.sample_rate} Hz, "
            f"{session.channels} channel(s), frames={session.frames}"
        )
        try:
            yield session
        finally:
            session.close()

    def decode(self, path: Union[str, Path]) -> Tuple[np.ndarray, int, int]:
        """Decode a whole file into memory.

        Returns:
            samples: float32 array with shape [frames, channels]
            sample_rate: Native sample rate in Hz
            channels: Native channel count
        """
        with self.open(path) as session:
            blocks = [chunk.samples for chunk in session]
            if blocks:
                samples = np.concatenate(blocks, axis=0)
            else:
                samples = np.zeros((0, max(session.channels, 1)), dtype=np.float32)
            return samples, session.sample_rate, session.channels

    def _open_soundfile(self, path: str) -> Optional[DecodeSession]:
        try:
            handle = sf.SoundFile(path, mode="r")
        except sf.LibsndfileError:
            # Not a libsndfile format; let ffmpeg try.
            return None
        except OSError as e:
            raise DecodeError(
                f"Failed to open audio file '{path}': {e}",
                ErrorCode.DECODE_FAILED,
                path=path,
            ) from e

        reader = handle.blocks(
            blocksize=self.block_frames,
            dtype="float32",
            always_2d=True,
        )
        return DecodeSession(
            path=path,
            sample_rate=int(handle.samplerate),
            channels=int(handle.channels),
            frames=int(handle.frames),
            reader=reader,
            closer=handle.close,
        )

    def _open_ffmpeg(self, path: str) -> DecodeSession:
        try:
            probe = ffmpeg.probe(path)
        except ffmpeg.Error as e:
            stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
            raise DecodeError(
                f"Unsupported or corrupt audio file '{path}': {stderr or e}",
                ErrorCode.UNSUPPORTED_FORMAT,
                path=path,
            ) from e
        except OSError as e:
            raise DecodeError(
                f"Cannot decode '{path}': ffprobe is not available ({e})",
                ErrorCode.UNSUPPORTED_FORMAT,
                path=path,
            ) from e

        stream = next(
            (s for s in probe.get("streams", []) if s.get("codec_type") == "audio"),
            None,
        )
        if stream is None:
            raise DecodeError(
                f"No audio stream found in '{path}'",
                ErrorCode.NO_AUDIO_STREAM,
                path=path,
            )

        sample_rate = int(stream.get("sample_rate") or 0)
        channels = int(stream.get("channels") or 0)
        frames = None
        if stream.get("duration") and sample_rate > 0:
            frames = int(round(float(stream["duration"]) * sample_rate))

        try:
            process = (
                ffmpeg.input(path)
                .output("pipe:", format="f32le", acodec="pcm_f32le", loglevel="error")
                .run_async(pipe_stdout=True, pipe_stderr=True)
            )
        except OSError as e:
            raise DecodeError(
                f"Cannot decode '{path}': ffmpeg is not available ({e})",
                ErrorCode.UNSUPPORTED_FORMAT,
                path=path,
            ) from e

        def read_blocks() -> Iterator[np.ndarray]:
            frame_bytes = _BYTES_PER_SAMPLE * max(channels, 1)
            block_bytes = self.block_frames * frame_bytes
            pending = b""
            while True:
                data = process.stdout.read(block_bytes)
                if not data:
                    break
                data = pending + data
                usable = len(data) - len(data) % frame_bytes
                pending = data[usable:]
                if usable:
                    block = np.frombuffer(data[:usable], dtype="<f4")
                    yield block.reshape(-1, max(channels, 1)).astype(np.float32)
            _, err = process.communicate()
            if process.returncode != 0:
                message = (err or b"").decode("utf-8", errors="replace").strip()
                raise DecodeError(
                    f"ffmpeg failed to decode '{path}': {message}",
                    ErrorCode.DECODE_FAILED,
                    path=path,
                )

        def close_process():
            if process.poll() is None:
                process.kill()
            for pipe in (process.stdout, process.stderr):
                if pipe is not None and not pipe.closed:
                    pipe.close()
            process.wait()

        return DecodeSession(
            path=path,
            sample_rate=sample_rate,
            channels=channels,
            frames=frames,
            reader=read_blocks(),
            closer=close_process,
        )
