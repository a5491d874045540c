"""Basic usage example for purrscribe.

This example demonstrates:
1. Transcribing a file and reading the metrics
2. Writing SRT and JSON output
3. Streaming partial transcripts with cancellation
4. Resolving models from the local model store
"""

import logging
import sys

from purrscribe import (
    CancellationToken,
    ModelNotFound,
    ModelStore,
    OutputFormatter,
    TranscriptionConfig,
    TranscriptionError,
    TranscriptionPipeline,
    check_gpu_status,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

audio_path = sys.argv[1] if len(sys.argv) > 1 else "audio.mp3"  # Your audio file here

# =============================================================================
# Example 1: Basic Transcription
# =============================================================================
print("=" * 70)
print("Example 1: Basic Transcription")
print("=" * 70)

# Pick a model: an installed one from the model store, or a GigaAM name that
# the gigaam package downloads itself.
store = ModelStore()
try:
    model_path = store.find_default_model()
except ModelNotFound as e:
    print(f"{e}; falling back to GigaAM 'v3_ctc'")
    model_path = "v3_ctc"

status = check_gpu_status()
config = TranscriptionConfig(
    model_path=model_path,
    language="auto",
    gpu_enabled=bool(status.devices),
)
pipeline = TranscriptionPipeline()

try:
    result = pipeline.run(audio_path, config)

    metrics = result.metrics
    print(f"\nAudio duration: {metrics.audio_duration:.2f}s")
    print(f"Processing time: {metrics.processing_time:.2f}s")
    print(f"Real-time factor: {metrics.real_time_factor:.3f}")
    print(f"Windows: {metrics.window_count}")
    print(f"Backend: {metrics.backend_used}")
    print(f"Language: {result.transcript.language}")
    print()

    print("Transcription:")
    print("-" * 70)
    for segment in result.transcript.segments:
        if segment.failed:
            print(f"[{segment.start:6.2f}s - {segment.end:6.2f}s] <failed window>")
        else:
            print(f"[{segment.start:6.2f}s - {segment.end:6.2f}s] {segment.text}")
except TranscriptionError as e:
    print(f"Error during transcription: {e}")
    sys.exit(1)

# =============================================================================
# Example 2: SRT and JSON output
# =============================================================================
print("\n" + "=" * 70)
print("Example 2: SRT and JSON output")
print("=" * 70)

# transcribe_to renders in config.output_format and writes to any sink.
with open("transcript.srt", "w", encoding="utf-8") as sink:
    pipeline.transcribe_to(audio_path, config.replace(output_format="srt"), sink)
print("Wrote transcript.srt")

# An existing transcript can be rendered again without re-running inference.
formatter = OutputFormatter()
print(formatter.render(result.transcript, "json", result.metrics)[:400])

# =============================================================================
# Example 3: Streaming with cancellation
# =============================================================================
print("\n" + "=" * 70)
print("Example 3: Streaming with cancellation")
print("=" * 70)

token = CancellationToken()


def on_update(update):
    print(f"  window {update.window_index}: {update.transcript.text[-60:]!r}")
    if update.window_index >= 1:
        # Stop after two windows; the window in flight always completes.
        token.cancel()


streamed = pipeline.run(
    audio_path,
    config.replace(streaming=True),
    cancel_token=token,
    on_update=on_update,
)
print(f"\nStatus: {streamed.status.value}, segments kept: {len(streamed.transcript.segments)}")

# =============================================================================
# Example 4: Installed models
# =============================================================================
print("\n" + "=" * 70)
print("Example 4: Installed models")
print("=" * 70)

for info in store.list_models():
    print(f"  {info.identifier:<16} {info.family:<16} {info.path}")
if not store.list_models():
    print(f"  No models installed in {store.models_dir}")
