"""Benchmark CPU vs GPU performance.

This script transcribes synthetic audio of several durations with GPU use
disabled and enabled, and compares processing time and real-time factor as
reported by the pipeline's RunMetrics.
"""

import argparse
import logging
import sys
import tempfile
from pathlib import Path

import numpy as np
import soundfile as sf
import torch

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from purrscribe import TranscriptionConfig, TranscriptionPipeline, check_gpu_status


def generate_test_audio(path: Path, duration: float, sample_rate: int = 44100) -> str:
    """Write synthetic stereo audio to a WAV file.

    Args:
        path: Output file path
        duration: Audio duration in seconds
        sample_rate: Sample rate in Hz (non-16 kHz to exercise resampling)

    Returns:
        Path of the written file
    """
    num_samples = int(duration * sample_rate)
    audio = 0.1 * np.random.randn(num_samples, 2).astype(np.float32)
    sf.write(str(path), audio, sample_rate)
    return str(path)


def benchmark_backend(
    model_path: str,
    gpu_enabled: bool,
    audio_files: dict,
    thread_count: int = 4,
    num_runs: int = 3,
):
    """Benchmark transcription with GPU use on or off.

    Args:
        model_path: Model identifier or path
        gpu_enabled: Request an accelerator backend
        audio_files: Mapping of duration to WAV path
        thread_count: CPU threads for inference
        num_runs: Number of runs per duration for averaging

    Returns:
        List of result dictionaries
    """
    label = "GPU" if gpu_enabled else "CPU"
    print(f"\n{'='*60}")
    print(f"Benchmarking {label} (threads={thread_count})")
    print(f"{'='*60}\n")

    config = TranscriptionConfig(
        model_path=model_path,
        gpu_enabled=gpu_enabled,
        thread_count=thread_count,
    )
    pipeline = TranscriptionPipeline()

    results = []
    for duration, path in audio_files.items():
        print(f"Testing {duration}s audio...")

        # Warm-up run
        try:
            pipeline.run(path, config)
        except Exception as e:
            print(f"  Warm-up failed: {e}")
            continue

        metrics = [pipeline.run(path, config).metrics for _ in range(num_runs)]

        times = [m.processing_time for m in metrics]
        avg_time = float(np.mean(times))
        result = {
            "duration": duration,
            "avg_time": avg_time,
            "std_time": float(np.std(times)),
            "rtf": avg_time / duration,
            "windows": metrics[-1].window_count,
            "backend": metrics[-1].backend_used,
        }
        peaks = [m.peak_memory_mb for m in metrics if m.peak_memory_mb is not None]
        if peaks:
            result["peak_memory_mb"] = float(np.mean(peaks))
        results.append(result)

        print(f"  Backend: {result['backend']}")
        print(f"  Avg time: {avg_time:.3f}s ± {result['std_time']:.3f}s")
        print(f"  RTF: {result['rtf']:.3f}")
        print(f"  Windows: {result['windows']}")
        if "peak_memory_mb" in result:
            print(f"  Peak memory: {result['peak_memory_mb']:.1f}MB")
        print()

    return results


def compare_results(cpu_results, gpu_results):
    """Print CPU and GPU results side by side."""
    if not cpu_results or not gpu_results:
        print("Cannot compare - missing results")
        return

    print(f"\n{'='*60}")
    print("CPU vs GPU Comparison")
    print(f"{'='*60}\n")

    print(f"{'Duration':<12} {'CPU Time':<12} {'GPU Time':<12} {'Speedup':<12} {'GPU RTF':<12}")
    print("-" * 60)

    for cpu_res, gpu_res in zip(cpu_results, gpu_results):
        if cpu_res["duration"] != gpu_res["duration"]:
            continue
        speedup = cpu_res["avg_time"] / gpu_res["avg_time"]
        print(
            f"{cpu_res['duration']:<12.1f} "
            f"{cpu_res['avg_time']:<12.3f} "
            f"{gpu_res['avg_time']:<12.3f} "
            f"{speedup:<12.2f}x "
            f"{gpu_res['rtf']:<12.3f}"
        )
    print()


def main():
    parser = argparse.ArgumentParser(description="Benchmark CPU vs GPU performance")
    parser.add_argument(
        "--model",
        type=str,
        default="v3_ctc",
        help="Model identifier or path (default: v3_ctc)",
    )
    parser.add_argument(
        "--durations",
        type=float,
        nargs="+",
        default=[5.0, 30.0, 65.0, 120.0],
        help="Audio durations to test in seconds (default: 5 30 65 120)",
    )
    parser.add_argument(
        "--threads",
        type=int,
        default=4,
        help="CPU threads (default: 4)",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=3,
        help="Number of runs per duration (default: 3)",
    )
    parser.add_argument(
        "--cpu-only",
        action="store_true",
        help="Only benchmark CPU",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show pipeline INFO logs",
    )

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    status = check_gpu_status()
    print("purrscribe CPU vs GPU Benchmark")
    print(f"Model: {args.model}")
    print(f"Runs per duration: {args.runs}")
    print(f"Durations: {args.durations}")
    print(f"Accelerators: {[d.name for d in status.devices] or 'none'}")

    with tempfile.TemporaryDirectory() as tmp:
        audio_files = {
            duration: generate_test_audio(Path(tmp) / f"audio_{duration:g}s.wav", duration)
            for duration in args.durations
        }

        cpu_results = benchmark_backend(
            args.model, False, audio_files, args.threads, args.runs
        )

        gpu_results = None
        if not args.cpu_only and (torch.cuda.is_available() or status.mps_available):
            gpu_results = benchmark_backend(
                args.model, True, audio_files, args.threads, args.runs
            )
        elif not args.cpu_only:
            print("\nGPU not available, skipping GPU benchmark")

    if cpu_results and gpu_results:
        compare_results(cpu_results, gpu_results)


if __name__ == "__main__":
    main()
