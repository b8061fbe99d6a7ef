import argparse
import asyncio
import logging
import os
import signal
import sys
import wave
from pathlib import Path
from typing import Any

import numpy as np
from pydantic import ValidationError

from voice_session.config import VoiceSessionConfig
from voice_session.domain.connection import ConnectionRegistry
from voice_session.domain.errors import TransportClosedError, TransportUnavailableError
from voice_session.domain.events import DomainEvent, SessionEvent
from voice_session.domain.session import VoiceSession
from voice_session.log_format import configure_logging

ENV_FILE_PATH = Path.home() / ".config" / "voice-session" / "env"
FILE_CHUNK_MS = 100

logger = logging.getLogger("voice_session")


def _load_env_file() -> None:
    if not ENV_FILE_PATH.exists():
        return
    with open(ENV_FILE_PATH) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            value = value.strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def _parse_details(pairs: list[str]) -> dict[str, Any]:
    details: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got '{pair}'")
        details[key] = value
    return details


def main() -> None:
    _load_env_file()
    parser = argparse.ArgumentParser(description="Stream audio to a transcription server")
    parser.add_argument("url", nargs="?", help="WebSocket URL (default: $VOICE_SESSION_URL)")
    parser.add_argument("--file", type=Path, help="Stream a 16-bit mono WAV file instead of the microphone")
    parser.add_argument("--detail", action="append", default=[], metavar="KEY=VALUE", help="Session start field")
    parser.add_argument("--external-audio", action="store_true", help="Force external audio mode")
    parser.add_argument("--no-realtime", action="store_true", help="Push file audio as fast as possible")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    configure_logging(args.verbose)

    overrides: dict[str, Any] = {}
    if args.url:
        overrides["url"] = args.url
    if args.file or args.external_audio:
        overrides["external_audio"] = True

    try:
        details = _parse_details(args.detail)
        config = VoiceSessionConfig(**overrides)
    except (argparse.ArgumentTypeError, ValidationError) as exc:
        parser.error(str(exc))
    if details:
        config.session_details = {**config.session_details, **details}

    sys.exit(asyncio.run(_run(config, args.file, realtime=not args.no_realtime)))


async def _run(config: VoiceSessionConfig, wav_path: Path | None, realtime: bool) -> int:
    from voice_session.environment import has_critical_failures, resolve_external_audio, run_startup_checks
    from voice_session.factory import create_session

    external_audio = resolve_external_audio(config)
    results = run_startup_checks(config, external_audio)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        return 1

    finished = asyncio.Event()
    final_text: list[str] = []

    def on_send(text: str) -> None:
        final_text.append(text)
        finished.set()

    def notify(severity: str, summary: str, detail: str) -> None:
        level = logging.ERROR if severity == "error" else logging.INFO
        logging.log(level, "%s: %s", summary, detail)

    session = create_session(
        config,
        ConnectionRegistry(),
        on_send=on_send,
        notify=notify,
        external_audio=external_audio,
    )
    session.on(SessionEvent.TRANSCRIPTION, _print_transcription)
    session.on(SessionEvent.SOCKET_MESSAGE, lambda event: _finish_on_disconnect(event, finished))
    session.on(SessionEvent.ERROR, lambda event: finished.set())

    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        finished.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    feeder: asyncio.Task | None = None
    try:
        try:
            await session.connect()
        except (TransportClosedError, TransportUnavailableError) as exc:
            logging.error("Cannot connect to %s: %s", config.url, exc)
            return 1
        await session.start_session()
        if not session.session.sent:
            return 1
        if wav_path is not None:
            feeder = asyncio.create_task(_stream_wav(session, wav_path, config.sample_rate, realtime, finished))
        await finished.wait()
    finally:
        if feeder is not None:
            feeder.cancel()
        transport = session.connection.transport
        session.disconnect()
        session.close_socket()
        if transport is not None:
            try:
                await asyncio.wait_for(transport.wait_closed(), timeout=3.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

    if final_text:
        print()
        print(final_text[-1])
    return 0


async def _stream_wav(
    session: VoiceSession,
    path: Path,
    sample_rate: int,
    realtime: bool,
    finished: asyncio.Event,
) -> None:
    try:
        samples = _read_wav(path, sample_rate)
    except (OSError, ValueError, wave.Error) as exc:
        logging.error("Cannot stream %s: %s", path, exc)
        finished.set()
        return
    chunk_size = session.pipeline.chunk_size
    remainder = len(samples) % chunk_size
    if remainder:
        samples = np.concatenate((samples, np.zeros(chunk_size - remainder, dtype=np.int16)))

    step = int(sample_rate * FILE_CHUNK_MS / 1000)
    logger.info("Streaming %s (%.1fs)", path, len(samples) / sample_rate)
    for start in range(0, len(samples), step):
        session.push_pcm16(samples[start : start + step])
        await asyncio.sleep(FILE_CHUNK_MS / 1000 if realtime else 0)


def _read_wav(path: Path, sample_rate: int) -> np.ndarray:
    with wave.open(str(path), "rb") as wf:
        if wf.getnchannels() != 1 or wf.getsampwidth() != 2:
            raise ValueError(f"{path} must be 16-bit mono PCM")
        if wf.getframerate() != sample_rate:
            raise ValueError(f"{path} is {wf.getframerate()} Hz, expected {sample_rate} Hz")
        return np.frombuffer(wf.readframes(wf.getnframes()), dtype="<i2").astype(np.int16)


def _finish_on_disconnect(event: DomainEvent, finished: asyncio.Event) -> None:
    if isinstance(event.parsed, dict) and event.parsed.get("disconnect"):
        finished.set()


def _print_transcription(event: DomainEvent) -> None:
    print(f"\r\033[K{event.text}", end="", flush=True)


if __name__ == "__main__":
    main()
