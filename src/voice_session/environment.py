import logging
from dataclasses import dataclass

from websockets.exceptions import InvalidURI
from websockets.uri import parse_uri

from voice_session.config import VoiceSessionConfig

logger = logging.getLogger(__name__)

CRITICAL_CHECKS = {"server_url", "audio_device"}


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def has_local_capture() -> bool:
    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:
        logger.debug("sounddevice unavailable: %s", exc)
        return False
    try:
        default = sd.query_devices(kind="input")
    except sd.PortAudioError:
        return False
    return bool(default) and default["max_input_channels"] > 0


def resolve_external_audio(config: VoiceSessionConfig) -> bool:
    if config.external_audio is not None:
        return config.external_audio
    external = not has_local_capture()
    logger.info("External audio mode %s (auto-detected)", "on" if external else "off")
    return external


def run_startup_checks(config: VoiceSessionConfig, external_audio: bool) -> list[HealthCheckResult]:
    results = [
        _check_server_url(config),
        _check_audio_device(config, external_audio),
        _check_chunking(config),
    ]

    passed = sum(1 for r in results if r.passed)
    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    return any(not r.passed and r.name in CRITICAL_CHECKS for r in results)


def _check_server_url(config: VoiceSessionConfig) -> HealthCheckResult:
    name = "server_url"
    try:
        uri = parse_uri(config.url)
    except InvalidURI as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))
    scheme = "wss" if uri.secure else "ws"
    return HealthCheckResult(name=name, passed=True, detail=f"{scheme}://{uri.host}:{uri.port}{uri.resource_name}")


def _check_audio_device(config: VoiceSessionConfig, external_audio: bool) -> HealthCheckResult:
    name = "audio_device"
    if external_audio:
        return HealthCheckResult(name=name, passed=True, detail="Skipped (external audio)")
    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"sounddevice unavailable: {exc}")
    try:
        if config.capture_device:
            for dev in sd.query_devices():
                if config.capture_device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(name=name, passed=True, detail=f"Device '{dev['name']}' found")
            return HealthCheckResult(name=name, passed=False, detail=f"No input device matching '{config.capture_device}'")
        default = sd.query_devices(kind="input")
        return HealthCheckResult(name=name, passed=True, detail=f"Default input: {default['name']}")
    except sd.PortAudioError as exc:
        return HealthCheckResult(name=name, passed=False, detail=f"No input devices available: {exc}")


def _check_chunking(config: VoiceSessionConfig) -> HealthCheckResult:
    name = "chunking"
    chunk_seconds = config.pcm_chunk_size / config.sample_rate
    detail = f"{config.pcm_chunk_size} samples per frame ({chunk_seconds:.2f}s), tick every {config.send_interval_ms}ms"
    tick_seconds = config.send_interval_ms / 1000
    if tick_seconds > chunk_seconds:
        return HealthCheckResult(name=name, passed=False, detail=f"{detail}; sending falls behind capture")
    return HealthCheckResult(name=name, passed=True, detail=detail)
