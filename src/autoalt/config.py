"""Environment and .env resolution for backend credentials and tuning knobs."""

import os
from pathlib import Path
from typing import Optional

DEFAULT_HF_ENDPOINT = (
    "https://api-inference.huggingface.co/models/Salesforce/blip-image-captioning-large"
)
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-6"
DEFAULT_OLLAMA_MODEL = "qwen2.5vl:7b"
DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
DEFAULT_DEDUP_THRESHOLD = 6  # bits out of 64; lower = stricter
DEFAULT_INTERIOR_GATE = 2  # interior votes needed out of 4

HF_ENDPOINT_ENV_VAR = "AUTOALT_HF_ENDPOINT"
OLLAMA_BASE_URL_ENV_VAR = "AUTOALT_OLLAMA_BASE_URL"
OLLAMA_MODEL_ENV_VAR = "AUTOALT_OLLAMA_MODEL"
OLLAMA_KEEP_ALIVE_ENV_VAR = "AUTOALT_OLLAMA_KEEP_ALIVE"
TIMEOUT_ENV_VAR = "AUTOALT_TIMEOUT_SEC"
MAX_EDGE_ENV_VAR = "AUTOALT_MAX_IMAGE_EDGE"
JPEG_QUALITY_ENV_VAR = "AUTOALT_JPEG_QUALITY"
MAX_RETRIES_ENV_VAR = "AUTOALT_MAX_RETRIES"
BACKOFF_BASE_ENV_VAR = "AUTOALT_RETRY_BACKOFF_SEC"
CONCURRENCY_ENV_VAR = "AUTOALT_CONCURRENCY"
DEDUP_THRESHOLD_ENV_VAR = "AUTOALT_DEDUP_THRESHOLD"
INTERIOR_GATE_ENV_VAR = "AUTOALT_INTERIOR_GATE"


def _read_env_file(env_path: Path) -> dict[str, str]:
    """Parse a simple .env file into key/value pairs."""
    values: dict[str, str] = {}
    try:
        content = env_path.read_text(encoding="utf-8")
    except OSError:
        return values

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        values[key] = value

    return values


def _env_file_candidates(search_dir: Optional[Path] = None) -> list[Path]:
    candidates = [Path.cwd() / ".env"]
    if search_dir is not None:
        candidates.append(search_dir / ".env")

    unique: list[Path] = []
    seen: set[Path] = set()
    for env_file in candidates:
        resolved = env_file.resolve()
        if resolved in seen or not env_file.exists():
            continue
        seen.add(resolved)
        unique.append(env_file)
    return unique


def _resolve_env_string(
    var_names: tuple[str, ...], search_dir: Optional[Path] = None, secret: bool = False
) -> Optional[str]:
    """Resolve the first of *var_names* from the environment, then from .env files."""
    for var_name in var_names:
        env_value = (os.environ.get(var_name) or "").strip()
        if env_value:
            return env_value

    for env_file in _env_file_candidates(search_dir):
        values = _read_env_file(env_file)
        for var_name in var_names:
            value = (values.get(var_name) or "").strip()
            if value:
                os.environ.setdefault(var_name, value)
                marker = "🔐" if secret else "📝"
                print(f"  {marker} Loaded {var_name} from {env_file}")
                return value
    return None


def _resolve_env_int(var_name: str, default: int) -> int:
    raw = (os.environ.get(var_name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _resolve_env_float(var_name: str, default: float) -> float:
    raw = (os.environ.get(var_name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def resolve_hf_token(search_dir: Optional[Path] = None) -> str:
    """Resolve the Hugging Face token required by the BLIP captioning backend."""
    token = _resolve_env_string(("HF_TOKEN", "HUGGINGFACE_HUB_TOKEN"), search_dir, secret=True)
    if not token:
        raise RuntimeError(
            "HF_TOKEN not found. Set it in the environment or add it to a .env file."
        )
    os.environ.setdefault("HF_TOKEN", token)
    os.environ.setdefault("HUGGINGFACE_HUB_TOKEN", token)
    return token


def resolve_anthropic_api_key(search_dir: Optional[Path] = None) -> str:
    """
    Resolve ANTHROPIC_API_KEY from environment first, then .env files.
    Checks current working directory and, if provided, search_dir.
    """
    key = _resolve_env_string(("ANTHROPIC_API_KEY",), search_dir, secret=True)
    if not key:
        raise RuntimeError(
            "ANTHROPIC_API_KEY not found. Set it in the environment or add it to a .env file."
        )
    return key


def resolve_claude_model(cli_model: Optional[str] = None) -> str:
    """Resolve Claude model from CLI override, env, or default."""
    if cli_model:
        return cli_model
    return (
        os.environ.get("ANTHROPIC_MODEL") or os.environ.get("CLAUDE_MODEL") or DEFAULT_CLAUDE_MODEL
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


def resolve_hf_endpoint(search_dir: Optional[Path] = None) -> str:
    return _resolve_env_string((HF_ENDPOINT_ENV_VAR,), search_dir) or DEFAULT_HF_ENDPOINT


def resolve_ollama_base_url(search_dir: Optional[Path] = None) -> str:
    """Resolve Ollama base URL from env or fallback default."""
    return _resolve_env_string((OLLAMA_BASE_URL_ENV_VAR,), search_dir) or DEFAULT_OLLAMA_BASE_URL


def resolve_ollama_model(search_dir: Optional[Path] = None) -> str:
    """Resolve Ollama model from env or fallback default."""
    return _resolve_env_string((OLLAMA_MODEL_ENV_VAR,), search_dir) or DEFAULT_OLLAMA_MODEL


def resolve_ollama_keep_alive(search_dir: Optional[Path] = None) -> str:
    """Resolve Ollama keep_alive duration to keep model warm between requests."""
    return _resolve_env_string((OLLAMA_KEEP_ALIVE_ENV_VAR,), search_dir) or "10m"


# ---------------------------------------------------------------------------
# Tuning
# ---------------------------------------------------------------------------


def resolve_timeout_seconds() -> int:
    """Resolve request timeout for remote classifier calls."""
    return min(600, max(30, _resolve_env_int(TIMEOUT_ENV_VAR, 120)))


def resolve_max_image_edge() -> int:
    """Resolve max edge for image payloads sent to vision models."""
    return min(4096, max(256, _resolve_env_int(MAX_EDGE_ENV_VAR, 1024)))


def resolve_jpeg_quality() -> int:
    """Resolve JPEG quality used for vision model payload encoding."""
    return min(95, max(30, _resolve_env_int(JPEG_QUALITY_ENV_VAR, 80)))


def resolve_max_retries() -> int:
    """Resolve max retry attempts per remote request."""
    return min(8, max(0, _resolve_env_int(MAX_RETRIES_ENV_VAR, 2)))


def resolve_retry_backoff_seconds() -> float:
    """Resolve base exponential backoff between retries."""
    return min(10.0, max(0.05, _resolve_env_float(BACKOFF_BASE_ENV_VAR, 0.75)))


def resolve_concurrency() -> int:
    """Resolve worker thread count for hashing and classification."""
    return min(16, max(1, _resolve_env_int(CONCURRENCY_ENV_VAR, 2)))


def resolve_dedup_threshold() -> int:
    """Resolve the Hamming distance at or below which two fingerprints are duplicates."""
    return min(32, max(0, _resolve_env_int(DEDUP_THRESHOLD_ENV_VAR, DEFAULT_DEDUP_THRESHOLD)))


def resolve_interior_gate() -> int:
    """Resolve how many of the four interior votes are needed to call a shot interior."""
    return min(4, max(1, _resolve_env_int(INTERIOR_GATE_ENV_VAR, DEFAULT_INTERIOR_GATE)))
