"""
Classifier backends behind one interface.

Every backend exposes ``classify(image_bytes, filename=None, subject=None)`` and
returns a ClassificationResult from the closed vocabulary. Remote backends raise
ClassifierError once their retry budget is spent or the answer cannot be mapped.
"""

import base64
import io
import json
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from PIL import Image

from autoalt.classifier import classify_pixels
from autoalt.compose import subject_phrase
from autoalt.config import (
    DEFAULT_CLAUDE_MODEL,
    DEFAULT_INTERIOR_GATE,
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_OLLAMA_MODEL,
    resolve_anthropic_api_key,
    resolve_claude_model,
    resolve_hf_endpoint,
    resolve_hf_token,
    resolve_jpeg_quality,
    resolve_max_image_edge,
    resolve_max_retries,
    resolve_ollama_base_url,
    resolve_ollama_keep_alive,
    resolve_ollama_model,
    resolve_retry_backoff_seconds,
    resolve_timeout_seconds,
)
from autoalt.models import ClassificationResult, ClassifierError, VehicleSubject
from autoalt.vocabulary import (
    DEFAULT_DESCRIPTOR,
    DESCRIPTORS,
    ENVIRONMENTS,
    EXTERIOR_DESCRIPTORS,
    EXTERIOR_DETAILS,
    EXTERIOR_VIEWS,
    GENERIC_INTERIOR,
    INTERIOR_DESCRIPTORS,
    descriptor_from_text,
    environment_from_text,
    is_interior_descriptor,
    is_interior_text,
)

BACKEND_NAMES = ("pixel", "blip", "claude", "ollama", "clip")
MAX_CAPTION_CHARS = 280


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _is_retryable_error(error: Exception) -> bool:
    text = str(error).lower()
    retryable_markers = [
        "loading",
        "timed out",
        "timeout",
        "connection failed",
        "connection reset",
        "temporarily unavailable",
        "empty caption",
        "429",
        "500",
        "502",
        "503",
        "504",
    ]
    return any(marker in text for marker in retryable_markers)


def _call_with_retry(
    call: Callable[[], object], label: str, max_retries: int, backoff_seconds: float
):
    """Run *call*, retrying transient failures with exponential backoff."""
    last_error = None
    attempts = 0
    for attempt in range(max_retries + 1):
        attempts = attempt + 1
        try:
            return call()
        except ClassifierError:
            raise
        except Exception as e:
            last_error = e
            if attempt >= max_retries or not _is_retryable_error(e):
                break
            time.sleep(backoff_seconds * (2**attempt))
    raise ClassifierError(f"{label} failed after {attempts} attempt(s): {last_error}") from last_error


def _encode_image_jpeg(data: bytes, *, max_edge: int, jpeg_quality: int) -> tuple[str, str]:
    """Base64 JPEG payload with a bounded longest edge; raw bytes when undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            rgb = img.convert("RGB")
            w, h = rgb.size
            longest = max(w, h)
            if longest > max_edge:
                scale = max_edge / float(longest)
                new_size = (max(1, int(w * scale)), max(1, int(h * scale)))
                rgb = rgb.resize(new_size, Image.Resampling.LANCZOS)
            buf = io.BytesIO()
            rgb.save(buf, format="JPEG", quality=jpeg_quality, optimize=True)
            return base64.standard_b64encode(buf.getvalue()).decode("utf-8"), "image/jpeg"
    except Exception:
        return base64.standard_b64encode(data).decode("utf-8"), "image/jpeg"


def _extract_json_payload(raw_text: str) -> str:
    """Extract JSON body from a model response that may include code fences."""
    raw = raw_text.strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
    start = raw.find("{")
    end = raw.rfind("}")
    if start != -1 and end != -1 and end > start:
        return raw[start : end + 1]
    return raw


def caption_to_result(caption: str) -> ClassificationResult:
    """
    Map a free-text caption onto the closed vocabulary.

    Interior cues win first (specific interior detail or the generic interior
    label); otherwise exterior part keywords, then angle keywords, then the
    default view. Environment keywords only apply to exterior shots.
    """
    if is_interior_text(caption):
        descriptor = descriptor_from_text(caption, allowed=INTERIOR_DESCRIPTORS) or GENERIC_INTERIOR
        return ClassificationResult(descriptor)
    descriptor = descriptor_from_text(caption, allowed=EXTERIOR_DESCRIPTORS) or DEFAULT_DESCRIPTOR
    return ClassificationResult(descriptor, environment_from_text(caption))


def parse_label_answer(raw_text: str) -> ClassificationResult:
    """Validate a ``{"descriptor": ..., "environment": ...}`` answer from a vision model."""
    try:
        data = json.loads(_extract_json_payload(raw_text))
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        descriptor = str(data.get("descriptor") or "").strip().lower()
        environment = str(data.get("environment") or "").strip().lower()
    else:
        descriptor, environment = raw_text.strip().lower(), ""

    if descriptor not in DESCRIPTORS:
        mapped = descriptor_from_text(descriptor)
        if mapped is None:
            raise ClassifierError(f"Answer outside the descriptor vocabulary: {raw_text[:200]!r}")
        descriptor = mapped

    if environment not in ENVIRONMENTS:
        environment = environment_from_text(environment)
    if is_interior_descriptor(descriptor):
        environment = ""
    return ClassificationResult(descriptor, environment)


def build_classification_prompt(subject: Optional[VehicleSubject] = None) -> str:
    """Closed-vocabulary prompt shared by the vision LLM backends."""
    vehicle = subject_phrase(subject) if subject is not None else ""
    context = f"The photo shows a {vehicle}.\n\n" if vehicle else ""
    views = "\n".join(f"- {label}" for label in EXTERIOR_VIEWS)
    details = "\n".join(f"- {label}" for label in EXTERIOR_DETAILS)
    interior = "\n".join(f"- {label}" for label in INTERIOR_DESCRIPTORS)
    environments = "\n".join(f"- {label}" for label in sorted(ENVIRONMENTS))
    return (
        "You label vehicle photos for a dealership website.\n"
        f"{context}"
        "Pick exactly ONE descriptor for what the photo shows.\n\n"
        f"Exterior views:\n{views}\n\n"
        f"Exterior details:\n{details}\n\n"
        f"Interior:\n{interior}\n\n"
        "If the background is clearly one of these settings, also pick ONE environment, "
        "otherwise use an empty string:\n"
        f"{environments}\n\n"
        "Return ONLY valid JSON, no markdown:\n"
        '{"descriptor": "<descriptor>", "environment": "<environment or empty>"}'
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class PixelBackend:
    """Local pixel heuristics; never raises."""

    name = "pixel"

    def __init__(self, interior_gate: int = DEFAULT_INTERIOR_GATE):
        self.interior_gate = interior_gate

    def classify(
        self, image_bytes: bytes, filename: Optional[str] = None, subject: Optional[VehicleSubject] = None
    ) -> ClassificationResult:
        return classify_pixels(image_bytes, filename=filename, interior_gate=self.interior_gate)


class BlipBackend:
    """Hugging Face inference API captioning, mapped to the vocabulary by keywords."""

    name = "blip"

    def __init__(
        self,
        token: str,
        endpoint: str,
        timeout_seconds: int = 120,
        max_retries: int = 2,
        backoff_seconds: float = 0.75,
    ):
        self.token = token
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def _request_caption(self, image_bytes: bytes) -> str:
        request = Request(
            self.endpoint,
            data=image_bytes,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/octet-stream",
                "Accept": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                body = response.read().decode("utf-8", errors="replace")
        except HTTPError as error:
            details = ""
            try:
                details = error.read().decode("utf-8", errors="ignore")
            except Exception:
                details = ""
            raise RuntimeError(f"Captioning request failed ({error.code}): {details[:300]}") from error
        except URLError as error:
            raise RuntimeError(f"Captioning connection failed for {self.endpoint}: {error}") from error

        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            # Plain-text answers are taken as the caption itself.
            if body.strip():
                return body.strip()[:MAX_CAPTION_CHARS]
            raise RuntimeError("Empty caption from captioning endpoint")

        if isinstance(parsed, dict) and parsed.get("error"):
            message = str(parsed["error"])
            if "loading" in message.lower():
                raise RuntimeError(f"Captioning model loading: {message}")
            raise ClassifierError(f"Captioning endpoint error: {message}")
        if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
            text = str(parsed[0].get("generated_text") or "").strip()
            if text:
                return text
        raise RuntimeError(f"Empty caption from captioning endpoint: {body[:120]}")

    def caption(self, image_bytes: bytes) -> str:
        return _call_with_retry(
            lambda: self._request_caption(image_bytes),
            "Captioning",
            self.max_retries,
            self.backoff_seconds,
        )

    def classify(
        self, image_bytes: bytes, filename: Optional[str] = None, subject: Optional[VehicleSubject] = None
    ) -> ClassificationResult:
        return caption_to_result(self.caption(image_bytes))


class ClaudeBackend:
    """Anthropic messages API with a closed-vocabulary JSON prompt."""

    name = "claude"

    def __init__(self, client, model: str = DEFAULT_CLAUDE_MODEL, max_image_edge: int = 1024, jpeg_quality: int = 80):
        self.client = client
        self.model = model
        self.max_image_edge = max_image_edge
        self.jpeg_quality = jpeg_quality

    def classify(
        self, image_bytes: bytes, filename: Optional[str] = None, subject: Optional[VehicleSubject] = None
    ) -> ClassificationResult:
        image_data, media_type = _encode_image_jpeg(
            image_bytes, max_edge=self.max_image_edge, jpeg_quality=self.jpeg_quality
        )
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=200,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {"type": "base64", "media_type": media_type, "data": image_data},
                            },
                            {"type": "text", "text": build_classification_prompt(subject)},
                        ],
                    }
                ],
            )
            raw = response.content[0].text.strip()
        except Exception as e:
            raise ClassifierError(f"Claude request failed: {e}") from e
        return parse_label_answer(raw)


class OllamaBackend:
    """Self-hosted vision model through Ollama's /api/chat."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        model: str = DEFAULT_OLLAMA_MODEL,
        keep_alive: str = "10m",
        timeout_seconds: int = 120,
        max_image_edge: int = 1024,
        jpeg_quality: int = 80,
        max_retries: int = 2,
        backoff_seconds: float = 0.75,
    ):
        self.base_url = base_url
        self.model = model
        self.keep_alive = keep_alive
        self.timeout_seconds = timeout_seconds
        self.max_image_edge = max_image_edge
        self.jpeg_quality = jpeg_quality
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/chat"

    def _request_answer(self, image_data: str, prompt: str) -> str:
        payload = {
            "model": self.model,
            "stream": False,
            "think": False,
            "format": "json",
            "keep_alive": self.keep_alive,
            "options": {"temperature": 0, "num_predict": 120},
            "messages": [{"role": "user", "content": prompt, "images": [image_data]}],
        }
        request = Request(
            self.endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except HTTPError as error:
            details = ""
            try:
                details = error.read().decode("utf-8", errors="ignore")
            except Exception:
                details = ""
            raise RuntimeError(
                f"Ollama request failed ({error.code}) at {self.endpoint}: {details[:300]}"
            ) from error
        except URLError as error:
            raise RuntimeError(f"Ollama connection failed for {self.endpoint}: {error}") from error

        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as error:
            raise ClassifierError(f"Ollama returned non-JSON body: {body[:300]}") from error
        message = parsed.get("message") if isinstance(parsed, dict) else None
        if not isinstance(message, dict):
            raise ClassifierError(f"Ollama response did not include message object: {body[:300]}")
        content = str(message.get("content") or "").strip() or str(message.get("thinking") or "").strip()
        if not content:
            raise ClassifierError(f"Ollama response had empty message content: {body[:300]}")
        return content

    def classify(
        self, image_bytes: bytes, filename: Optional[str] = None, subject: Optional[VehicleSubject] = None
    ) -> ClassificationResult:
        image_data, _ = _encode_image_jpeg(
            image_bytes, max_edge=self.max_image_edge, jpeg_quality=self.jpeg_quality
        )
        prompt = build_classification_prompt(subject)
        raw = _call_with_retry(
            lambda: self._request_answer(image_data, prompt),
            "Ollama classification",
            self.max_retries,
            self.backoff_seconds,
        )
        return parse_label_answer(raw)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _is_model_not_found_error(error: Exception) -> bool:
    text = str(error).lower()
    return "not_found_error" in text and "model" in text


def _claude_model_candidates(preferred: str) -> list[str]:
    """Build a small ordered set of Claude model candidates."""
    candidates = [preferred]

    # If using a dated snapshot (e.g. *-20250514), also try the non-dated alias.
    parts = preferred.rsplit("-", 1)
    if len(parts) == 2 and parts[1].isdigit() and len(parts[1]) == 8:
        candidates.append(parts[0])
    candidates.append(DEFAULT_CLAUDE_MODEL)

    unique: list[str] = []
    seen: set[str] = set()
    for model in candidates:
        if model and model not in seen:
            seen.add(model)
            unique.append(model)
    return unique


def _create_claude_backend(env_search_dir: Optional[Path], claude_model: Optional[str]) -> ClaudeBackend:
    api_key = resolve_anthropic_api_key(search_dir=env_search_dir)
    import anthropic

    client = anthropic.Anthropic(api_key=api_key)
    preferred_model = resolve_claude_model(cli_model=claude_model)
    last_error = None
    for candidate in _claude_model_candidates(preferred_model):
        try:
            # Preflight once to avoid repeated 404s per image.
            client.messages.create(
                model=candidate,
                max_tokens=1,
                messages=[{"role": "user", "content": "ok"}],
            )
        except Exception as e:
            last_error = e
            if _is_model_not_found_error(e):
                continue
            raise
        if candidate != preferred_model:
            print(f"  ↪ Claude model fallback: {preferred_model} -> {candidate}")
        return ClaudeBackend(
            client,
            model=candidate,
            max_image_edge=resolve_max_image_edge(),
            jpeg_quality=resolve_jpeg_quality(),
        )
    raise RuntimeError(
        f"No available Claude model found. Tried: {', '.join(_claude_model_candidates(preferred_model))}. "
        f"Last error: {last_error}"
    )


def _create_ollama_backend(env_search_dir: Optional[Path]) -> OllamaBackend:
    backend = OllamaBackend(
        base_url=resolve_ollama_base_url(search_dir=env_search_dir),
        model=resolve_ollama_model(search_dir=env_search_dir),
        keep_alive=resolve_ollama_keep_alive(search_dir=env_search_dir),
        timeout_seconds=resolve_timeout_seconds(),
        max_image_edge=resolve_max_image_edge(),
        jpeg_quality=resolve_jpeg_quality(),
        max_retries=resolve_max_retries(),
        backoff_seconds=resolve_retry_backoff_seconds(),
    )
    request = Request(
        f"{backend.base_url.rstrip('/')}/api/tags",
        headers={"Accept": "application/json"},
        method="GET",
    )
    with urlopen(request, timeout=min(60, backend.timeout_seconds)):
        pass
    return backend


def create_backend(
    name: str,
    env_search_dir: Optional[Path] = None,
    claude_model: Optional[str] = None,
    interior_gate: int = DEFAULT_INTERIOR_GATE,
):
    """Build the named backend. Raises RuntimeError (or ImportError) when it cannot be set up."""
    if name == "pixel":
        return PixelBackend(interior_gate=interior_gate)
    if name == "blip":
        return BlipBackend(
            token=resolve_hf_token(search_dir=env_search_dir),
            endpoint=resolve_hf_endpoint(search_dir=env_search_dir),
            timeout_seconds=resolve_timeout_seconds(),
            max_retries=resolve_max_retries(),
            backoff_seconds=resolve_retry_backoff_seconds(),
        )
    if name == "claude":
        return _create_claude_backend(env_search_dir, claude_model)
    if name == "ollama":
        return _create_ollama_backend(env_search_dir)
    if name == "clip":
        from autoalt.clip_classifier import ClipBackend

        return ClipBackend.load()
    raise ValueError(f"Unknown backend {name!r}; choose from {', '.join(BACKEND_NAMES)}")


def _setup_hint(name: str, error: Exception) -> str:
    """Return a practical setup hint for common backend initialization failures."""
    text = str(error).lower()
    if "no module named" in text or isinstance(error, ImportError):
        extra = "claude" if name == "claude" else "clip"
        return (
            "Install the optional dependency in your active environment:\n"
            f"  python -m pip install -e '.[{extra}]'"
        )
    if name == "blip":
        return "Set HF_TOKEN in your environment or .env (a free Hugging Face read token works)."
    if name == "claude":
        if _is_model_not_found_error(error):
            return (
                "Claude model not found for your account.\n"
                f"Try: --claude-model {DEFAULT_CLAUDE_MODEL}\n"
                "or set ANTHROPIC_MODEL in your environment/.env."
            )
        return "Verify ANTHROPIC_API_KEY in your environment/.env."
    if name == "ollama":
        return (
            "Verify AUTOALT_OLLAMA_BASE_URL points to a running Ollama server,\n"
            "and that AUTOALT_OLLAMA_MODEL is already pulled on that server (for example: qwen2.5vl:7b)."
        )
    if name == "clip":
        return (
            "CLIP model download or initialization failed. Ensure internet access for the first run\n"
            "and compatible versions of torch/transformers."
        )
    return "Check the backend configuration."


def setup_backend(
    name: str,
    env_search_dir: Optional[Path] = None,
    claude_model: Optional[str] = None,
    interior_gate: int = DEFAULT_INTERIOR_GATE,
):
    """Build the named backend, falling back to pixel heuristics when setup fails."""
    if name == "pixel":
        return PixelBackend(interior_gate=interior_gate)
    try:
        return create_backend(name, env_search_dir, claude_model=claude_model, interior_gate=interior_gate)
    except Exception as e:
        print(f"  ⚠ {name} backend unavailable: {e}")
        print(f"  💡 {_setup_hint(name, e)}")
        print("  ↪ Falling back to pixel heuristics for this run.")
        return PixelBackend(interior_gate=interior_gate)
