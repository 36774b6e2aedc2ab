import io
import json
import sys
import types
from urllib.error import HTTPError

import pytest
from PIL import Image

import autoalt.backends as backends
import autoalt.clip_classifier as clip_classifier
from autoalt.config import DEFAULT_CLAUDE_MODEL
from autoalt.models import ClassificationResult, ClassifierError, VehicleSubject

MDX = VehicleSubject(year="2025", make="acura", model="mdx", trim="Type S")


def _png_bytes(width: int = 64, height: int = 48) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (90, 90, 200)).save(buf, format="PNG")
    return buf.getvalue()


class FakeResponse:
    def __init__(self, body: bytes):
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def read(self):
        return self.body


def _scripted_urlopen(monkeypatch, bodies):
    """Replace urlopen with one that replays *bodies*; exceptions in the list are raised."""
    observed = {"requests": [], "sleeps": []}
    queue = list(bodies)

    def fake_urlopen(request, timeout):
        observed["requests"].append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return FakeResponse(item)

    monkeypatch.setattr(backends, "urlopen", fake_urlopen)
    monkeypatch.setattr(backends.time, "sleep", lambda seconds: observed["sleeps"].append(seconds))
    return observed


# ---------------------------------------------------------------------------
# Vocabulary mapping
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "caption,expected",
    [
        ("a close up of the steering wheel of a car", ClassificationResult("detail of steering wheel")),
        ("the interior of a car with leather seats", ClassificationResult("detail of seat stitching")),
        ("a close up of a car wheel with a red brake caliper", ClassificationResult("detail of brake caliper")),
        ("a red car parked on a city street at night", ClassificationResult("front view", "at night")),
        ("the back of a blue suv in the snow", ClassificationResult("rear view", "in the snow")),
        ("a car", ClassificationResult("front view")),
        ("a red car parked inside a showroom", ClassificationResult("front view", "in a showroom")),
        ("a car with its top down on a city street", ClassificationResult("front view", "on a city street")),
        ("a silver car parked on top of a parking lot", ClassificationResult("front view", "in a parking lot")),
        ("an aerial photo of a white suv on a highway", ClassificationResult("top view", "on the highway")),
    ],
)
def test_caption_to_result_maps_keywords(caption, expected) -> None:
    assert backends.caption_to_result(caption) == expected


def test_parse_label_answer_accepts_fenced_json_and_normalizes_case() -> None:
    raw = '```json\n{"descriptor": "Rear View", "environment": "In The Snow"}\n```'
    assert backends.parse_label_answer(raw) == ClassificationResult("rear view", "in the snow")


def test_parse_label_answer_maps_near_misses_and_clears_interior_environment() -> None:
    assert backends.parse_label_answer('{"descriptor": "a photo of the headlights"}') == ClassificationResult(
        "detail of headlight"
    )
    assert backends.parse_label_answer(
        '{"descriptor": "detail of dashboard", "environment": "at night"}'
    ) == ClassificationResult("detail of dashboard")
    assert backends.parse_label_answer("three-quarter front view") == ClassificationResult("three-quarter front view")


def test_parse_label_answer_rejects_out_of_vocabulary() -> None:
    with pytest.raises(ClassifierError, match="outside the descriptor vocabulary"):
        backends.parse_label_answer('{"descriptor": "a banana on a table"}')


def test_build_classification_prompt_lists_vocabulary_and_subject() -> None:
    prompt = backends.build_classification_prompt(MDX)

    assert "The photo shows a 2025 Acura MDX Type S." in prompt
    assert "- detail of exhaust tip" in prompt
    assert "- interior detail" in prompt
    assert "- under a blue sky" in prompt
    assert "The photo shows" not in backends.build_classification_prompt()


def test_is_retryable_error_markers() -> None:
    assert backends._is_retryable_error(RuntimeError("Captioning model loading: warming up"))
    assert backends._is_retryable_error(RuntimeError("request failed (503): busy"))
    assert backends._is_retryable_error(TimeoutError("timed out"))
    assert not backends._is_retryable_error(ValueError("bad request (400)"))


# ---------------------------------------------------------------------------
# BLIP captioning
# ---------------------------------------------------------------------------


def test_blip_retries_while_model_loads_then_maps_caption(monkeypatch) -> None:
    observed = _scripted_urlopen(
        monkeypatch,
        [
            b'{"error": "Model Salesforce/blip is currently loading", "estimated_time": 20}',
            b'[{"generated_text": "a silver car parked in a showroom"}]',
        ],
    )
    backend = backends.BlipBackend(token="hf_x", endpoint="https://hf.test/blip", backoff_seconds=0.5)

    result = backend.classify(_png_bytes())

    assert result == ClassificationResult("front view", "in a showroom")
    assert observed["sleeps"] == [0.5]
    request = observed["requests"][0]
    assert request.get_header("Authorization") == "Bearer hf_x"
    assert request.get_method() == "POST"


def test_blip_plain_text_body_is_the_caption(monkeypatch) -> None:
    body = b"a black sports car driving on the highway"
    _scripted_urlopen(monkeypatch, [body, body])
    backend = backends.BlipBackend(token="t", endpoint="https://hf.test/blip")

    assert backend.caption(b"img") == "a black sports car driving on the highway"
    assert backend.classify(b"img") == ClassificationResult("front view", "on the highway")


def test_blip_retries_http_503(monkeypatch) -> None:
    error = HTTPError("https://hf.test/blip", 503, "Service Unavailable", None, io.BytesIO(b"busy"))
    observed = _scripted_urlopen(monkeypatch, [error, b'[{"generated_text": "the rear of a car"}]'])
    backend = backends.BlipBackend(token="t", endpoint="https://hf.test/blip", backoff_seconds=1.0)

    assert backend.classify(b"img") == ClassificationResult("rear view")
    assert len(observed["requests"]) == 2


def test_blip_endpoint_error_is_not_retried(monkeypatch) -> None:
    observed = _scripted_urlopen(monkeypatch, [b'{"error": "Authorization header is invalid"}'])
    backend = backends.BlipBackend(token="bad", endpoint="https://hf.test/blip")

    with pytest.raises(ClassifierError, match="Authorization header is invalid"):
        backend.classify(b"img")
    assert len(observed["requests"]) == 1
    assert observed["sleeps"] == []


def test_blip_gives_up_after_retry_budget(monkeypatch) -> None:
    loading = b'{"error": "Model is currently loading"}'
    observed = _scripted_urlopen(monkeypatch, [loading, loading, loading])
    backend = backends.BlipBackend(token="t", endpoint="https://hf.test/blip", max_retries=2, backoff_seconds=0.25)

    with pytest.raises(ClassifierError, match=r"failed after 3 attempt\(s\)"):
        backend.classify(b"img")
    assert observed["sleeps"] == [0.25, 0.5]


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------


def _install_fake_anthropic(monkeypatch, answer: str, missing_models=()):
    observed = {"api_key": None, "calls": []}

    class FakeMessages:
        def create(self, *, model, max_tokens, messages):
            observed["calls"].append({"model": model, "max_tokens": max_tokens, "messages": messages})
            if model in missing_models:
                raise RuntimeError(
                    "Error code: 404 - {'type': 'error', 'error': {'type': 'not_found_error', 'message': 'model: "
                    + model
                    + "'}}"
                )
            text = "ok" if max_tokens == 1 else answer
            return types.SimpleNamespace(content=[types.SimpleNamespace(text=text)])

    class FakeAnthropicClient:
        def __init__(self, *, api_key):
            observed["api_key"] = api_key
            self.messages = FakeMessages()

    monkeypatch.setitem(sys.modules, "anthropic", types.SimpleNamespace(Anthropic=FakeAnthropicClient))
    monkeypatch.setattr(backends, "resolve_anthropic_api_key", lambda search_dir=None: "sk-test-key")
    return observed


def test_create_claude_backend_preflights_and_classifies(monkeypatch) -> None:
    observed = _install_fake_anthropic(
        monkeypatch, '{"descriptor": "three-quarter front view", "environment": "on a mountain road"}'
    )
    monkeypatch.setattr(backends, "resolve_claude_model", lambda cli_model=None: cli_model or "claude-test")

    backend = backends.create_backend("claude", claude_model="claude-cli")
    result = backend.classify(_png_bytes(), subject=MDX)

    assert observed["api_key"] == "sk-test-key"
    assert backend.model == "claude-cli"
    assert [call["max_tokens"] for call in observed["calls"]] == [1, 200]
    content = observed["calls"][1]["messages"][0]["content"]
    assert content[0]["source"]["media_type"] == "image/jpeg"
    assert "2025 Acura MDX Type S" in content[1]["text"]
    assert result == ClassificationResult("three-quarter front view", "on a mountain road")


def test_create_claude_backend_falls_back_when_model_missing(monkeypatch, capsys) -> None:
    observed = _install_fake_anthropic(
        monkeypatch,
        '{"descriptor": "rear view"}',
        missing_models=("claude-old-20240101", "claude-old"),
    )
    monkeypatch.setattr(backends, "resolve_claude_model", lambda cli_model=None: "claude-old-20240101")

    backend = backends.create_backend("claude")

    assert backend.model == DEFAULT_CLAUDE_MODEL
    assert [call["model"] for call in observed["calls"]] == ["claude-old-20240101", "claude-old", DEFAULT_CLAUDE_MODEL]
    assert "Claude model fallback" in capsys.readouterr().out


def test_claude_request_errors_become_classifier_errors() -> None:
    class BrokenMessages:
        def create(self, **_kwargs):
            raise RuntimeError("overloaded")

    backend = backends.ClaudeBackend(types.SimpleNamespace(messages=BrokenMessages()), model="m")

    with pytest.raises(ClassifierError, match="overloaded"):
        backend.classify(_png_bytes())


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


def _ollama_body(message: dict) -> bytes:
    return json.dumps({"model": "qwen2.5vl:7b", "message": message, "done": True}).encode("utf-8")


def test_ollama_posts_prompt_and_image_and_parses_content(monkeypatch) -> None:
    answer = json.dumps({"descriptor": "profile view", "environment": "in the desert"})
    observed = _scripted_urlopen(monkeypatch, [_ollama_body({"role": "assistant", "content": answer})])
    backend = backends.OllamaBackend(base_url="http://gpu-box:11434/", model="qwen2.5vl:7b")

    result = backend.classify(_png_bytes(), subject=MDX)

    assert result == ClassificationResult("profile view", "in the desert")
    request = observed["requests"][0]
    assert request.full_url == "http://gpu-box:11434/api/chat"
    payload = json.loads(request.data.decode("utf-8"))
    assert payload["model"] == "qwen2.5vl:7b"
    assert payload["format"] == "json"
    assert payload["stream"] is False
    assert len(payload["messages"][0]["images"]) == 1
    assert "2025 Acura MDX" in payload["messages"][0]["content"]


def test_ollama_falls_back_to_thinking_field(monkeypatch) -> None:
    answer = json.dumps({"descriptor": "detail of wheel"})
    _scripted_urlopen(monkeypatch, [_ollama_body({"role": "assistant", "content": "", "thinking": answer})])

    result = backends.OllamaBackend().classify(_png_bytes())

    assert result == ClassificationResult("detail of wheel")


def test_ollama_non_json_body_raises_without_retry(monkeypatch) -> None:
    observed = _scripted_urlopen(monkeypatch, [b"<html>proxy error</html>"])

    with pytest.raises(ClassifierError, match="non-JSON"):
        backends.OllamaBackend().classify(_png_bytes())
    assert len(observed["requests"]) == 1


def test_create_ollama_backend_checks_server(monkeypatch) -> None:
    observed = _scripted_urlopen(monkeypatch, [b'{"models": []}'])
    monkeypatch.setattr(backends, "resolve_ollama_base_url", lambda search_dir=None: "http://remote:11434")
    monkeypatch.setattr(backends, "resolve_ollama_model", lambda search_dir=None: "llava:13b")
    monkeypatch.setattr(backends, "resolve_ollama_keep_alive", lambda search_dir=None: "5m")

    backend = backends.create_backend("ollama")

    assert backend.endpoint == "http://remote:11434/api/chat"
    assert backend.model == "llava:13b"
    assert backend.keep_alive == "5m"
    assert observed["requests"][0].full_url == "http://remote:11434/api/tags"


# ---------------------------------------------------------------------------
# CLIP
# ---------------------------------------------------------------------------


def test_clip_backend_picks_best_prompt_and_neutral_environment(monkeypatch) -> None:
    calls = []

    def fake_scores(model, processor, image, prompts):
        calls.append(prompts)
        if len(calls) == 1:
            return [1.0 if p == "a close-up photo of a car grille" else 0.0 for p in prompts]
        return [1.0 if i == 0 else 0.0 for i in range(len(prompts))]

    monkeypatch.setattr(clip_classifier, "_softmax_scores", fake_scores)
    backend = clip_classifier.ClipBackend(model=object(), processor=object())

    assert backend.classify(_png_bytes()) == ClassificationResult("detail of grille")
    assert calls[1][0] == clip_classifier.NEUTRAL_ENVIRONMENT_PROMPT


def test_clip_backend_skips_environment_for_interior(monkeypatch) -> None:
    calls = []

    def fake_scores(model, processor, image, prompts):
        calls.append(prompts)
        return [1.0 if p == "a close-up photo of a car's steering wheel" else 0.0 for p in prompts]

    monkeypatch.setattr(clip_classifier, "_softmax_scores", fake_scores)
    backend = clip_classifier.ClipBackend(model=object(), processor=object())

    assert backend.classify(_png_bytes()) == ClassificationResult("detail of steering wheel")
    assert len(calls) == 1


def test_clip_backend_rejects_undecodable_bytes() -> None:
    backend = clip_classifier.ClipBackend(model=object(), processor=object())
    with pytest.raises(ClassifierError, match="could not decode"):
        backend.classify(b"not an image")


# ---------------------------------------------------------------------------
# Construction and fallback
# ---------------------------------------------------------------------------


def test_create_backend_rejects_unknown_name() -> None:
    with pytest.raises(ValueError, match="Unknown backend"):
        backends.create_backend("magic")


def test_setup_backend_falls_back_to_pixel_when_token_missing(monkeypatch, capsys) -> None:
    def missing_token(search_dir=None):
        raise RuntimeError("HF_TOKEN not found in environment or .env")

    monkeypatch.setattr(backends, "resolve_hf_token", missing_token)

    backend = backends.setup_backend("blip", interior_gate=3)

    assert isinstance(backend, backends.PixelBackend)
    assert backend.interior_gate == 3
    out = capsys.readouterr().out
    assert "blip backend unavailable" in out
    assert "HF_TOKEN" in out
    assert "Falling back to pixel heuristics" in out


def test_setup_hint_for_missing_optional_dependency() -> None:
    hint = backends._setup_hint("clip", ModuleNotFoundError("No module named 'transformers'"))
    assert "pip install -e '.[clip]'" in hint


def test_pixel_backend_never_raises() -> None:
    assert backends.PixelBackend().classify(b"junk") == ClassificationResult("front view")
