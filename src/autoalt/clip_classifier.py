"""CLIP zero-shot classification over the descriptor vocabulary."""

import io
from typing import Optional

from PIL import Image

from autoalt.models import ClassificationResult, ClassifierError, VehicleSubject
from autoalt.vocabulary import (
    ENVIRONMENTS,
    EXTERIOR_DESCRIPTORS,
    INTERIOR_DESCRIPTORS,
    is_interior_descriptor,
)

CLIP_MODEL_ID = "openai/clip-vit-large-patch14"
NEUTRAL_ENVIRONMENT_PROMPT = "a photo of a car"


def load_clip_model():
    """Load CLIP model (cached by transformers/hub after first call)."""
    from transformers import CLIPModel, CLIPProcessor

    model = CLIPModel.from_pretrained(CLIP_MODEL_ID)
    processor = CLIPProcessor.from_pretrained(CLIP_MODEL_ID)
    return model, processor


def descriptor_prompt(descriptor: str) -> str:
    if is_interior_descriptor(descriptor):
        if descriptor.startswith("detail of "):
            return f"a close-up photo of a car's {descriptor[len('detail of '):]}"
        return "a photo of a car interior"
    if descriptor.startswith("detail of "):
        return f"a close-up photo of a car {descriptor[len('detail of '):]}"
    return f"a {descriptor} photo of a car"


def _softmax_scores(model, processor, image: Image.Image, prompts: list[str]) -> list[float]:
    import torch

    inputs = processor(text=prompts, images=image, return_tensors="pt", padding=True)
    with torch.no_grad():
        outputs = model(**inputs)
    return [float(p) for p in outputs.logits_per_image.softmax(dim=1).numpy()[0]]


class ClipBackend:
    """Local zero-shot labels; the environment is kept only when it beats a neutral prompt."""

    name = "clip"

    def __init__(self, model, processor):
        self.model = model
        self.processor = processor
        self.descriptors = list(EXTERIOR_DESCRIPTORS + INTERIOR_DESCRIPTORS)
        self.environments = sorted(ENVIRONMENTS)

    @classmethod
    def load(cls) -> "ClipBackend":
        print("  Loading CLIP model (first run downloads ~1.7GB)...")
        model, processor = load_clip_model()
        return cls(model, processor)

    def classify(
        self, image_bytes: bytes, filename: Optional[str] = None, subject: Optional[VehicleSubject] = None
    ) -> ClassificationResult:
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                image = img.convert("RGB")
        except Exception as e:
            raise ClassifierError(f"CLIP could not decode image: {e}") from e

        scores = _softmax_scores(
            self.model, self.processor, image, [descriptor_prompt(d) for d in self.descriptors]
        )
        best = max(range(len(scores)), key=lambda i: scores[i])
        descriptor = self.descriptors[best]
        if is_interior_descriptor(descriptor):
            return ClassificationResult(descriptor)

        env_prompts = [NEUTRAL_ENVIRONMENT_PROMPT] + [f"a photo of a car {env}" for env in self.environments]
        env_scores = _softmax_scores(self.model, self.processor, image, env_prompts)
        best_env = max(range(len(env_scores)), key=lambda i: env_scores[i])
        environment = self.environments[best_env - 1] if best_env > 0 else ""
        return ClassificationResult(descriptor, environment)
