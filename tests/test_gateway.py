import asyncio

import pytest

from kroma.errors import GenerationFailure, PreconditionViolation
from kroma.gateway import StudioGateway
from kroma.models import AspectRatio
from kroma.services import GenerationResult, GenerationStatus, ImageResult


class FakeAgent:
    def __init__(self, scenes=None, error=None):
        self.scenes = scenes or []
        self.error = error
        self.inputs = []

    def run(self, input_data):
        self.inputs.append(input_data)
        if self.error:
            raise self.error
        return self.scenes


class FakeImagen:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def generate_image(self, prompt, aspect_ratio="1:1", negative_prompt=None, output_path=None):
        self.calls.append((prompt, aspect_ratio))
        return self.result


class FakeVeo:
    def __init__(self, status=GenerationStatus.COMPLETED, error_message=None, download=True):
        self.status = status
        self.error_message = error_message
        self.download = download
        self.calls = []

    def generate_clip(self, prompt, aspect_ratio, reference_image_base64=None, output_path=None):
        self.calls.append((prompt, aspect_ratio, reference_image_base64, output_path))
        result = GenerationResult(operation_id="op-1", status=self.status)
        result.error_message = self.error_message
        if self.status == GenerationStatus.COMPLETED:
            result.output_uri = "gs://bucket/op-1/sample_0.mp4"
            if self.download:
                result.local_path = output_path
        return result


def test_breakdown_script_runs_agent():
    agent = FakeAgent(scenes=["A", "B"])
    gateway = StudioGateway(script_agent=agent)
    assert asyncio.run(gateway.breakdown_script("  heist movie ")) == ["A", "B"]
    assert agent.inputs[0].concept == "heist movie"


def test_breakdown_script_failure_is_converted():
    gateway = StudioGateway(script_agent=FakeAgent(error=ValueError("Response contained no scene descriptions")))
    with pytest.raises(GenerationFailure) as exc_info:
        asyncio.run(gateway.breakdown_script("heist"))
    assert exc_info.value.kind == "script"
    assert "no scene descriptions" in exc_info.value.message


def test_blank_prompt_is_a_precondition_violation():
    gateway = StudioGateway(script_agent=FakeAgent(scenes=["A"]))
    with pytest.raises(PreconditionViolation):
        asyncio.run(gateway.breakdown_script("   "))
    with pytest.raises(PreconditionViolation):
        asyncio.run(gateway.synthesize_character(""))


def test_synthesize_character_returns_base64():
    imagen = FakeImagen(ImageResult(prompt="pilot", image_base64="aW1n"))
    gateway = StudioGateway(imagen=imagen)
    assert asyncio.run(gateway.synthesize_character("pilot")) == "aW1n"
    assert imagen.calls == [("pilot", "1:1")]


def test_synthesize_character_failure():
    imagen = FakeImagen(ImageResult(prompt="pilot", error_message="Prompt blocked by safety filter"))
    gateway = StudioGateway(imagen=imagen)
    with pytest.raises(GenerationFailure, match="safety filter") as exc_info:
        asyncio.run(gateway.synthesize_character("pilot"))
    assert exc_info.value.kind == "character"


def test_synthesize_video_downloads_into_clips_dir(tmp_path):
    veo = FakeVeo()
    gateway = StudioGateway(veo=veo, clips_dir=tmp_path)

    clip = asyncio.run(gateway.synthesize_video("Desert road", "aW1n", AspectRatio.PORTRAIT))

    prompt, ratio, reference, output_path = veo.calls[0]
    assert (prompt, ratio, reference) == ("Desert road", "9:16", "aW1n")
    assert output_path.parent == tmp_path
    assert output_path.name.startswith("clip-") and output_path.suffix == ".mp4"
    assert clip == str(output_path)


def test_synthesize_video_without_download_returns_uri(tmp_path):
    gateway = StudioGateway(veo=FakeVeo(download=False), clips_dir=tmp_path)
    assert asyncio.run(gateway.synthesize_video("Desert road", None, "16:9")) == "gs://bucket/op-1/sample_0.mp4"


def test_synthesize_video_failure(tmp_path):
    veo = FakeVeo(status=GenerationStatus.FAILED, error_message="Quota exceeded")
    gateway = StudioGateway(veo=veo, clips_dir=tmp_path)
    with pytest.raises(GenerationFailure, match="Quota exceeded") as exc_info:
        asyncio.run(gateway.synthesize_video("Desert road", None, AspectRatio.LANDSCAPE))
    assert exc_info.value.kind == "video"


def test_missing_video_backend_config_is_a_generation_failure(monkeypatch, tmp_path):
    from kroma import gateway as gateway_module

    def unconfigured():
        raise ValueError("GOOGLE_CLOUD_PROJECT not set")

    monkeypatch.setattr(gateway_module, "VeoClient", unconfigured)
    gateway = StudioGateway(clips_dir=tmp_path)
    with pytest.raises(GenerationFailure, match="GOOGLE_CLOUD_PROJECT"):
        asyncio.run(gateway.synthesize_video("Desert road", None, AspectRatio.LANDSCAPE))
