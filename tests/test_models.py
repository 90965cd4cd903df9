import pytest
import yaml
from pydantic import ValidationError

from kroma.errors import PreconditionViolation
from kroma.models import (
    AspectRatio,
    DEFAULT_SCENE_DESCRIPTION,
    PipelineStep,
    Project,
    Scene,
    SceneStatus,
)


def test_scene_defaults():
    scene = Scene(order=1)
    assert scene.status == SceneStatus.PENDING
    assert scene.description == DEFAULT_SCENE_DESCRIPTION
    assert scene.video_url is None and scene.error is None
    assert scene.can_generate
    assert scene.id != Scene(order=1).id


@pytest.mark.parametrize("fields", [
    {"status": "completed"},
    {"status": "completed", "video_url": "gs://a.mp4", "error": "boom"},
    {"status": "error"},
    {"status": "error", "error": "boom", "video_url": "gs://a.mp4"},
    {"status": "pending", "video_url": "gs://a.mp4"},
    {"status": "generating", "error": "stale"},
])
def test_scene_rejects_inconsistent_status_fields(fields):
    with pytest.raises(ValidationError):
        Scene(order=1, **fields)


def test_scene_order_is_one_based():
    with pytest.raises(ValidationError):
        Scene(order=0)


def test_scene_lifecycle_success():
    scene = Scene(order=1, description="A fox runs")
    generating = scene.start_generation()
    assert generating.status == SceneStatus.GENERATING
    assert not generating.can_generate

    done = generating.complete("gs://clips/fox.mp4")
    assert done.status == SceneStatus.COMPLETED
    assert done.video_url == "gs://clips/fox.mp4"
    assert done.error is None
    assert not done.can_generate
    # transitions return new scenes
    assert scene.status == SceneStatus.PENDING


def test_scene_retry_from_error_clears_message():
    failed = Scene(order=1).start_generation().fail("quota exceeded")
    assert failed.status == SceneStatus.ERROR
    assert failed.error == "quota exceeded"
    assert failed.can_generate

    retry = failed.start_generation()
    assert retry.status == SceneStatus.GENERATING
    assert retry.error is None


def test_scene_fail_without_message_gets_default():
    failed = Scene(order=1).start_generation().fail("")
    assert failed.error


def test_scene_invalid_transitions():
    pending = Scene(order=1)
    with pytest.raises(PreconditionViolation):
        pending.complete("gs://x.mp4")
    with pytest.raises(PreconditionViolation):
        pending.fail("nope")

    generating = pending.start_generation()
    with pytest.raises(PreconditionViolation):
        generating.start_generation()

    completed = generating.complete("gs://x.mp4")
    with pytest.raises(PreconditionViolation):
        completed.start_generation()


def test_project_defaults():
    project = Project(name="Short film")
    assert project.step == PipelineStep.SCRIPT
    assert project.scenes == []
    assert project.aspect_ratio == AspectRatio.LANDSCAPE
    assert project.character_image_base64 is None
    assert project.script_prompt == "" and project.character_prompt == ""


def test_project_can_enter_forward_requires_prerequisites():
    project = Project(name="p")
    assert project.can_enter(PipelineStep.SCRIPT)
    assert not project.can_enter(PipelineStep.CHARACTER)
    assert not project.can_enter(PipelineStep.PRODUCTION)

    project.scenes = [Scene(order=1)]
    assert project.can_enter(PipelineStep.CHARACTER)
    assert not project.can_enter(PipelineStep.PRODUCTION)

    project.character_image_base64 = "aW1n"
    assert project.can_enter(PipelineStep.PRODUCTION)


def test_project_can_always_go_back():
    project = Project(name="p", step=PipelineStep.PRODUCTION)
    assert project.can_enter(PipelineStep.CHARACTER)
    assert project.can_enter(PipelineStep.SCRIPT)


def test_project_scene_lookup_by_id():
    first, second = Scene(order=1), Scene(order=2)
    project = Project(name="p", scenes=[first, second])
    assert project.get_scene(second.id) is second
    assert project.get_scene("missing") is None
    assert list(project.scene_map()) == [first.id, second.id]


def test_next_step_and_aspect_toggle():
    assert Project(name="p").next_step() == PipelineStep.CHARACTER
    assert Project(name="p", step=PipelineStep.PRODUCTION).next_step() is None
    assert AspectRatio.LANDSCAPE.toggled() == AspectRatio.PORTRAIT
    assert AspectRatio.PORTRAIT.toggled() == AspectRatio.LANDSCAPE


def test_project_to_yaml_export(tmp_path):
    done = Scene(order=1, description="Desert highway").start_generation().complete("gs://b/1.mp4")
    project = Project(
        name="Road trip",
        step=PipelineStep.PRODUCTION,
        scenes=[done, Scene(order=2, description="Motel")],
        character_image_base64="aGVsbG8=",
        aspect_ratio=AspectRatio.PORTRAIT,
    )
    path = tmp_path / "exports" / "road-trip.yaml"
    project.to_yaml(path)

    data = yaml.safe_load(path.read_text())
    assert list(data)[:2] == ["id", "name"]
    assert data["step"] == "production"
    assert data["aspect_ratio"] == "9:16"
    assert data["scenes"][0]["status"] == "completed"
    assert data["scenes"][0]["video_url"] == "gs://b/1.mp4"
    assert data["scenes"][1]["status"] == "pending"
    assert "character_image_base64" not in data
