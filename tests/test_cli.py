import asyncio
import base64

import pytest
import yaml
from typer.testing import CliRunner

from conftest import CHARACTER_PNG, FakeGateway
from kroma import cli
from kroma.config import config
from kroma.ledger import SqliteCreditLedger
from kroma.models import INTERRUPTED_MESSAGE, PipelineStep, SceneStatus
from kroma.store import SqliteProjectStore

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "workspace", tmp_path)
    monkeypatch.setattr(config, "user_id", "tester")
    monkeypatch.setattr(config, "starting_credits", 1000)
    monkeypatch.setattr(config, "cost_script", 10)
    monkeypatch.setattr(config, "cost_character", 25)
    monkeypatch.setattr(config, "cost_video", 150)
    monkeypatch.setattr(config, "max_parallel", 3)
    monkeypatch.setattr(config, "generation_timeout", 0.0)
    monkeypatch.setattr(cli, "StudioGateway", FakeGateway)
    return tmp_path


def invoke(*args):
    return runner.invoke(cli.app, list(args))


def only_project(workspace):
    projects = SqliteProjectStore(workspace / "kroma.db").list()
    assert len(projects) == 1
    return projects[0]


def test_new_and_list(workspace):
    result = invoke("new", "Noir Short")
    assert result.exit_code == 0
    assert "Created project Noir Short" in result.stdout

    result = invoke("projects")
    assert result.exit_code == 0
    assert "Noir Short" in result.stdout
    assert "[script]" in result.stdout


def test_new_rejects_blank_name(workspace):
    result = invoke("new", "   ")
    assert result.exit_code == 1
    assert "No projects yet" in invoke("projects").stdout


def test_unknown_project(workspace):
    result = invoke("status", "deadbeef")
    assert result.exit_code == 1
    assert "No project" in result.stdout


def test_credits_and_top_up(workspace):
    result = invoke("credits")
    assert "tester: 1000 credits" in result.stdout

    result = invoke("top-up", "creator")
    assert result.exit_code == 0
    assert "Balance: 1500" in result.stdout
    ledger = SqliteCreditLedger(workspace / "kroma.db")
    assert asyncio.run(ledger.read("tester")) == 1500

    result = invoke("top-up", "enterprise")
    assert result.exit_code == 1
    assert "Unknown pricing tier" in result.stdout


def test_user_option_selects_balance(workspace):
    invoke("--user", "alice", "top-up", "director")
    assert "alice: 2500 credits" in invoke("-u", "alice", "credits").stdout
    assert "tester: 1000 credits" in invoke("credits").stdout


def test_full_pipeline(workspace):
    invoke("new", "Fox")
    ref = only_project(workspace).id[:8]

    result = invoke("script", ref, "--prompt", "A fox outwits a hunter")
    assert result.exit_code == 0, result.stdout
    assert "Opening shot" in result.stdout

    assert invoke("advance", ref).exit_code == 0
    assert invoke("advance", ref).exit_code == 1

    image_path = workspace / "out" / "character.png"
    result = invoke("character", ref, "--prompt", "A red fox", "--save", str(image_path))
    assert result.exit_code == 0, result.stdout
    assert image_path.read_bytes() == base64.b64decode(CHARACTER_PNG)

    assert invoke("advance", ref).exit_code == 0
    assert invoke("aspect", ref).stdout.strip().endswith("9:16")

    result = invoke("produce", ref)
    assert result.exit_code == 0, result.stdout
    assert "Generated: 3" in result.stdout

    project = only_project(workspace)
    assert project.step == PipelineStep.PRODUCTION
    assert all(s.status == SceneStatus.COMPLETED for s in project.scenes)
    assert project.scenes[0].video_url == "gs://clips/Opening-shot.mp4"
    assert "tester: 515 credits" in invoke("credits").stdout

    assert "No scenes to generate" in invoke("produce", ref).stdout


def test_produce_reports_unpaid_scenes(workspace, monkeypatch):
    monkeypatch.setattr(config, "starting_credits", 160)
    invoke("new", "Broke")
    ref = only_project(workspace).id[:8]
    invoke("script", ref, "--prompt", "A fox")

    result = invoke("produce", ref, "--parallel", "1")

    assert result.exit_code == 1
    assert "Insufficient credits for video: need 150, have 0" in result.stdout
    assert "kroma top-up director" in result.stdout
    assert "Not paid for: 2" in result.stdout
    statuses = [s.status for s in only_project(workspace).scenes]
    assert statuses.count(SceneStatus.COMPLETED) == 1
    assert statuses.count(SceneStatus.PENDING) == 2


def test_script_without_credits(workspace, monkeypatch):
    monkeypatch.setattr(config, "starting_credits", 5)
    invoke("new", "Broke")
    ref = only_project(workspace).id[:8]

    result = invoke("script", ref, "--prompt", "A fox")
    assert result.exit_code == 1
    assert "need 10, have 5" in result.stdout
    assert only_project(workspace).scenes == []


def test_scene_editing_by_number(workspace):
    invoke("new", "Edit")
    ref = only_project(workspace).id[:8]
    invoke("add-scene", ref, "First")
    invoke("add-scene", ref, "Second")

    assert invoke("edit-scene", ref, "2", "Second, rewritten").exit_code == 0
    assert invoke("remove-scene", ref, "1").exit_code == 0
    assert invoke("remove-scene", ref, "7").exit_code == 1

    scenes = only_project(workspace).scenes
    assert [(s.order, s.description) for s in scenes] == [(2, "Second, rewritten")]


def test_step_and_aspect_validation(workspace):
    invoke("new", "Steps")
    ref = only_project(workspace).id[:8]

    assert invoke("step", ref, "production").exit_code == 1
    assert invoke("aspect", ref, "4:3").exit_code == 1
    assert invoke("aspect", ref, "9:16").exit_code == 0
    assert only_project(workspace).aspect_ratio.value == "9:16"


def test_delete_with_yes(workspace):
    invoke("new", "Temp")
    ref = only_project(workspace).id[:8]
    result = invoke("delete", ref, "--yes")
    assert result.exit_code == 0
    assert SqliteProjectStore(workspace / "kroma.db").list() == []


def test_check_reports_missing_configuration(workspace, monkeypatch):
    monkeypatch.setattr(config, "anthropic_api_key", "")
    monkeypatch.setattr(config, "google_cloud_project", "demo")
    monkeypatch.setattr(config, "veo_output_bucket", "my-bucket")

    result = invoke("check")
    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY not set" in result.stdout
    assert "must be a GCS URI" in result.stdout


def test_check_passes_when_configured(workspace, monkeypatch):
    monkeypatch.setattr(config, "anthropic_api_key", "sk-test")
    monkeypatch.setattr(config, "google_cloud_project", "demo")
    monkeypatch.setattr(config, "veo_output_bucket", "gs://my-bucket")

    result = invoke("check")
    assert result.exit_code == 0
    assert "configured" in result.stdout


def test_recover_scene_after_killed_produce(workspace):
    invoke("new", "Crash")
    ref = only_project(workspace).id[:8]
    invoke("add-scene", ref, "Opening shot")
    invoke("add-scene", ref, "The chase")

    # A produce process that died mid-call leaves its scene generating
    store = SqliteProjectStore(workspace / "kroma.db")
    project = only_project(workspace)
    stuck = project.scenes[0].start_generation()
    store.update(project.id, scenes=[stuck, project.scenes[1]])

    assert invoke("recover-scene", ref, "2").exit_code == 1

    result = invoke("recover-scene", ref, "1")
    assert result.exit_code == 0, result.stdout
    scene = only_project(workspace).scenes[0]
    assert scene.status == SceneStatus.ERROR
    assert scene.error == INTERRUPTED_MESSAGE

    result = invoke("produce", ref)
    assert result.exit_code == 0, result.stdout
    assert "Generated: 2" in result.stdout


def test_export_writes_shot_list(workspace):
    invoke("new", "Fox")
    ref = only_project(workspace).id[:8]
    invoke("script", ref, "--prompt", "A fox outwits a hunter")
    invoke("character", ref, "--prompt", "A red fox")

    output = workspace / "exports" / "fox.yaml"
    result = invoke("export", ref, str(output))
    assert result.exit_code == 0, result.stdout

    data = yaml.safe_load(output.read_text())
    assert data["name"] == "Fox"
    assert data["script_prompt"] == "A fox outwits a hunter"
    assert data["aspect_ratio"] == "16:9"
    assert [s["description"] for s in data["scenes"]] == ["Opening shot", "The chase", "Sunset ending"]
    assert "character_image_base64" not in data
