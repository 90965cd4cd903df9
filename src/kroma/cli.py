"""CLI entry point for Kroma Studio."""

import asyncio
import base64
import logging
from pathlib import Path
from typing import List, Optional

import typer

from . import __version__
from .config import config
from .controller import ProductionController
from .errors import InsufficientCredits
from .gateway import StudioGateway
from .ledger import TIERS, SqliteCreditLedger, purchase_tier
from .models import PipelineStep, Project, Scene, SceneStatus
from .store import SqliteProjectStore

app = typer.Typer(
    name="kroma",
    help="AI video studio: script, character, production",
    no_args_is_help=True
)

_state = {"user": None}

STATUS_ICONS = {
    SceneStatus.PENDING: "⏳",
    SceneStatus.GENERATING: "🔄",
    SceneStatus.COMPLETED: "✅",
    SceneStatus.ERROR: "❌",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"kroma version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
    user: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="User whose credits pay for generations (default: KROMA_USER_ID)"
    ),
) -> None:
    """Kroma Studio - Turn a concept into a consistent, scene-by-scene video."""
    _state["user"] = user


def _build_controller(parallel: Optional[int] = None) -> ProductionController:
    limit = parallel if parallel is not None else config.max_parallel
    return ProductionController(
        store=SqliteProjectStore(config.database_path),
        ledger=SqliteCreditLedger(config.database_path, starting_credits=config.starting_credits),
        gateway=StudioGateway(),
        user_id=_state["user"] or config.user_id,
        costs=config.costs(),
        max_concurrent_generations=limit or None,
        generation_timeout=config.generation_timeout or None,
    )


def _resolve_project(controller: ProductionController, ref: str) -> Project:
    """Find a project by id or unique id prefix."""
    matches = [p for p in controller.list_projects() if p.id == ref or p.id.startswith(ref)]
    if len(matches) != 1:
        problem = "No project" if not matches else "Ambiguous project id"
        typer.echo(f"❌ {problem}: {ref}")
        typer.echo("   Run 'kroma projects' to list projects")
        raise typer.Exit(1)
    return controller.open_project(matches[0].id)


def _resolve_scene(project: Project, ref: str) -> Scene:
    """Find a scene by display order or id prefix."""
    if ref.isdigit():
        matches = [s for s in project.scenes if s.order == int(ref)]
    else:
        matches = [s for s in project.scenes if s.id.startswith(ref)]
    if len(matches) != 1:
        typer.echo(f"❌ No such scene in {project.name}: {ref}")
        raise typer.Exit(1)
    return matches[0]


def _echo_insufficient(e: InsufficientCredits) -> None:
    typer.echo(f"💳 {e}")
    typer.echo("   Top up with one of:")
    for tier in TIERS:
        marker = " (popular)" if tier.popular else ""
        typer.echo(f"     kroma top-up {tier.id}  - {tier.credits} credits for ${tier.price}{marker}")


def _echo_project(project: Project) -> None:
    typer.echo(f"📁 Project: {project.name} ({project.id[:8]})")
    typer.echo(f"   Step: {project.step.value}")
    typer.echo(f"   Aspect ratio: {project.aspect_ratio.value}")
    typer.echo(f"   Character: {'ready' if project.character_image_base64 else 'not generated'}")
    typer.echo(f"   Scenes: {len(project.scenes)}")
    for scene in project.scenes:
        icon = STATUS_ICONS[scene.status]
        preview = scene.description[:60] + "..." if len(scene.description) > 60 else scene.description
        typer.echo(f"   {icon} {scene.order:02d} [{scene.id[:8]}] {preview}")
        if scene.video_url:
            typer.echo(f"      → {scene.video_url}")
        if scene.error:
            typer.echo(f"      ⚠️  {scene.error}")


@app.command()
def new(
    name: str = typer.Argument(..., help="Project name"),
) -> None:
    """Create a new project."""
    controller = _build_controller()
    project = controller.create_project(name)
    if project is None:
        typer.echo("❌ Project name cannot be empty")
        raise typer.Exit(1)
    typer.echo(f"✅ Created project {project.name} ({project.id})")


@app.command()
def projects() -> None:
    """List projects, newest first."""
    controller = _build_controller()
    items = controller.list_projects()
    if not items:
        typer.echo("No projects yet. Create one with 'kroma new NAME'")
        return
    for project in items:
        done = sum(1 for s in project.scenes if s.status == SceneStatus.COMPLETED)
        typer.echo(
            f"📁 {project.id[:8]}  {project.name}  [{project.step.value}]  "
            f"{done}/{len(project.scenes)} scenes  {project.last_modified:%Y-%m-%d %H:%M}"
        )


@app.command()
def status(
    project_ref: str = typer.Argument(..., metavar="PROJECT", help="Project id or prefix"),
) -> None:
    """Show a project's stage and scenes."""
    controller = _build_controller()
    _echo_project(_resolve_project(controller, project_ref))


@app.command()
def delete(
    project_ref: str = typer.Argument(..., metavar="PROJECT", help="Project id or prefix"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a project and all its scenes."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if not yes:
        typer.confirm(f"Delete project '{project.name}'?", abort=True)
    controller.delete_project(project.id)
    typer.echo(f"🗑️  Deleted {project.name}")


@app.command()
def rename(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a project."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if controller.rename_project(project.id, name) is None:
        typer.echo("❌ Project name cannot be empty")
        raise typer.Exit(1)
    typer.echo(f"✅ Renamed to {name}")


@app.command()
def prompt(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    text: str = typer.Argument(..., help="Prompt text"),
    character: bool = typer.Option(
        False,
        "--character",
        "-c",
        help="Set the character prompt instead of the script prompt"
    ),
) -> None:
    """Set a project's script or character prompt."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if character:
        controller.set_character_prompt(project.id, text)
        typer.echo("✅ Character prompt saved")
    else:
        controller.set_script_prompt(project.id, text)
        typer.echo("✅ Script prompt saved")


@app.command()
def script(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    prompt_text: Optional[str] = typer.Option(
        None,
        "--prompt",
        "-p",
        help="Concept to break down (replaces the saved script prompt)"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Break the script prompt into scenes (replaces existing scenes)."""
    setup_logging(verbose)
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if prompt_text is not None:
        project = controller.set_script_prompt(project.id, prompt_text)
    if not project.script_prompt.strip():
        typer.echo("❌ No script prompt. Pass --prompt or run 'kroma prompt'")
        raise typer.Exit(1)

    typer.echo(f"🎬 Writing script for {project.name} ({controller.costs.script} credits)")
    try:
        updated = asyncio.run(controller.generate_script(project.id))
    except InsufficientCredits as e:
        _echo_insufficient(e)
        raise typer.Exit(1)

    if updated is None:
        typer.echo(f"❌ Script generation failed: {controller.error or 'project no longer exists'}")
        raise typer.Exit(1)
    _echo_project(updated)


@app.command()
def character(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    prompt_text: Optional[str] = typer.Option(
        None,
        "--prompt",
        "-p",
        help="Character description (replaces the saved character prompt)"
    ),
    save: Optional[Path] = typer.Option(
        None,
        "--save",
        "-s",
        help="Also write the reference image to this file"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Generate the character reference image used by every scene."""
    setup_logging(verbose)
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if prompt_text is not None:
        project = controller.set_character_prompt(project.id, prompt_text)
    if not project.character_prompt.strip():
        typer.echo("❌ No character prompt. Pass --prompt or run 'kroma prompt --character'")
        raise typer.Exit(1)

    typer.echo(f"🎨 Generating character ({controller.costs.character} credits)")
    try:
        updated = asyncio.run(controller.generate_character(project.id))
    except InsufficientCredits as e:
        _echo_insufficient(e)
        raise typer.Exit(1)

    if updated is None:
        typer.echo(f"❌ Character generation failed: {controller.error or 'project no longer exists'}")
        raise typer.Exit(1)

    typer.echo("✅ Character reference ready")
    if save:
        save.parent.mkdir(parents=True, exist_ok=True)
        save.write_bytes(base64.b64decode(updated.character_image_base64))
        typer.echo(f"   Saved: {save}")
    typer.echo(f"   Continue with: kroma advance {updated.id[:8]}")


@app.command()
def advance(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
) -> None:
    """Move a project to its next pipeline stage."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    updated = controller.advance(project.id)
    if updated is None:
        if project.step == PipelineStep.SCRIPT:
            reason = "generate or add at least one scene first"
        elif project.step == PipelineStep.CHARACTER:
            reason = "generate the character reference first"
        else:
            reason = "already in production"
        typer.echo(f"❌ Cannot advance: {reason}")
        raise typer.Exit(1)
    typer.echo(f"➡️  {updated.name} is now at {updated.step.value}")


@app.command()
def step(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    target: PipelineStep = typer.Argument(..., help="script, character or production"),
) -> None:
    """Jump to a pipeline stage (back at any time, forward when ready)."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    updated = controller.set_step(project.id, target)
    if updated is None:
        typer.echo(f"❌ {project.name} is not ready for {target.value}")
        raise typer.Exit(1)
    typer.echo(f"➡️  {updated.name} is now at {updated.step.value}")


@app.command()
def aspect(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    ratio: Optional[str] = typer.Argument(None, help="16:9 or 9:16 (toggles when omitted)"),
) -> None:
    """Set or toggle the aspect ratio for future clips."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if ratio is None:
        updated = controller.toggle_aspect_ratio(project.id)
    else:
        updated = controller.set_aspect_ratio(project.id, ratio)
    if updated is None:
        typer.echo(f"❌ Invalid aspect ratio: {ratio}. Must be '16:9' or '9:16'")
        raise typer.Exit(1)
    typer.echo(f"📐 Aspect ratio: {updated.aspect_ratio.value}")


@app.command("add-scene")
def add_scene(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    description: Optional[str] = typer.Argument(None, help="Scene description"),
) -> None:
    """Append a scene to a project."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    if description is None:
        scene = controller.add_scene(project.id)
    else:
        scene = controller.add_scene(project.id, description)
    typer.echo(f"➕ Added scene {scene.order:02d} ({scene.id[:8]})")


@app.command("edit-scene")
def edit_scene(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    scene_ref: str = typer.Argument(..., metavar="SCENE", help="Scene number or id prefix"),
    description: str = typer.Argument(..., help="New description"),
) -> None:
    """Rewrite a scene's description."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    scene = _resolve_scene(project, scene_ref)
    controller.update_scene_description(project.id, scene.id, description)
    typer.echo(f"✏️  Updated scene {scene.order:02d}")


@app.command("remove-scene")
def remove_scene(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    scene_ref: str = typer.Argument(..., metavar="SCENE", help="Scene number or id prefix"),
) -> None:
    """Remove a scene from a project."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    scene = _resolve_scene(project, scene_ref)
    controller.delete_scene(project.id, scene.id)
    typer.echo(f"🗑️  Removed scene {scene.order:02d}")


@app.command("recover-scene")
def recover_scene(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    scene_ref: str = typer.Argument(..., metavar="SCENE", help="Scene number or id prefix"),
) -> None:
    """Mark a scene stuck in generating as failed so it can be retried."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    scene = _resolve_scene(project, scene_ref)
    if controller.recover_scene(project.id, scene.id) is None:
        typer.echo(f"❌ Scene {scene.order:02d} is {scene.status.value}, not generating")
        raise typer.Exit(1)
    typer.echo(f"🔁 Scene {scene.order:02d} can be generated again")


@app.command()
def export(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    output: Path = typer.Argument(..., help="YAML file to write"),
) -> None:
    """Write a project's scenes and settings to a YAML file."""
    controller = _build_controller()
    project = _resolve_project(controller, project_ref)
    project.to_yaml(output)
    typer.echo(f"📄 Exported {project.name} to {output}")


@app.command()
def produce(
    project_ref: str = typer.Argument(..., metavar="PROJECT"),
    scenes: Optional[List[str]] = typer.Option(
        None,
        "--scene",
        "-s",
        help="Scene number or id prefix to generate (repeatable; default: all eligible)"
    ),
    parallel: Optional[int] = typer.Option(
        None,
        "--parallel",
        "-p",
        help="Maximum concurrent generations (default: KROMA_MAX_PARALLEL)",
        min=1,
        max=10
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging"),
) -> None:
    """Render scenes into video clips, paying per scene."""
    setup_logging(verbose)
    controller = _build_controller(parallel)
    project = _resolve_project(controller, project_ref)

    scene_ids = None
    if scenes:
        scene_ids = [_resolve_scene(project, ref).id for ref in scenes]

    eligible = [
        s for s in project.scenes
        if s.can_generate and (scene_ids is None or s.id in scene_ids)
    ]
    if not eligible:
        typer.echo("✅ No scenes to generate")
        raise typer.Exit(0)

    if not project.character_image_base64:
        typer.echo("⚠️  No character reference; scenes may look inconsistent")

    typer.echo(
        f"⏳ Generating {len(eligible)} clips at {project.aspect_ratio.value} "
        f"({controller.costs.video} credits each)..."
    )
    outcome = asyncio.run(controller.generate_all_scenes(project.id, scene_ids))

    for scene in outcome.completed:
        typer.echo(f"   ✅ {scene.order:02d}: {scene.video_url}")
    for scene in outcome.failed:
        typer.echo(f"   ❌ {scene.order:02d}: {scene.error}")

    typer.echo(f"\n📊 Summary:")
    typer.echo(f"   Generated: {len(outcome.completed)}")
    typer.echo(f"   Failed: {len(outcome.failed)}")
    if outcome.unpaid:
        balance = asyncio.run(controller.balance())
        _echo_insufficient(InsufficientCredits(controller.costs.video, balance, "video"))
        typer.echo(f"   Not paid for: {len(outcome.unpaid)}")

    if outcome.failed or outcome.unpaid:
        raise typer.Exit(1)


@app.command()
def check() -> None:
    """Verify that generation backends are configured."""
    problems = []
    for validate in (config.validate_required, config.validate_veo_required):
        try:
            validate()
        except ValueError as e:
            problems.append(str(e))

    if problems:
        for problem in problems:
            typer.echo(f"❌ Configuration error: {problem}")
        raise typer.Exit(1)
    typer.echo("✅ Claude, Imagen and Veo are configured")
    typer.echo(f"   Workspace: {config.workspace.resolve()}")


@app.command()
def credits() -> None:
    """Show the credit balance and prices."""
    controller = _build_controller()
    balance = asyncio.run(controller.balance())
    costs = controller.costs
    typer.echo(f"🪙 {controller.user_id}: {balance} credits")
    typer.echo(f"   Script: {costs.script}  Character: {costs.character}  Video: {costs.video} per scene")


@app.command("top-up")
def top_up(
    tier: str = typer.Argument(..., help=f"Pricing tier ({', '.join(t.id for t in TIERS)})"),
) -> None:
    """Add a credit pack to the balance."""
    ledger = SqliteCreditLedger(config.database_path, starting_credits=config.starting_credits)
    user_id = _state["user"] or config.user_id
    try:
        balance = asyncio.run(purchase_tier(ledger, user_id, tier))
    except ValueError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    typer.echo(f"✅ Credits added. Balance: {balance}")


if __name__ == "__main__":
    app()
