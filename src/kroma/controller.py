"""Production controller: pipeline state machine with credit-gated generation.

Every paid step reads the balance, debits it, and only then calls the
generation backend. Results are written back by project and scene id into
whatever the store holds when they arrive, so concurrent generations,
edits and deletions never land on the wrong scene. A result whose project
or scene has been deleted in the meantime is dropped.
"""

import asyncio
import contextlib
import functools
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar, Union

from .config import CreditCosts
from .errors import GenerationFailure, InsufficientCredits, PreconditionViolation
from .gateway import GenerationGateway, require_text
from .ledger import CreditLedger
from .models import (
    AspectRatio,
    DEFAULT_SCENE_DESCRIPTION,
    INTERRUPTED_MESSAGE,
    PipelineStep,
    Project,
    Scene,
    SceneStatus,
)
from .store import ProjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _noop_on_precondition(func):
    """Turn ``PreconditionViolation`` into a logged no-op returning None."""
    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except PreconditionViolation as e:
                logger.debug(f"{func.__name__} ignored: {e}")
                return None
        return async_wrapper

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except PreconditionViolation as e:
            logger.debug(f"{func.__name__} ignored: {e}")
            return None
    return wrapper


@dataclass
class BatchOutcome:
    """What happened to each scene in a batch generation."""

    completed: List[Scene] = field(default_factory=list)
    failed: List[Scene] = field(default_factory=list)
    unpaid: List[str] = field(default_factory=list)
    discarded: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.failed) + len(self.unpaid) + len(self.discarded)


class ProductionController:
    """Orchestrates a user's projects through script, character and production.

    Args:
        store: Where projects live. Owned by the host.
        ledger: Credit balances.
        gateway: Generation backends.
        user_id: The user paying for generations.
        costs: Credit price per step. Defaults to ``CreditCosts()``.
        max_concurrent_generations: Bound on in-flight video generations;
            None means unbounded.
        generation_timeout: Seconds before a generation call is failed;
            None means wait indefinitely.
        refund_on_failure: Credit the cost back when a paid call fails or
            pays for a scene that is gone by the time it would start.
            Off by default: a failed generation still costs its credits.

    Raises:
        ValueError: If the bound is below 1 or the timeout is not positive.
    """

    def __init__(
        self,
        store: ProjectStore,
        ledger: CreditLedger,
        gateway: GenerationGateway,
        user_id: str,
        costs: Optional[CreditCosts] = None,
        max_concurrent_generations: Optional[int] = None,
        generation_timeout: Optional[float] = None,
        refund_on_failure: bool = False,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._gateway = gateway
        self._user_id = user_id
        if max_concurrent_generations is not None and max_concurrent_generations < 1:
            raise ValueError(
                f"max_concurrent_generations must be at least 1, got {max_concurrent_generations}"
            )
        if generation_timeout is not None and generation_timeout <= 0:
            raise ValueError(f"generation_timeout must be positive, got {generation_timeout}")

        self._costs = costs or CreditCosts()
        self._slots = (
            asyncio.Semaphore(max_concurrent_generations)
            if max_concurrent_generations is not None
            else None
        )
        self._timeout = generation_timeout
        self._refund_on_failure = refund_on_failure
        self._in_flight: Set[Tuple[str, str]] = set()

        self.current_project_id: Optional[str] = None
        # Last script/character failure; shown once, never persisted
        self.error: Optional[str] = None

    @property
    def costs(self) -> CreditCosts:
        return self._costs

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def current_project(self) -> Optional[Project]:
        if self.current_project_id is None:
            return None
        return self._store.get(self.current_project_id)

    async def balance(self) -> int:
        return await self._ledger.read(self._user_id)

    def list_projects(self) -> List[Project]:
        """All projects, newest first."""
        return self._store.list()

    # --- project lifecycle ---

    def _require_project(self, project_id: str) -> Project:
        project = self._store.get(project_id)
        if project is None:
            raise PreconditionViolation(f"Project {project_id} does not exist")
        return project

    @staticmethod
    def _require_scene(project: Project, scene_id: str) -> Scene:
        scene = project.get_scene(scene_id)
        if scene is None:
            raise PreconditionViolation(f"Scene {scene_id} is not in project {project.id}")
        return scene

    @_noop_on_precondition
    def create_project(self, name: str) -> Project:
        """Create an empty project and make it current."""
        project = self._store.create(require_text(name, "Project name"))
        self.current_project_id = project.id
        return project

    @_noop_on_precondition
    def open_project(self, project_id: str) -> Project:
        project = self._require_project(project_id)
        self.current_project_id = project.id
        return project

    def close_project(self) -> None:
        self.current_project_id = None

    def delete_project(self, project_id: str) -> bool:
        """Delete a project and its scenes. Deleting twice is harmless."""
        if self.current_project_id == project_id:
            self.current_project_id = None
        return self._store.delete(project_id)

    @_noop_on_precondition
    def rename_project(self, project_id: str, name: str) -> Project:
        self._require_project(project_id)
        return self._store.update(project_id, name=require_text(name, "Project name"))

    @_noop_on_precondition
    def set_script_prompt(self, project_id: str, prompt: str) -> Project:
        self._require_project(project_id)
        return self._store.update(project_id, script_prompt=prompt)

    @_noop_on_precondition
    def set_character_prompt(self, project_id: str, prompt: str) -> Project:
        self._require_project(project_id)
        return self._store.update(project_id, character_prompt=prompt)

    @_noop_on_precondition
    def set_aspect_ratio(self, project_id: str, aspect_ratio: Union[AspectRatio, str]) -> Project:
        self._require_project(project_id)
        try:
            ratio = AspectRatio(aspect_ratio)
        except ValueError:
            raise PreconditionViolation(f"Unsupported aspect ratio: {aspect_ratio}")
        return self._store.update(project_id, aspect_ratio=ratio)

    @_noop_on_precondition
    def toggle_aspect_ratio(self, project_id: str) -> Project:
        return self._store.mutate(
            project_id,
            lambda project: {"aspect_ratio": project.aspect_ratio.toggled()},
        )

    # --- pipeline navigation ---

    @_noop_on_precondition
    def set_step(self, project_id: str, step: Union[PipelineStep, str]) -> Project:
        """Move to ``step``. Backward always works; forward needs its prerequisites."""
        try:
            step = PipelineStep(step)
        except ValueError:
            raise PreconditionViolation(f"Unknown pipeline step: {step}")

        def move(project: Project) -> Dict[str, Any]:
            if not project.can_enter(step):
                raise PreconditionViolation(
                    f"Project {project_id} cannot move from {project.step.value} to {step.value}"
                )
            logger.info(f"Project {project_id}: {project.step.value} -> {step.value}")
            return {"step": step}

        updated = self._store.mutate(project_id, move)
        if updated is None:
            raise PreconditionViolation(f"Project {project_id} does not exist")
        return updated

    @_noop_on_precondition
    def advance(self, project_id: str) -> Project:
        project = self._require_project(project_id)
        next_step = project.next_step()
        if next_step is None:
            raise PreconditionViolation(f"Project {project_id} is already in production")
        return self.set_step(project_id, next_step)

    # --- scene editing ---

    @_noop_on_precondition
    def add_scene(self, project_id: str, description: str = DEFAULT_SCENE_DESCRIPTION) -> Scene:
        scene = None

        def append(project: Project) -> Dict[str, Any]:
            nonlocal scene
            order = max((s.order for s in project.scenes), default=0) + 1
            scene = Scene(order=order, description=description)
            return {"scenes": [*project.scenes, scene]}

        if self._store.mutate(project_id, append) is None:
            raise PreconditionViolation(f"Project {project_id} does not exist")
        return scene

    @_noop_on_precondition
    def update_scene_description(self, project_id: str, scene_id: str, description: str) -> Scene:
        return self._patch_scene(
            project_id,
            scene_id,
            lambda scene: scene.with_description(description),
        )

    @_noop_on_precondition
    def delete_scene(self, project_id: str, scene_id: str) -> Project:
        def remove(project: Project) -> Dict[str, Any]:
            self._require_scene(project, scene_id)
            return {"scenes": [s for s in project.scenes if s.id != scene_id]}

        project = self._store.mutate(project_id, remove)
        if project is None:
            raise PreconditionViolation(f"Project {project_id} does not exist")
        return project

    @_noop_on_precondition
    def recover_scene(self, project_id: str, scene_id: str) -> Scene:
        """Fail a scene left ``generating`` by a process that died mid-call.

        The scene becomes ``error`` and can be generated again. A generation
        still running in this controller is left alone.
        """
        if (project_id, scene_id) in self._in_flight:
            raise PreconditionViolation(f"Scene {scene_id} is generating in this session")
        recovered = self._patch_scene(project_id, scene_id, lambda s: s.fail(INTERRUPTED_MESSAGE))
        if recovered is None:
            raise PreconditionViolation(f"Scene {scene_id} is not stuck generating")
        logger.info(f"Scene {scene_id}: recovered from interrupted generation")
        return recovered

    def _patch_scene(
        self,
        project_id: str,
        scene_id: str,
        change: Callable[[Scene], Scene],
    ) -> Optional[Scene]:
        """Replace one scene, by id, in the project as currently stored.

        Returns:
            The new scene, or None if the project or scene is gone or
            ``change`` does not apply to the scene's current state.
        """
        updated = None

        def replace(project: Project) -> Dict[str, Any]:
            nonlocal updated
            updated = change(self._require_scene(project, scene_id))
            return {"scenes": [updated if s.id == scene_id else s for s in project.scenes]}

        try:
            if self._store.mutate(project_id, replace) is None:
                return None
        except PreconditionViolation as e:
            logger.debug(f"Scene patch skipped: {e}")
            return None
        return updated

    # --- credit gating ---

    async def _charge(self, cost: int, action: str) -> None:
        """Debit ``cost`` before any paid call, or raise InsufficientCredits."""
        balance = await self._ledger.read(self._user_id)
        if balance < cost:
            logger.warning(f"Insufficient credits for {action}: need {cost}, have {balance}")
            raise InsufficientCredits(cost, balance, action)

        if not await self._ledger.debit(self._user_id, cost):
            # Another debit got there first
            balance = await self._ledger.read(self._user_id)
            logger.warning(f"Debit for {action} refused: need {cost}, have {balance}")
            raise InsufficientCredits(cost, balance, action)

    async def _refund(self, cost: int, action: str) -> None:
        if self._refund_on_failure and cost:
            await self._ledger.credit(self._user_id, cost)
            logger.info(f"Refunded {cost} credits for failed {action}")

    async def _invoke(self, call: Callable[[], Awaitable[T]], bounded: bool = False) -> T:
        """Run a gateway call under the concurrency bound and timeout."""
        slot = self._slots if bounded and self._slots is not None else contextlib.nullcontext()
        async with slot:
            if self._timeout is None:
                return await call()
            try:
                return await asyncio.wait_for(call(), self._timeout)
            except asyncio.TimeoutError:
                raise GenerationFailure(f"Generation timed out after {self._timeout:g}s")

    # --- paid generation ---

    @_noop_on_precondition
    async def generate_script(self, project_id: str) -> Optional[Project]:
        """Break the script prompt into fresh pending scenes.

        The existing scenes are replaced and the pipeline stage is left
        alone. A backend failure is recorded in ``error`` and returns None.

        Raises:
            InsufficientCredits: Nothing was debited or generated.
        """
        project = self._require_project(project_id)
        prompt = require_text(project.script_prompt, "Script prompt")

        await self._charge(self._costs.script, "script")
        self.error = None

        try:
            descriptions = await self._invoke(lambda: self._gateway.breakdown_script(prompt))
        except Exception as e:
            return await self._generation_failed(e, self._costs.script, "script")

        scenes = [
            Scene(order=order, description=description)
            for order, description in enumerate(descriptions, start=1)
        ]
        updated = self._store.update(project_id, scenes=scenes)
        if updated is None:
            logger.debug(f"Discarding script for deleted project {project_id}")
            return None

        logger.info(f"Project {project_id}: script produced {len(scenes)} scenes")
        return updated

    @_noop_on_precondition
    async def generate_character(self, project_id: str) -> Optional[Project]:
        """Generate the character reference image from the character prompt.

        Raises:
            InsufficientCredits: Nothing was debited or generated.
        """
        project = self._require_project(project_id)
        prompt = require_text(project.character_prompt, "Character prompt")

        await self._charge(self._costs.character, "character")
        self.error = None

        try:
            image = await self._invoke(lambda: self._gateway.synthesize_character(prompt))
        except Exception as e:
            return await self._generation_failed(e, self._costs.character, "character")

        updated = self._store.update(project_id, character_image_base64=image)
        if updated is None:
            logger.debug(f"Discarding character for deleted project {project_id}")
            return None

        logger.info(f"Project {project_id}: character reference ready")
        return updated

    async def _generation_failed(self, exc: Exception, cost: int, action: str) -> None:
        if isinstance(exc, GenerationFailure):
            self.error = exc.message
        else:
            logger.exception(f"Unexpected {action} generation error")
            self.error = str(exc) or f"Failed to generate {action}"
        logger.error(f"{action.capitalize()} generation failed: {self.error}")
        await self._refund(cost, action)
        return None

    @_noop_on_precondition
    async def generate_scene_video(self, project_id: str, scene_id: str) -> Optional[Scene]:
        """Render one scene into a clip.

        Moves the scene to ``generating`` once paid for, then to
        ``completed`` or ``error`` when the backend answers.

        Returns:
            The scene as finally stored, or None when nothing happened or
            the scene was deleted before its result arrived.

        Raises:
            InsufficientCredits: The scene stays as it was.
        """
        project = self._require_project(project_id)
        scene = self._require_scene(project, scene_id)
        if not scene.can_generate:
            raise PreconditionViolation(f"Scene {scene_id} is {scene.status.value}")

        key = (project_id, scene_id)
        if key in self._in_flight:
            raise PreconditionViolation(f"Scene {scene_id} already has a generation in flight")
        self._in_flight.add(key)

        try:
            await self._charge(self._costs.video, "video")

            started = self._patch_scene(project_id, scene_id, Scene.start_generation)
            project = self._store.get(project_id)
            if started is None or project is None:
                logger.info(f"Scene {scene_id} is gone or already generating; nothing generated")
                await self._refund(self._costs.video, "video")
                return None
            logger.info(f"Scene {scene_id}: generating")

            try:
                video_url = await self._invoke(
                    lambda: self._gateway.synthesize_video(
                        started.description,
                        project.character_image_base64,
                        project.aspect_ratio,
                    ),
                    bounded=True,
                )
            except asyncio.CancelledError:
                # Leave the scene retryable rather than stuck in generating
                logger.warning(f"Scene {scene_id}: generation interrupted")
                self._patch_scene(project_id, scene_id, lambda s: s.fail(INTERRUPTED_MESSAGE))
                await self._refund(self._costs.video, "video")
                raise
            except Exception as e:
                if isinstance(e, GenerationFailure):
                    message = e.message
                else:
                    logger.exception(f"Unexpected video generation error for scene {scene_id}")
                    message = str(e) or "Video generation failed"
                logger.error(f"Scene {scene_id}: generation failed: {message}")
                await self._refund(self._costs.video, "video")
                result = self._patch_scene(project_id, scene_id, lambda s: s.fail(message))
            else:
                result = self._patch_scene(project_id, scene_id, lambda s: s.complete(video_url))

            if result is None:
                logger.debug(f"Discarding result for deleted scene {scene_id}")
            else:
                logger.info(f"Scene {scene_id}: {result.status.value}")
            return result
        finally:
            self._in_flight.discard(key)

    @_noop_on_precondition
    async def generate_all_scenes(
        self,
        project_id: str,
        scene_ids: Optional[List[str]] = None,
    ) -> BatchOutcome:
        """Generate every eligible scene (or the given ones) concurrently.

        Each scene pays for itself; scenes the balance cannot cover are
        reported in ``unpaid`` while the others proceed.
        """
        project = self._require_project(project_id)
        wanted = set(scene_ids) if scene_ids is not None else None
        targets = [
            scene.id
            for scene in project.scenes
            if scene.can_generate and (wanted is None or scene.id in wanted)
        ]
        outcome = BatchOutcome()

        async def run(scene_id: str) -> None:
            try:
                scene = await self.generate_scene_video(project_id, scene_id)
            except InsufficientCredits:
                outcome.unpaid.append(scene_id)
                return
            if scene is None:
                outcome.discarded.append(scene_id)
            elif scene.status == SceneStatus.COMPLETED:
                outcome.completed.append(scene)
            else:
                outcome.failed.append(scene)

        await asyncio.gather(*(run(scene_id) for scene_id in targets))
        return outcome
