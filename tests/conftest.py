import asyncio
from typing import Dict, List, Optional, Union

import pytest

from kroma.config import CreditCosts
from kroma.controller import ProductionController
from kroma.gateway import GenerationGateway
from kroma.ledger import InMemoryCreditLedger
from kroma.models import AspectRatio
from kroma.store import InMemoryProjectStore

USER = "user-1"
CHARACTER_PNG = "aGVsbG8gY2hhcmFjdGVy"


class FakeGateway(GenerationGateway):
    """Scriptable gateway.

    ``gates`` maps a scene description to an event the video call waits on,
    so tests decide the order in which results arrive.
    """

    def __init__(self) -> None:
        self.script_scenes: List[str] = ["Opening shot", "The chase", "Sunset ending"]
        self.script_error: Optional[Exception] = None
        self.script_gate: Optional[asyncio.Event] = None
        self.character_error: Optional[Exception] = None
        self.video_outcomes: Dict[str, Union[str, Exception]] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.resolved: List[str] = []
        self.active = 0
        self.max_active = 0

    async def breakdown_script(self, prompt: str) -> List[str]:
        self.calls.append(("script", prompt))
        if self.script_gate is not None:
            await self.script_gate.wait()
        if self.script_error:
            raise self.script_error
        return list(self.script_scenes)

    async def synthesize_character(self, prompt: str) -> str:
        self.calls.append(("character", prompt))
        if self.character_error:
            raise self.character_error
        return CHARACTER_PNG

    async def synthesize_video(
        self,
        description: str,
        reference_image: Optional[str],
        aspect_ratio: AspectRatio,
    ) -> str:
        self.calls.append(("video", description, reference_image, AspectRatio(aspect_ratio)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            gate = self.gates.get(description)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.active -= 1

        self.resolved.append(description)
        outcome = self.video_outcomes.get(description, f"gs://clips/{description.replace(' ', '-')}.mp4")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def settle(rounds: int = 10) -> None:
    """Let every ready task run until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store() -> InMemoryProjectStore:
    return InMemoryProjectStore()


@pytest.fixture
def make_controller(store, gateway):
    def build(balance: int = 1000, **kwargs) -> ProductionController:
        ledger = kwargs.pop("ledger", None) or InMemoryCreditLedger({USER: balance})
        return ProductionController(
            store=kwargs.pop("store", store),
            ledger=ledger,
            gateway=kwargs.pop("gateway", gateway),
            user_id=USER,
            costs=kwargs.pop("costs", CreditCosts()),
            **kwargs,
        )
    return build


def project_with_scenes(controller: ProductionController, *descriptions: str):
    project = controller.create_project("Demo")
    for description in descriptions:
        controller.add_scene(project.id, description)
    return controller.current_project

