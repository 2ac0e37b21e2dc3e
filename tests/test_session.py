"""Tests for TrackerSession mode switching and overlay toggling."""

from dataclasses import replace

import pytest

from configs.config import SchedulerConfig
from tracker.controller import PipelineState, Running
from tracker.landmarks import DetectorKind
from tracker.session import TrackerSession, default_config_for

from conftest import FakeModelFactory, wait_for


def fast_config_for(mode):
    return replace(default_config_for(mode), scheduler=SchedulerConfig(refresh_hz=200))


@pytest.fixture
def session(camera, model):
    return TrackerSession(camera=camera, model_factory=FakeModelFactory(model), config_for=fast_config_for)


class TestTrackerSession:

    @pytest.mark.asyncio
    async def test_switch_starts_pipeline(self, session):
        controller = await session.switch("arm")
        try:
            assert await controller.ready() == Running()
            assert controller.kind is DetectorKind.POSE
            assert session.mode == "arm"
            assert session.overlay_enabled is True
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_switch_disposes_previous_before_reopening_camera(self, session, camera):
        first = await session.switch("arm")
        await first.ready()

        second = await session.switch("hand")
        status = await second.ready()

        assert first.state is PipelineState.DISPOSED
        assert isinstance(status, Running)
        assert second.kind is DetectorKind.HAND
        assert camera.opened == 2
        assert camera.max_active == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_switch_while_previous_still_loading(self, session, camera):
        camera.gate.clear()
        first = await session.switch("arm")
        await wait_for(camera.entered.is_set)

        switching = session.switch("hand")
        camera.gate.set()
        second = await switching

        assert first.state is PipelineState.DISPOSED
        assert isinstance(await second.ready(), Running)
        assert camera.max_active == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_toggle_overlay_rebuilds(self, session):
        first = await session.switch("hand")
        second = await session.toggle_overlay()

        assert second is not first
        assert first.state is PipelineState.DISPOSED
        assert session.overlay_enabled is False
        assert session.mode == "hand"

        third = await session.switch("arm")
        assert third.config.overlay_enabled is False
        await session.close()

    @pytest.mark.asyncio
    async def test_switch_with_explicit_overlay(self, session):
        controller = await session.switch("arm", overlay_enabled=False)
        assert controller.config.overlay_enabled is False
        await session.close()

    @pytest.mark.asyncio
    async def test_toggle_without_pipeline(self, session):
        assert await session.toggle_overlay() is None

    @pytest.mark.asyncio
    async def test_unknown_mode(self, session):
        with pytest.raises(ValueError, match="face"):
            await session.switch("face")

    @pytest.mark.asyncio
    async def test_close_disposes(self, session, camera):
        controller = await session.switch("arm")
        await controller.ready()

        await session.close()

        assert controller.state is PipelineState.DISPOSED
        assert session.controller is None
        assert session.mode is None
        assert camera.active == 0
