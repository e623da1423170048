"""
Tracking loop: initialization sequence and steady-state render cycle.

The loop owns no device or GL code itself. It drives four collaborators
held in a PipelineContext:

- estimation: ``await initialize()``, ``await estimate(frame)``, ``close()``
- asset:      ``await load(path, on_progress)`` -> OverlayHandle
- capture:    ``await start(width, height)``, ``await read()``, ``stop()``
- scene:      ``setup(size)``, ``attach(handle)``, ``render_frame()``,
              ``annotate_eyes(left, right, geometry)``, ``dispose()``

Setup runs strictly in order (model, scene + asset, camera). Each cycle
runs estimate -> map -> mutate transform -> render, then waits for the
next render tick.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional

from .config import OverlayConfig
from .errors import EyewearError
from .mapping import find_eyes, normalized_pose, overlay_transform
from .types import FrameGeometry

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Lifecycle states of the tracking pipeline."""

    IDLE = auto()
    INITIALIZING_ESTIMATION = auto()
    INITIALIZING_SCENE = auto()
    INITIALIZING_CAPTURE = auto()
    TRACKING = auto()
    STOPPED = auto()
    FAILED = auto()


class StageStatus(Enum):
    """Progress of one initialization stage."""

    UNINITIALIZED = auto()
    LOADING = auto()
    READY = auto()
    FAILED = auto()


STAGES = ("estimation", "asset", "capture")

_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.INITIALIZING_ESTIMATION, PipelineState.STOPPED},
    PipelineState.INITIALIZING_ESTIMATION: {
        PipelineState.INITIALIZING_SCENE, PipelineState.FAILED, PipelineState.STOPPED},
    PipelineState.INITIALIZING_SCENE: {
        PipelineState.INITIALIZING_CAPTURE, PipelineState.FAILED, PipelineState.STOPPED},
    PipelineState.INITIALIZING_CAPTURE: {
        PipelineState.TRACKING, PipelineState.FAILED, PipelineState.STOPPED},
    PipelineState.TRACKING: {PipelineState.STOPPED},
    PipelineState.STOPPED: set(),
    PipelineState.FAILED: set(),
}


@dataclass
class PipelineContext:
    """Everything the tracking loop needs, passed in explicitly."""

    estimation: Any
    asset: Any
    capture: Any
    scene: Any
    config: OverlayConfig = field(default_factory=OverlayConfig)

    # Filled in during initialization
    overlay: Any = None
    stream: Any = None
    geometry: Optional[FrameGeometry] = None
    status: Dict[str, StageStatus] = field(
        default_factory=lambda: {name: StageStatus.UNINITIALIZED for name in STAGES})
    error: Optional[BaseException] = None

    # Latest captured frame, for the presenter
    frame: Any = None

    # Counters
    cycles: int = 0
    updates: int = 0
    misses: int = 0
    errors: int = 0


class IntervalTicker:
    """Render tick at a fixed rate, for headless runs and tests."""

    def __init__(self, fps: float = 60.0):
        self.interval = 1.0 / fps if fps > 0 else 0.0
        self.ticks = 0

    async def next_frame(self):
        self.ticks += 1
        await asyncio.sleep(self.interval)


class TrackingLoop:
    """
    Orchestrates setup, the per-frame cycle and teardown.

    Use as an async context manager so teardown runs on every exit path::

        async with TrackingLoop(context, ticker) as loop:
            if await loop.start() is PipelineState.TRACKING:
                await loop.wait()
    """

    def __init__(self, context: PipelineContext, ticker=None):
        self.context = context
        self.ticker = ticker or IntervalTicker(context.config.target_fps)
        self._state = PipelineState.IDLE
        self._setup: Optional[asyncio.Task] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._torn_down = False

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def stopping(self) -> bool:
        return self._stopping

    def _transition(self, new_state: PipelineState):
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid transition {self._state.name} -> {new_state.name}")
        logger.info("Pipeline %s -> %s", self._state.name, new_state.name)
        self._state = new_state

    def _fail(self, stage: str, error: BaseException) -> PipelineState:
        self.context.status[stage] = StageStatus.FAILED
        self.context.error = error
        if isinstance(error, EyewearError):
            logger.error("Pipeline halted during %s setup: %s", stage, error)
        else:
            logger.exception("Unexpected error during %s setup", stage, exc_info=error)
        if self._state is PipelineState.STOPPED:
            return self._state
        self._transition(PipelineState.FAILED)
        return self._state

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def start(self) -> PipelineState:
        """
        Run the three setup stages in order and begin tracking.

        Fatal stage errors are logged and leave the pipeline in FAILED;
        they are not raised to the caller. Setup runs in its own task, so
        cancelling the caller does not interrupt a stage; stop() waits
        for it instead.

        Returns:
            TRACKING, FAILED, or the current state if teardown was
            requested meanwhile
        """
        if self._stopping:
            return self._state
        if self._state is not PipelineState.IDLE or self._setup is not None:
            raise RuntimeError(f"Pipeline already started ({self._state.name})")

        self._setup = asyncio.create_task(self._initialize())
        return await asyncio.shield(self._setup)

    async def _initialize(self) -> PipelineState:
        stages = (
            (PipelineState.INITIALIZING_ESTIMATION, "estimation", self._initialize_estimation),
            (PipelineState.INITIALIZING_SCENE, "asset", self._initialize_scene),
            (PipelineState.INITIALIZING_CAPTURE, "capture", self._initialize_capture),
        )

        for state, stage, run_stage in stages:
            if self._stopping:
                return self._state
            self._transition(state)
            self.context.status[stage] = StageStatus.LOADING
            try:
                await run_stage()
            except Exception as e:
                return self._fail(stage, e)
            self.context.status[stage] = StageStatus.READY

        if self._stopping:
            return self._state

        self._transition(PipelineState.TRACKING)
        self._task = asyncio.create_task(self._run())
        return self._state

    async def _initialize_estimation(self):
        await self.context.estimation.initialize()

    async def _initialize_scene(self):
        ctx = self.context
        config = ctx.config

        ctx.scene.setup((config.frame_width, config.frame_height))
        ctx.overlay = await ctx.asset.load(config.asset_path, on_progress=self._on_progress)
        ctx.scene.attach(ctx.overlay)
        ctx.scene.render_frame()

    async def _initialize_capture(self):
        ctx = self.context
        ctx.stream = await ctx.capture.start(ctx.config.frame_width, ctx.config.frame_height)
        ctx.geometry = ctx.stream.geometry
        ctx.frame = ctx.stream.first_frame

    @staticmethod
    def _on_progress(fraction: float):
        logger.debug("Overlay asset %.2f%% loaded", fraction * 100.0)

    # ------------------------------------------------------------------
    # Steady state
    # ------------------------------------------------------------------

    async def step(self) -> bool:
        """
        Run one tracking cycle.

        Returns:
            True if the overlay was moved and rendered, False on a miss
        """
        ctx = self.context
        ctx.cycles += 1

        frame = await ctx.capture.read()
        if frame is None:
            ctx.misses += 1
            return False
        ctx.frame = frame

        poses = await ctx.estimation.estimate(frame)
        if self._stopping:
            return False

        eyes = find_eyes(poses[0]) if poses else None
        if eyes is None:
            ctx.misses += 1
            return False

        left, right = eyes
        pose = normalized_pose(left, right, ctx.geometry)
        ctx.overlay.set_pose(overlay_transform(pose, ctx.config))

        ctx.scene.render_frame()
        if ctx.config.debug_markers:
            ctx.scene.annotate_eyes(left, right, ctx.geometry)

        ctx.updates += 1
        logger.debug("Eye distance: %.2f  scale: %.3f  position: (%.3f, %.3f, %.3f)",
                     pose.interocular_distance, ctx.overlay.transform.scale,
                     *ctx.overlay.transform.position)
        return True

    async def _run(self):
        ctx = self.context
        try:
            while not self._stopping:
                try:
                    await self.step()
                except Exception as e:
                    # A failed cycle counts as a miss
                    ctx.error = e
                    ctx.errors += 1
                    ctx.misses += 1
                    logger.exception("Tracking cycle %d failed", ctx.cycles)
                if self._stopping:
                    break
                await self.ticker.next_frame()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx.error = e
            logger.exception("Render tick failed; tracking loop aborted")
        logger.info("Tracking loop exited after %d cycles (%d updates)",
                    self.context.cycles, self.context.updates)

    async def wait(self):
        """Block until the tracking loop exits."""
        if self._task is not None:
            await self._task

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def request_stop(self):
        """Ask the loop to finish its current cycle and not schedule another."""
        self._stopping = True

    async def stop(self):
        """
        Tear the pipeline down. Idempotent.

        Lets an in-flight setup stage or cycle finish, releases the camera
        exactly once, then disposes the scene and the pose model.
        """
        if self._torn_down:
            return
        self._torn_down = True
        self.request_stop()

        if self._setup is not None:
            await asyncio.wait({self._setup})
        if self._task is not None:
            await self._task

        ctx = self.context
        ctx.capture.stop()
        ctx.scene.dispose()
        ctx.estimation.close()

        if self._state is not PipelineState.FAILED:
            self._transition(PipelineState.STOPPED)

    async def __aenter__(self) -> "TrackingLoop":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False
