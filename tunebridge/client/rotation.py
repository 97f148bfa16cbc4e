"""
Client token-rotation controller.

Keeps a player configured with a live token without cutting audio off:

    UNCONFIGURED -> CONFIGURING -> READY <-> RECONFIGURING
                         |
                         +-> FAILED (retry by configuring again)

A poll task checks the token's remaining lifetime. When it runs low and the
player is idle, the controller rotates right away. When the player is busy
(loading, playing, seeking, waiting, stalled) it only raises
``reconfiguration_required`` and waits for the player's next
"state will change" event. An incoming ``ended`` is special: pause first so
the player cannot auto-advance during the swap, rotate, then resume on the
new player.

A rotation is a fixed list of named steps run in order. The first failing
step stops the run; the failure is logged and both flags are reset so the
next tick can try again. At most one rotation runs at a time: the flag is
claimed before the first await of any rotation path.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from loguru import logger

from tunebridge import settings
from tunebridge.client.events import (
    AUTHORIZATION_STATUS_DID_CHANGE,
    PLAYBACK_STATE_WILL_CHANGE,
    Subscriptions,
)
from tunebridge.client.player import (
    ACTIVE_STATES,
    MediaPlayer,
    PlaybackSnapshot,
    PlaybackState,
    PlayerFactory,
    capture_snapshot,
)
from tunebridge.client.tokens import TokenSource
from tunebridge.errors import RotationFailed
from tunebridge.models.token import Token


class ControllerState(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURING = "configuring"
    READY = "ready"
    RECONFIGURING = "reconfiguring"
    FAILED = "failed"


@dataclass
class RotationFlags:
    reconfiguration_required: bool = False
    reconfiguring: bool = False

    def claim(self) -> bool:
        """Take the single-flight slot. Check and set happen with no await in between."""
        if self.reconfiguring:
            return False
        self.reconfiguring = True
        return True

    def release(self) -> None:
        self.reconfiguring = False
        self.reconfiguration_required = False


# ---- Rotation pipeline -------------------------------------------------------


@dataclass
class RotationContext:
    old_player: MediaPlayer
    generation: int = 0
    snapshot: Optional[PlaybackSnapshot] = None
    token: Optional[Token] = None
    player: Optional[MediaPlayer] = None


@dataclass(frozen=True)
class RotationStep:
    name: str
    run: Callable[[RotationContext], Awaitable[None]]


async def run_pipeline(
    steps: Sequence[RotationStep],
    ctx: RotationContext,
    is_live: Callable[[], bool] = lambda: True,
) -> Optional[RotationFailed]:
    """Run steps in order; return the first failure instead of raising it.

    Stops quietly before the next step once `is_live` turns false.
    """
    for step in steps:
        if not is_live():
            return None
        try:
            await step.run(ctx)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            return RotationFailed(step.name, exc)
    return None


# ---- Controller --------------------------------------------------------------


class RotationController:
    def __init__(
        self,
        token_source: TokenSource,
        player_factory: PlayerFactory,
        poll_interval: float = settings.POLL_INTERVAL,
        refresh_threshold: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = token_source
        self._factory = player_factory
        self.poll_interval = poll_interval
        self.refresh_threshold = refresh_threshold if refresh_threshold is not None else 2 * poll_interval
        self._clock = clock

        self.state = ControllerState.UNCONFIGURED
        self.flags = RotationFlags()
        self.player: Optional[MediaPlayer] = None
        self.token: Optional[Token] = None
        self.error: Optional[str] = None
        self.is_authorized = False
        self.rotations = 0
        self.last_failure: Optional[RotationFailed] = None

        self._subscriptions = Subscriptions()
        self._poll_task: Optional[asyncio.Task] = None
        # Bumped by close(); work started under an older generation must not touch state
        self._generation = 0

    def _is_live(self, generation: int) -> bool:
        return self._generation == generation

    # ---- configuration ----

    async def credentials_configured(self) -> bool:
        """Signal from the credentials form. Configures unless already configured."""
        if self.state in (ControllerState.UNCONFIGURED, ControllerState.FAILED):
            return await self.configure()
        return self.state is ControllerState.READY

    async def configure(self) -> bool:
        if self.state in (ControllerState.CONFIGURING, ControllerState.RECONFIGURING):
            return False
        generation = self._generation
        self.state = ControllerState.CONFIGURING
        self.error = None
        try:
            token = await self._source.fetch()
            player = await self._factory(token)
        except Exception as exc:  # noqa: BLE001
            if not self._is_live(generation):
                return False
            logger.exception("Player initialization failed")
            self.error = str(exc) or type(exc).__name__
            self.state = ControllerState.FAILED
            return False

        if not self._is_live(generation):
            logger.info("Controller closed during initialization; player discarded")
            await player.stop()
            return False

        self._adopt(player, token)
        self.state = ControllerState.READY
        logger.info("Player initialized (token expires {})", token.expires_at.isoformat())
        return True

    def _attach(self, player: MediaPlayer) -> None:
        self._subscriptions.release()
        self._subscriptions.add(player.subscribe(PLAYBACK_STATE_WILL_CHANGE, self.handle_state_will_change))
        self._subscriptions.add(player.subscribe(AUTHORIZATION_STATUS_DID_CHANGE, self.handle_authorization_change))

    def _adopt(self, player: MediaPlayer, token: Token) -> None:
        self.player = player
        self.token = token
        self.is_authorized = bool(player.is_authorized)
        self._attach(player)

    # ---- timer ----

    def start(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.check_freshness()
            except Exception:  # noqa: BLE001
                logger.exception("Token freshness check failed")

    async def close(self, stop_player: bool = False) -> None:
        """Logout/unmount: stop the timer and drop every subscription on the current player.

        A rotation or configuration still in flight is abandoned: it finishes its
        current await, then stops without adopting anything.
        """
        self._generation += 1
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._subscriptions.release()
        player, self.player = self.player, None
        if stop_player and player is not None:
            await player.stop()
        self.token = None
        self.is_authorized = False
        self.flags = RotationFlags()
        self.state = ControllerState.UNCONFIGURED

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    # ---- triggers ----

    async def check_freshness(self) -> None:
        """Timer tick: rotate now if idle, otherwise defer to the next state change."""
        if self.state is not ControllerState.READY or self.token is None or self.player is None:
            return
        remaining = self.token.seconds_remaining(self._clock())
        if remaining >= self.refresh_threshold:
            return
        if PlaybackState.coerce(self.player.playback_state) in ACTIVE_STATES:
            if not self.flags.reconfiguration_required:
                logger.info("Token expires in {:.0f}s during playback; rotation deferred", remaining)
            self.flags.reconfiguration_required = True
            return
        await self.rotate()

    async def handle_state_will_change(self, incoming: Any) -> None:
        if not self.flags.reconfiguration_required or self.flags.reconfiguring:
            return
        incoming = PlaybackState.coerce(incoming)
        if incoming in ACTIVE_STATES:
            return
        if incoming is PlaybackState.ENDED:
            await self.rotate(pause_first=True, resume_after=True)
        else:
            await self.rotate()

    def handle_authorization_change(self, *_: Any) -> None:
        if self.player is not None:
            self.is_authorized = bool(self.player.is_authorized)

    # ---- rotation ----

    async def rotate(self, pause_first: bool = False, resume_after: bool = False) -> bool:
        """Swap in a new player with a fresh token. Never raises; returns whether it completed."""
        if self.player is None:
            return False
        if not self.flags.claim():
            logger.debug("Rotation already in flight; ignoring trigger")
            return False

        generation = self._generation
        self.state = ControllerState.RECONFIGURING
        ctx = RotationContext(old_player=self.player, generation=generation)
        logger.info("Rotating token")
        try:
            failure = await run_pipeline(
                self.rotation_steps(pause_first, resume_after), ctx, lambda: self._is_live(generation)
            )
            if not self._is_live(generation):
                logger.info("Controller closed during rotation; abandoned")
                return False
            if failure is not None and ctx.player is None:
                # Keep listening on the old player so the next attempt can still be triggered
                self._attach(ctx.old_player)
        finally:
            # close() already reset flags and state for a stale generation
            if self._is_live(generation):
                self.flags.release()
                if self.state is ControllerState.RECONFIGURING:
                    self.state = ControllerState.READY

        if failure is not None:
            self.last_failure = failure
            logger.error("Token rotation failed: {}", failure)
            return False

        self.rotations += 1
        logger.info("Token rotated (expires {})", self.token.expires_at.isoformat() if self.token else "?")
        return True

    def rotation_steps(self, pause_first: bool = False, resume_after: bool = False) -> List[RotationStep]:
        steps: List[RotationStep] = []
        if pause_first:
            steps.append(RotationStep("pause", self._pause))
        steps += [
            RotationStep("capture-snapshot", self._capture),
            RotationStep("teardown", self._teardown),
            RotationStep("fetch-token", self._fetch_token),
            RotationStep("build-player", self._build_player),
            RotationStep("restore-volume", self._restore_volume),
            RotationStep("restore-queue", self._restore_queue),
            RotationStep("restore-position", self._restore_position),
            RotationStep("restore-time", self._restore_time),
        ]
        if resume_after:
            steps.append(RotationStep("resume", self._resume))
        return steps

    @staticmethod
    def _restore_target(ctx: RotationContext) -> Tuple[MediaPlayer, PlaybackSnapshot]:
        if ctx.player is None or ctx.snapshot is None:
            raise RuntimeError("no new player or snapshot to restore")
        return ctx.player, ctx.snapshot

    async def _pause(self, ctx: RotationContext) -> None:
        await ctx.old_player.pause()

    async def _capture(self, ctx: RotationContext) -> None:
        ctx.snapshot = capture_snapshot(ctx.old_player)

    async def _teardown(self, ctx: RotationContext) -> None:
        self._subscriptions.release()
        await ctx.old_player.stop()

    async def _fetch_token(self, ctx: RotationContext) -> None:
        ctx.token = await self._source.fetch()

    async def _build_player(self, ctx: RotationContext) -> None:
        if ctx.token is None:
            raise RuntimeError("no token to build a player with")
        player = await self._factory(ctx.token)
        if not self._is_live(ctx.generation):
            await player.stop()
            return
        ctx.player = player
        self._adopt(player, ctx.token)

    async def _restore_volume(self, ctx: RotationContext) -> None:
        player, snapshot = self._restore_target(ctx)
        await player.set_volume(snapshot.volume)

    async def _restore_queue(self, ctx: RotationContext) -> None:
        player, snapshot = self._restore_target(ctx)
        if snapshot.has_queue:
            await player.set_queue(list(snapshot.queue_item_ids))

    async def _restore_position(self, ctx: RotationContext) -> None:
        player, snapshot = self._restore_target(ctx)
        if snapshot.has_queue:
            last = len(snapshot.queue_item_ids) - 1
            await player.change_to_index(min(snapshot.queue_position, last))

    async def _restore_time(self, ctx: RotationContext) -> None:
        player, snapshot = self._restore_target(ctx)
        if snapshot.has_queue:
            await player.seek_to_time(snapshot.current_time_seconds)

    async def _resume(self, ctx: RotationContext) -> None:
        if ctx.player is None:
            raise RuntimeError("no new player to resume")
        await ctx.player.play()
