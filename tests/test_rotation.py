"""
Goal: Client rotation controller. Rotation is deferred during playback, `ended`
is paused and resumed around the swap, at most one rotation runs at a time,
and a failed rotation leaves the controller usable.
"""

import asyncio
from typing import List, Optional

import pytest

from tunebridge.client.events import AUTHORIZATION_STATUS_DID_CHANGE, PLAYBACK_STATE_WILL_CHANGE, EventHub
from tunebridge.client.player import PlaybackState, QueueItem
from tunebridge.client.rotation import ControllerState, RotationContext, RotationController, RotationStep, run_pipeline
from tunebridge.errors import TokenExchangeFailed
from tunebridge.models.token import Token, utc_from_timestamp

POLL = 60
TOKEN_LIFETIME = 3600


class FakePlayer:
    def __init__(self, name: str, log: list, token: Token) -> None:
        self.name = name
        self.log = log
        self.token = token
        self.hub = EventHub()
        self.playback_state = PlaybackState.PAUSED
        self.is_authorized = True
        self.volume = 1.0
        self.queue: List[QueueItem] = []
        self.queue_position = 0
        self.current_playback_time = 0.0
        self.fail_on: set = set()

    def subscribe(self, event, handler):
        return self.hub.subscribe(event, handler)

    async def _call(self, op, *args):
        self.log.append((self.name, op) + args)
        if op in self.fail_on:
            raise RuntimeError(f"{op} failed")

    async def set_volume(self, volume):
        await self._call("set_volume", volume)

    async def set_queue(self, item_ids):
        await self._call("set_queue", tuple(item_ids))

    async def change_to_index(self, index):
        await self._call("change_to_index", index)

    async def seek_to_time(self, seconds):
        await self._call("seek_to_time", seconds)

    async def play(self):
        await self._call("play")

    async def pause(self):
        await self._call("pause")

    async def stop(self):
        await self._call("stop")


class FakeSource:
    def __init__(self, clock) -> None:
        self.clock = clock
        self.calls = 0
        self.fail_next = 0
        self.gate: Optional[asyncio.Event] = None
        self.waiting = False

    async def fetch(self) -> Token:
        self.calls += 1
        await asyncio.sleep(0)
        if self.gate is not None:
            self.waiting = True
            await self.gate.wait()
        if self.fail_next:
            self.fail_next -= 1
            raise TokenExchangeFailed("server down")
        now = self.clock()
        return Token(
            value=f"token-{self.calls}",
            issued_at=utc_from_timestamp(now),
            expires_at=utc_from_timestamp(now + TOKEN_LIFETIME),
        )


class FakeFactory:
    def __init__(self, log: list) -> None:
        self.log = log
        self.players: List[FakePlayer] = []
        self.fail_on: set = set()
        self.fail_build = False
        self.gate: Optional[asyncio.Event] = None
        self.waiting = False

    async def __call__(self, token: Token) -> FakePlayer:
        if self.gate is not None:
            self.waiting = True
            await self.gate.wait()
        if self.fail_build:
            raise RuntimeError("sdk failed to load")
        player = FakePlayer(f"p{len(self.players)}", self.log, token)
        player.fail_on = set(self.fail_on)
        self.players.append(player)
        return player


class Harness:
    def __init__(self, clock) -> None:
        self.clock = clock
        self.log: list = []
        self.source = FakeSource(clock)
        self.factory = FakeFactory(self.log)
        self.controller = RotationController(self.source, self.factory, poll_interval=POLL, clock=clock)

    @property
    def player(self) -> Optional[FakePlayer]:
        return self.controller.player

    def ops(self, name):
        return [entry[1:] for entry in self.log if entry[0] == name]

    def near_expiry(self):
        # Under the 2 * poll threshold
        self.clock.advance(TOKEN_LIFETIME - POLL)


@pytest.fixture
def h(clock):
    harness = Harness(clock)
    assert asyncio.run(harness.controller.credentials_configured())
    return harness


def _load_queue(player):
    player.volume = 0.4
    player.queue = [QueueItem("s1"), QueueItem("v1", "music-video"), QueueItem("s2", "songs"), QueueItem("s3")]
    player.queue_position = 2
    player.current_playback_time = 73.5


def test_configure_reaches_ready(h):
    c = h.controller
    assert c.state is ControllerState.READY
    assert c.token.value == "token-1"
    assert c.is_authorized is True
    assert c.subscription_count == 2
    assert h.player.hub.listener_count(PLAYBACK_STATE_WILL_CHANGE) == 1


def test_configure_failure_then_retry(clock):
    harness = Harness(clock)
    harness.factory.fail_build = True
    assert asyncio.run(harness.controller.credentials_configured()) is False
    assert harness.controller.state is ControllerState.FAILED
    assert harness.controller.error == "sdk failed to load"

    harness.factory.fail_build = False
    assert asyncio.run(harness.controller.credentials_configured()) is True
    assert harness.controller.state is ControllerState.READY
    assert harness.controller.error is None


def test_fresh_token_is_left_alone(h):
    h.clock.advance(TOKEN_LIFETIME - 2 * POLL)  # exactly at the threshold
    asyncio.run(h.controller.check_freshness())
    assert h.source.calls == 1
    assert h.controller.flags.reconfiguration_required is False


def test_idle_player_rotates_and_restores_snapshot(h):
    old = h.player
    _load_queue(old)
    h.near_expiry()

    asyncio.run(h.controller.check_freshness())

    new = h.player
    assert new is not old
    assert h.controller.token.value == "token-2"
    assert h.controller.rotations == 1
    assert h.ops("p0") == [("stop",)]
    assert h.ops("p1") == [
        ("set_volume", 0.4),
        ("set_queue", ("s1", "s2", "s3")),
        ("change_to_index", 2),
        ("seek_to_time", 73.5),
    ]
    # Old instance is fully detached, new one is listened to
    assert old.hub.listener_count(PLAYBACK_STATE_WILL_CHANGE) == 0
    assert new.hub.listener_count(PLAYBACK_STATE_WILL_CHANGE) == 1
    assert h.controller.state is ControllerState.READY
    assert h.controller.flags.reconfiguring is False


def test_empty_queue_restores_volume_only(h):
    h.player.volume = 0.7
    h.near_expiry()
    asyncio.run(h.controller.check_freshness())
    assert h.ops("p1") == [("set_volume", 0.7)]


def test_playing_defers_rotation(h):
    old = h.player
    old.playback_state = PlaybackState.PLAYING
    h.near_expiry()

    asyncio.run(h.controller.check_freshness())
    assert h.controller.flags.reconfiguration_required is True
    assert h.controller.token.value == "token-1"
    assert h.source.calls == 1

    # Still busy: keep waiting
    asyncio.run(old.hub.emit(PLAYBACK_STATE_WILL_CHANGE, "stalled"))
    assert h.source.calls == 1

    asyncio.run(old.hub.emit(PLAYBACK_STATE_WILL_CHANGE, "paused"))
    assert h.source.calls == 2
    assert h.controller.token.value == "token-2"
    assert h.controller.flags.reconfiguration_required is False
    assert ("play",) not in h.ops("p1")


def test_state_change_without_pending_rotation_is_ignored(h):
    asyncio.run(h.player.hub.emit(PLAYBACK_STATE_WILL_CHANGE, "paused"))
    assert h.source.calls == 1


def test_ended_pauses_rotates_then_resumes_on_new_player(h):
    old = h.player
    _load_queue(old)
    old.playback_state = PlaybackState.PLAYING
    h.near_expiry()
    asyncio.run(h.controller.check_freshness())

    asyncio.run(old.hub.emit(PLAYBACK_STATE_WILL_CHANGE, PlaybackState.ENDED))

    assert h.ops("p0") == [("pause",), ("stop",)]
    assert h.ops("p1")[-1] == ("play",)
    assert ("play",) not in h.ops("p0")
    # pause happened before anything touched the new instance
    assert h.log.index(("p0", "pause")) < h.log.index(("p1", "set_volume", 0.4))


def test_single_flight(h):
    c = h.controller
    c.flags.reconfiguration_required = True
    h.near_expiry()

    async def race():
        return await asyncio.gather(
            c.check_freshness(),
            c.handle_state_will_change("paused"),
            c.rotate(),
        )

    asyncio.run(race())
    assert h.source.calls == 2  # configure + exactly one rotation
    assert h.ops("p0") == [("stop",)]
    assert len(h.factory.players) == 2
    assert c.rotations == 1


def test_failed_token_fetch_keeps_old_player_and_resets_flags(h):
    old = h.player
    old.playback_state = PlaybackState.PLAYING
    h.near_expiry()
    asyncio.run(h.controller.check_freshness())
    h.source.fail_next = 1

    asyncio.run(old.hub.emit(PLAYBACK_STATE_WILL_CHANGE, "paused"))

    c = h.controller
    assert c.state is ControllerState.READY
    assert c.flags.reconfiguration_required is False
    assert c.flags.reconfiguring is False
    assert c.last_failure.step == "fetch-token"
    assert c.player is old
    assert c.token.value == "token-1"
    # Still listening to the old instance, so the next trigger can retry
    assert old.hub.listener_count(PLAYBACK_STATE_WILL_CHANGE) == 1

    old.playback_state = PlaybackState.PAUSED
    asyncio.run(c.check_freshness())
    assert c.rotations == 1
    assert c.player is not old


def test_failed_restore_step_adopts_new_player(h):
    _load_queue(h.player)
    h.factory.fail_on = {"set_queue"}
    h.near_expiry()

    asyncio.run(h.controller.check_freshness())

    c = h.controller
    assert c.last_failure.step == "restore-queue"
    assert c.player is h.factory.players[1]
    assert c.token.value == "token-2"
    assert c.state is ControllerState.READY
    assert c.rotations == 0
    # best effort stops at the first failure
    assert [op[0] for op in h.ops("p1")] == ["set_volume", "set_queue"]


def test_authorization_status_is_mirrored(h):
    h.player.is_authorized = False
    asyncio.run(h.player.hub.emit(AUTHORIZATION_STATUS_DID_CHANGE))
    assert h.controller.is_authorized is False


def test_rotation_steps_are_listed_in_order(h):
    names = [s.name for s in h.controller.rotation_steps(pause_first=True, resume_after=True)]
    assert names == [
        "pause",
        "capture-snapshot",
        "teardown",
        "fetch-token",
        "build-player",
        "restore-volume",
        "restore-queue",
        "restore-position",
        "restore-time",
        "resume",
    ]


def test_poll_task_rotates_and_close_tears_down(clock):
    harness = Harness(clock)
    controller = RotationController(
        harness.source, harness.factory, poll_interval=0.01, refresh_threshold=TOKEN_LIFETIME + 1, clock=clock
    )

    async def run():
        await controller.credentials_configured()
        controller.start()
        await asyncio.sleep(0.1)
        first = controller.player
        await controller.close()
        return first

    first = asyncio.run(run())
    assert controller.rotations >= 1
    assert controller.state is ControllerState.UNCONFIGURED
    assert controller.player is None
    assert controller.subscription_count == 0
    assert first.hub.listener_count(PLAYBACK_STATE_WILL_CHANGE) == 0


async def _wait_for(flag):
    while not flag():
        await asyncio.sleep(0)


def test_close_while_building_player_discards_it(h):
    c = h.controller
    old = h.player
    old.playback_state = PlaybackState.PLAYING
    h.near_expiry()
    asyncio.run(c.check_freshness())

    async def run():
        h.factory.gate = asyncio.Event()
        task = asyncio.create_task(old.hub.emit(PLAYBACK_STATE_WILL_CHANGE, "paused"))
        await _wait_for(lambda: h.factory.waiting)
        await c.close()
        h.factory.gate.set()
        await task

    asyncio.run(run())

    assert c.state is ControllerState.UNCONFIGURED
    assert c.player is None
    assert c.token is None
    assert c.subscription_count == 0
    assert c.rotations == 0
    assert c.flags.reconfiguring is False
    assert c.flags.reconfiguration_required is False
    # The late player is stopped, never listened to
    assert len(h.factory.players) == 2
    assert h.ops("p1") == [("stop",)]
    assert h.factory.players[1].hub.listener_count(PLAYBACK_STATE_WILL_CHANGE) == 0

    h.factory.gate = None
    assert asyncio.run(c.credentials_configured()) is True
    assert c.state is ControllerState.READY
    assert c.player is h.factory.players[2]


def test_close_while_fetching_token_stops_the_rotation(h):
    c = h.controller
    h.near_expiry()

    async def run():
        h.source.gate = asyncio.Event()
        task = asyncio.create_task(c.check_freshness())
        await _wait_for(lambda: h.source.waiting)
        await c.close()
        h.source.gate.set()
        await task

    asyncio.run(run())

    assert c.state is ControllerState.UNCONFIGURED
    assert c.player is None
    assert c.subscription_count == 0
    assert len(h.factory.players) == 1
    assert c.last_failure is None


def test_close_during_configure_discards_player(clock):
    harness = Harness(clock)
    c = harness.controller

    async def run():
        harness.source.gate = asyncio.Event()
        task = asyncio.create_task(c.configure())
        await _wait_for(lambda: harness.source.waiting)
        await c.close()
        harness.source.gate.set()
        return await task

    assert asyncio.run(run()) is False
    assert c.state is ControllerState.UNCONFIGURED
    assert c.player is None
    assert c.subscription_count == 0
    assert harness.ops("p0") == [("stop",)]


def test_step_missing_its_input_is_a_named_failure(h):
    ctx = RotationContext(old_player=h.player)
    steps = [RotationStep("restore-volume", h.controller._restore_volume)]

    failure = asyncio.run(run_pipeline(steps, ctx))

    assert failure.step == "restore-volume"
    assert isinstance(failure.cause, RuntimeError)

    failure = asyncio.run(run_pipeline([RotationStep("build-player", h.controller._build_player)], ctx))
    assert failure.step == "build-player"
    assert len(h.factory.players) == 1


def test_pipeline_stops_once_no_longer_live(h):
    ctx = RotationContext(old_player=h.player)
    steps = h.controller.rotation_steps()

    assert asyncio.run(run_pipeline(steps, ctx, lambda: False)) is None
    assert ctx.snapshot is None
    assert h.log == []
