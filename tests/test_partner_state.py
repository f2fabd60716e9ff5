"""Unit tests for client-side partner presence and typing state."""

import pytest

from partner_state import PartnerState
from reconnect import ReconnectionController, Session
from schemas.frames import presence_frame, typing_frame
from tests.conftest import FakeConnector, FakeSleeper, FakeTransport, until


@pytest.fixture
def partner(clock):
    return PartnerState("u1", typing_timeout=5, clock=clock)


def test_presence_tracks_partner(partner):
    assert partner.online is False

    partner.handle_frame(presence_frame(True, "u2"))
    assert partner.online is True
    assert partner.last_seen is not None

    partner.handle_frame(presence_frame(False, "u2"))
    assert partner.online is False


def test_frames_about_ourselves_are_ignored(partner):
    partner.handle_frame(presence_frame(True, "u1"))
    partner.handle_frame(typing_frame(True, user_id="u1", couple_id="c1"))

    assert partner.online is False
    assert partner.typing is False


def test_typing_start_and_stop(partner):
    partner.handle_frame(typing_frame(True, user_id="u2", couple_id="c1"))
    assert partner.typing is True

    partner.handle_frame(typing_frame(False, user_id="u2", couple_id="c1"))
    assert partner.typing is False


def test_typing_expires_without_refresh(partner, clock):
    partner.handle_frame(typing_frame(True, user_id="u2", couple_id="c1"))
    clock.advance(4)
    assert partner.typing is True

    # A fresh start pushes the expiry out again
    partner.handle_frame(typing_frame(True, user_id="u2", couple_id="c1"))
    clock.advance(4)
    assert partner.typing is True

    clock.advance(1)
    assert partner.typing is False


def test_going_offline_clears_typing(partner):
    partner.handle_frame(typing_frame(True, user_id="u2", couple_id="c1"))
    partner.handle_frame(presence_frame(False, "u2"))

    assert partner.typing is False


@pytest.mark.asyncio
async def test_attached_state_follows_the_connection(partner):
    transport = FakeTransport()
    sleeper = FakeSleeper()
    controller = ReconnectionController("ws://chat.test", connect=FakeConnector(transport), sleep=sleeper)
    partner.attach(controller)
    controller.set_session(Session(user_id="u1", token="t0k"))
    controller.set_room("c1")
    await until(lambda: controller.is_open)

    transport.push(presence_frame(True, "u2").to_json())
    transport.push(typing_frame(True, user_id="u2", couple_id="c1").to_json())
    await until(lambda: partner.typing)
    assert partner.online is True

    transport.drop()
    await until(lambda: sleeper.delays == [1])

    assert partner.typing is False
    await controller.disconnect()
