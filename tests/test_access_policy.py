"""Access policy predicates, existence masking and channel authorization."""

from __future__ import annotations

import pytest

from huddle.realtime.channels import AuthorizationDecision

from app.core.errors import Conflict, Forbidden, NotFound
from app.models import ChannelVisibility, Message
from app.services import access


@pytest.fixture()
def scenario(db_session, make_user, make_channel):
    owner = make_user("owner", "Owner")
    member = make_user("member", "Member")
    outsider = make_user("outsider", "Outsider")
    public = make_channel(owner, "lobby", members=(member,))
    private = make_channel(owner, "secret", visibility=ChannelVisibility.PRIVATE, members=(member,))
    return owner, member, outsider, public, private


def test_membership_predicates(db_session, scenario):
    owner, member, outsider, public, private = scenario

    assert access.can_read(db_session, member.id, private)
    assert access.can_post(db_session, member.id, public)
    assert not access.can_read(db_session, outsider.id, public)
    assert not access.can_subscribe(db_session, outsider.id, private)
    assert access.can_join(db_session, outsider.id, public)
    assert not access.can_join(db_session, outsider.id, private)
    assert not access.can_join(db_session, member.id, public)


def test_update_and_delete_belong_to_creator(scenario):
    owner, member, _outsider, public, _private = scenario

    assert access.can_update_channel(owner.id, public)
    assert not access.can_update_channel(member.id, public)
    assert access.can_delete_channel(owner.id, public)
    assert not access.can_delete_channel(member.id, public)


def test_can_moderate_author_creator_or_admin(db_session, make_user, scenario):
    owner, member, outsider, public, _private = scenario
    message = Message(channel_id=public.id, author_id=member.id, content="hi")
    db_session.add(message)
    db_session.commit()

    assert access.can_moderate(db_session, member.id, message)
    assert access.can_moderate(db_session, owner.id, message)
    assert not access.can_moderate(db_session, outsider.id, message)


def test_private_channel_denials_are_masked(db_session, scenario):
    _owner, _member, outsider, _public, private = scenario

    with pytest.raises(NotFound) as read_exc:
        access.ensure_can_read(db_session, outsider.id, private)
    with pytest.raises(NotFound):
        access.ensure_can_post(db_session, outsider.id, private)
    with pytest.raises(NotFound):
        access.ensure_can_join(db_session, outsider.id, private)
    with pytest.raises(NotFound) as load_exc:
        access.load_channel_for(db_session, private.id, outsider.id)

    assert read_exc.value.detail == access.CHANNEL_NOT_FOUND
    assert load_exc.value.detail == access.CHANNEL_NOT_FOUND


def test_public_channel_denials_are_forbidden(db_session, scenario):
    _owner, member, outsider, public, _private = scenario

    with pytest.raises(Forbidden):
        access.ensure_can_post(db_session, outsider.id, public)
    with pytest.raises(Forbidden):
        access.ensure_can_update_channel(db_session, member.id, public)
    with pytest.raises(Conflict):
        access.ensure_can_join(db_session, member.id, public)


def test_load_message_hides_private_channels(db_session, scenario):
    owner, _member, outsider, _public, private = scenario
    message = Message(channel_id=private.id, author_id=owner.id, content="classified")
    db_session.add(message)
    db_session.commit()

    with pytest.raises(NotFound) as exc:
        access.load_message(db_session, message.id, outsider.id)

    assert exc.value.detail == access.MESSAGE_NOT_FOUND
    assert access.load_message(db_session, message.id, owner.id).id == message.id


def test_authorize_channel_decisions(db_session, scenario):
    owner, member, outsider, public, private = scenario

    presence = access.authorize_channel(db_session, member, f"presence-channel.{private.id}")
    assert presence.decision is AuthorizationDecision.ALLOW_WITH_METADATA
    assert presence.metadata == {"id": member.id, "name": "Member", "avatar_url": None}

    feed = access.authorize_channel(db_session, member, f"private-channel.{public.id}")
    assert feed.decision is AuthorizationDecision.ALLOW

    assert not access.authorize_channel(db_session, outsider, f"private-channel.{public.id}").allowed
    assert not access.authorize_channel(db_session, outsider, f"presence-channel.{private.id}").allowed
    assert not access.authorize_channel(db_session, member, "private-channel.9999").allowed


def test_authorize_user_and_online_channels(db_session, scenario):
    owner, member, _outsider, _public, _private = scenario

    assert access.authorize_channel(db_session, owner, f"private-user.{owner.id}").allowed
    assert not access.authorize_channel(db_session, owner, f"private-user.{member.id}").allowed

    online = access.authorize_channel(db_session, member, "presence-online")
    assert online.decision is AuthorizationDecision.ALLOW_WITH_METADATA
    assert online.metadata["id"] == member.id

    assert not access.authorize_channel(db_session, member, "bogus-name").allowed
