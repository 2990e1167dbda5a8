import asyncio

import pytest

from intrachat.schemas.ws import TypingPayload
from intrachat.services.chats import ChatRef
from intrachat.services.errors import PermissionDeniedError


@pytest.mark.asyncio
async def test_typing_is_relayed_and_expires(hub, dispatcher, people):
    payload = TypingPayload(user_id=people.alice, chat_id=people.bob)
    try:
        await hub.typing.set_typing(people.alice, payload)
        assert dispatcher.types_for(people.bob) == ['userTyping']
        assert hub.typing.is_typing(ChatRef.direct(people.alice, people.bob), people.alice)

        await asyncio.sleep(0.4)

        assert dispatcher.types_for(people.bob) == ['userTyping', 'userStoppedTyping']
        assert not hub.typing.is_typing(ChatRef.direct(people.alice, people.bob), people.alice)
        assert dispatcher.frames_for(people.alice) == []
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_repeated_typing_extends_the_deadline(hub, dispatcher, people):
    payload = TypingPayload(user_id=people.alice, chat_id=people.bob)
    try:
        await hub.typing.set_typing(people.alice, payload)
        await asyncio.sleep(0.12)
        await hub.typing.set_typing(people.alice, payload)
        await asyncio.sleep(0.12)

        assert 'userStoppedTyping' not in dispatcher.types_for(people.bob)
        await asyncio.sleep(0.2)
        assert dispatcher.types_for(people.bob).count('userStoppedTyping') == 1
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_explicit_stop_cancels_forced_expiry(hub, dispatcher, people):
    payload = TypingPayload(user_id=people.alice, chat_id=people.bob)
    try:
        await hub.typing.set_typing(people.alice, payload)
        await hub.typing.clear_typing(people.alice, payload)
        await asyncio.sleep(0.4)

        assert dispatcher.types_for(people.bob) == ['userTyping', 'userStoppedTyping']
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_group_typing_goes_to_other_members(hub, dispatcher, people):
    payload = TypingPayload(user_id=people.bob, chat_id=people.team, is_group=True)
    try:
        await hub.typing.set_typing(people.bob, payload)

        assert dispatcher.types_for(people.alice) == ['userTyping']
        assert dispatcher.types_for(people.carol) == ['userTyping']
        assert dispatcher.frames_for(people.bob) == []
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_last_disconnect_clears_typing(hub, dispatcher, people):
    payload = TypingPayload(user_id=people.alice, chat_id=people.bob)
    try:
        await hub.connect(people.alice, 'conn-1')
        await hub.typing.set_typing(people.alice, payload)
        dispatcher.clear()

        await hub.disconnect('conn-1')

        assert 'userStoppedTyping' in dispatcher.types_for(people.bob)
        assert not hub.typing.is_typing(ChatRef.direct(people.alice, people.bob), people.alice)
    finally:
        await hub.close()


@pytest.mark.asyncio
async def test_cannot_type_as_someone_else(hub, people):
    with pytest.raises(PermissionDeniedError):
        await hub.typing.set_typing(people.alice, TypingPayload(user_id=people.bob, chat_id=people.carol))
