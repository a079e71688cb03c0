import asyncio


async def test_creator_is_member_of_new_room(relay, connect):
    x = await connect()
    created = await x.create_room()

    assert set(created) == {"passcode", "roomId", "expireAt", "token"}
    assert len(created["passcode"]) == 6
    assert x.session.room_id == created["roomId"]
    room = relay.registry.get(created["passcode"])
    assert room.connection_ids() == [x.connection_id]
    assert created["expireAt"] == room.expire_at_ms
    assert relay.scheduler.has_expiry(room.room_id)


async def test_second_client_joins_with_passcode(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()
    x.ws.clear()

    await y.join(passcode=created["passcode"], name="Bob")

    success = y.ws.data("joinSuccess")
    assert len(success) == 1
    assert success[0]["roomId"] == created["roomId"]
    assert success[0]["passcode"] == created["passcode"]
    assert success[0]["expireAt"] == created["expireAt"]
    assert success[0]["token"] != created["token"]
    assert x.ws.system_messages() == ["Bob joined."]
    # the joiner is not told about itself
    assert y.ws.system_messages() == []
    assert y.session.name == "Bob"


async def test_join_by_room_id(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()

    await y.join(roomId=created["roomId"])

    assert y.ws.data("joinSuccess")[0]["roomId"] == created["roomId"]
    assert x.ws.system_messages() == ["Anonymous joined."]


async def test_numeric_passcode_is_accepted(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()

    await y.join(passcode=int(created["passcode"]))

    assert y.ws.data("joinSuccess")


async def test_third_client_is_rejected(relay, connect):
    x = await connect()
    y = await connect()
    z = await connect()
    created = await x.create_room()
    await y.join(passcode=created["passcode"], name="Bob")
    x.ws.clear()
    y.ws.clear()

    await z.join(passcode=created["passcode"], name="Zed")

    assert z.ws.system_messages() == ["Room is full."]
    assert z.ws.data("joinSuccess") == []
    assert z.session.room_id is None
    assert x.ws.frames == []
    assert y.ws.frames == []
    room = relay.registry.get(created["passcode"])
    assert sorted(room.connection_ids()) == sorted([x.connection_id, y.connection_id])


async def test_invalid_passcode(relay, connect):
    y = await connect()

    await y.join(passcode="000000", name="Bob")
    await y.join(name="Bob")

    assert y.ws.system_messages() == ["Invalid or expired passcode.", "Invalid or expired passcode."]
    assert y.session.room_id is None


async def test_concurrent_joiners_only_one_admitted(relay, connect):
    x = await connect()
    created = await x.create_room()
    joiners = [await connect() for _ in range(5)]

    await asyncio.gather(*(j.join(passcode=created["passcode"]) for j in joiners))

    admitted = [j for j in joiners if j.ws.data("joinSuccess")]
    rejected = [j for j in joiners if j.ws.system_messages() == ["Room is full."]]
    assert len(admitted) == 1
    assert len(rejected) == 4
    assert len(relay.registry.get(created["passcode"]).members) == 2


async def test_rejoin_on_same_connection_is_not_announced(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()
    await y.join(passcode=created["passcode"], name="Bob")
    x.ws.clear()

    await y.join(passcode=created["passcode"], name="Bob")

    assert len(y.ws.data("joinSuccess")) == 2
    assert x.ws.frames == []


async def test_reconnect_with_token_replaces_stale_connection_when_full(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()
    await y.join(passcode=created["passcode"], name="Bob")
    token = y.ws.data("joinSuccess")[0]["token"]
    x.ws.clear()

    # Bob's old socket has not been noticed as dead yet, so the room still looks full
    y2 = await connect()
    await y2.join(passcode=created["passcode"], token=token)

    success = y2.ws.data("joinSuccess")
    assert len(success) == 1
    assert success[0]["token"] == token
    assert y2.session.name == "Bob"
    assert y.session.room_id is None
    await y2.emit("sendMessage", {"message": "still me"})
    assert x.ws.data("newMessage") == [{"message": "still me", "from": "Bob"}]
    x.ws.clear()
    assert y.ws.system_messages() == ["Your session was resumed on another connection."]
    assert x.ws.frames == []
    room = relay.registry.get(created["passcode"])
    assert sorted(room.connection_ids()) == sorted([x.connection_id, y2.connection_id])

    # the stale socket closing later does not disturb the new one
    await y.close()
    await asyncio.sleep(0.1)
    assert x.ws.frames == []
    assert y2.connection_id in relay.registry.get(created["passcode"]).connection_ids()


async def test_unknown_token_counts_as_new_member(relay, connect):
    x = await connect()
    y = await connect()
    z = await connect()
    created = await x.create_room()
    await y.join(passcode=created["passcode"])

    await z.join(passcode=created["passcode"], token="forged")

    assert z.ws.system_messages() == ["Room is full."]


async def test_quit_room_announces_left(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()
    await y.join(passcode=created["passcode"], name="Bob")
    x.ws.clear()

    await y.emit("quitRoom")

    assert x.ws.system_messages() == ["Bob left."]
    assert y.session.room_id is None
    assert relay.registry.get(created["passcode"]).connection_ids() == [x.connection_id]


async def test_quit_without_room(relay, connect):
    y = await connect()

    await y.emit("quitRoom")

    assert y.ws.system_messages() == ["You are not in a room."]


async def test_last_occupant_leaving_deletes_room(relay, connect):
    x = await connect()
    created = await x.create_room()

    await x.emit("quitRoom")

    assert relay.registry.get(created["passcode"]) is None
    assert relay.registry.get_by_id(created["roomId"]) is None
    assert not relay.scheduler.has_expiry(created["roomId"])


async def test_freed_slot_can_be_taken(relay, connect):
    x = await connect()
    y = await connect()
    z = await connect()
    created = await x.create_room()
    await y.join(passcode=created["passcode"], name="Bob")
    await y.emit("quitRoom")

    await z.join(passcode=created["passcode"], name="Zed")

    assert z.ws.data("joinSuccess")


async def test_creating_a_room_leaves_the_previous_one(relay, connect):
    x = await connect()
    y = await connect()
    first = await x.create_room()
    await y.join(passcode=first["passcode"], name="Bob")
    x.ws.clear()

    second = await y.create_room()

    assert second["roomId"] != first["roomId"]
    assert x.ws.system_messages() == ["Bob left."]
    assert y.session.room_id == second["roomId"]
    assert relay.registry.get(first["passcode"]).connection_ids() == [x.connection_id]


async def test_malformed_requests(relay, connect):
    y = await connect()

    await y.emit("joinRoom", "123456")
    await y.emit("dance")
    await relay.handle_frame(y.connection_id, "not json")
    await relay.handle_frame(y.connection_id, '{"data": {}}')

    assert y.ws.system_messages() == [
        "Malformed request.",
        "Unknown event: dance",
        "Malformed request.",
        "Malformed request.",
    ]


async def test_handle_frame_dispatches_events(relay, connect):
    x = await connect()

    await relay.handle_frame(x.connection_id, '{"event": "createRoom"}')

    assert x.ws.data("roomCreated")


async def test_long_display_name_is_truncated(relay, connect):
    x = await connect()
    y = await connect()
    created = await x.create_room()

    await y.join(passcode=created["passcode"], name="  " + "B" * 100 + "  ")

    assert y.session.name == "B" * 32
