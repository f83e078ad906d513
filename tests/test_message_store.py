from counselor.chat.state import (
    ChatRole,
    ChatTurn,
    MessageStore,
    TurnStatus,
    serialize_turns,
    turn_from_record,
)


def _turn(role, content, status=TurnStatus.DONE):
    return ChatTurn(role=role, content=content, status=status)


def test_append_keeps_order_and_notifies():
    store = MessageStore()
    seen = []
    store.subscribe(seen.append)

    store.append(_turn(ChatRole.USER, "a"), _turn(ChatRole.ASSISTANT, "", TurnStatus.PENDING))

    assert [t.content for t in store.snapshot()] == ["a", ""]
    assert len(seen) == 1
    assert store.has_pending()


def test_update_last_only_patches_matching_role():
    store = MessageStore([_turn(ChatRole.USER, "질문")])

    assert store.update_last(ChatRole.ASSISTANT, content="x") is False
    assert store.last.content == "질문"

    store.append(_turn(ChatRole.ASSISTANT, "", TurnStatus.PENDING))
    original_id = store.last.id
    assert store.update_last(ChatRole.ASSISTANT, content="답", status=TurnStatus.DONE)
    assert store.last.content == "답"
    assert store.last.status == TurnStatus.DONE
    assert store.last.id == original_id
    assert not store.has_pending()


def test_update_last_on_empty_store():
    assert MessageStore().update_last(ChatRole.USER, content="x") is False


def test_snapshot_is_a_copy():
    store = MessageStore([_turn(ChatRole.USER, "a")])
    snap = store.snapshot()
    snap.append(_turn(ChatRole.USER, "b"))
    assert len(store) == 1


def test_serialize_done_needs_two_turns():
    store = MessageStore([_turn(ChatRole.ASSISTANT, "인사")])
    assert store.serialize_done() == ""

    store.append(_turn(ChatRole.USER, "힘들어요"), _turn(ChatRole.ASSISTANT, "", TurnStatus.PENDING))
    assert store.serialize_done() == "상담사: 인사\n사용자: 힘들어요"


def test_serialize_skips_error_turns():
    turns = [
        _turn(ChatRole.USER, "a"),
        _turn(ChatRole.ASSISTANT, "실패", TurnStatus.ERROR),
        _turn(ChatRole.ASSISTANT, "b"),
    ]
    assert serialize_turns(turns) == "사용자: a\n상담사: b"


def test_first_done_user_content():
    store = MessageStore(
        [
            _turn(ChatRole.ASSISTANT, "인사"),
            _turn(ChatRole.USER, "첫 질문"),
            _turn(ChatRole.USER, "둘째"),
        ]
    )
    assert store.first_done_user_content() == "첫 질문"
    assert store.has_done_user_turn()
    assert MessageStore().first_done_user_content() == ""


def test_record_round_trip_uses_camel_case():
    turn = _turn(ChatRole.USER, "hi")
    record = turn.to_record()
    assert record["createdAt"] == turn.created_at
    assert record["role"] == "user"
    assert turn_from_record(record) == turn
