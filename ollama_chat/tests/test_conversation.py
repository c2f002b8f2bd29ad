import pytest

from ollama_chat.domain.conversation import ConversationSession
from ollama_chat.domain.exceptions import (
    ExchangeInProgressError,
    ExchangeStateError,
    InvalidInputError,
    NetworkError,
)
from ollama_chat.domain.models import ResponseRecord


def _rec(response="", done=False, context=None):
    return ResponseRecord(model="llama3", created_at="t", response=response, done=done, context=context)


def test_begin_exchange_appends_user_and_open_message():
    s = ConversationSession()
    user, assistant = s.begin_exchange("  Hello \n")
    assert s.state == "streaming"
    assert user.text == "Hello"
    assert user.is_user
    assert user.context == []
    assert assistant.text == ""
    assert s.open_message.id == assistant.id
    assert [m.sender for m in s.messages] == ["user", "assistant"]


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_begin_exchange_rejects_blank_input(text):
    s = ConversationSession()
    with pytest.raises(InvalidInputError):
        s.begin_exchange(text)
    assert s.messages == ()
    assert s.state == "idle"


def test_submit_while_streaming_is_rejected_without_mutation():
    s = ConversationSession()
    s.begin_exchange("first")
    s.apply_record(_rec("par"))
    before = s.messages
    with pytest.raises(ExchangeInProgressError):
        s.begin_exchange("second")
    assert s.messages == before
    assert s.open_message.text == "par"


def test_fragments_concatenate_in_place():
    s = ConversationSession()
    _, assistant = s.begin_exchange("Hello")
    for fragment in ["Hi", " th", "ere", "!"]:
        assert s.apply_record(_rec(fragment)) is None
    assert s.open_message.text == "Hi there!"
    assert s.open_message.id == assistant.id
    assert len(s.messages) == 2


def test_completion_sets_context_and_requests_title_once():
    s = ConversationSession()
    s.begin_exchange("Hello")
    s.apply_record(_rec("Hi"))
    s.apply_record(_rec(" there"))
    done = s.apply_record(_rec(done=True, context=[7, 8, 9]))
    assert done.first_exchange is True
    assert done.seed == "Hello"
    assert done.assistant_message.text == "Hi there"
    assert s.context == [7, 8, 9]
    assert s.state == "idle"
    assert s.open_message is None
    assert s.updated_at is not None

    user, _ = s.begin_exchange("How are you?")
    assert user.context == [7, 8, 9]
    done = s.apply_record(_rec(done=True, context=[7, 8, 9, 10]))
    assert done.first_exchange is False
    assert s.context == [7, 8, 9, 10]


def test_completion_without_context_empties_context_but_title_fires_once():
    s = ConversationSession()
    s.begin_exchange("one")
    assert s.apply_record(_rec(done=True)).first_exchange is True
    assert s.context == []
    s.begin_exchange("two")
    assert s.apply_record(_rec(done=True)).first_exchange is False


def test_accumulator_resets_between_exchanges():
    s = ConversationSession()
    s.begin_exchange("a")
    s.apply_record(_rec("first"))
    s.apply_record(_rec(done=True, context=[1]))
    s.begin_exchange("b")
    s.apply_record(_rec("second"))
    assert s.open_message.text == "second"
    assert s.messages[1].text == "first"


def test_fail_exchange_keeps_partial_text_and_context():
    s = ConversationSession()
    s.begin_exchange("Hello")
    s.apply_record(_rec("Par"))
    partial = s.fail_exchange(NetworkError(code="NETWORK_ERROR", message="reset"))
    assert partial.text == "Par"
    assert s.context == []
    assert s.state == "idle"
    s.begin_exchange("retry")
    assert s.state == "streaming"


def test_apply_record_while_idle_is_programming_error():
    s = ConversationSession()
    with pytest.raises(ExchangeStateError):
        s.apply_record(_rec("x"))
    with pytest.raises(ExchangeStateError):
        s.cancel_exchange()


def test_listeners_receive_events():
    s = ConversationSession()
    events = []
    unsubscribe = s.subscribe(events.append)
    s.begin_exchange("Hello")
    s.apply_record(_rec("Hi"))
    s.apply_record(_rec(done=True, context=[1]))
    unsubscribe()
    s.rename("ignored by listener")
    assert [e.kind for e in events] == ["exchange_started", "delta", "completed"]
    assert events[1].delta_text == "Hi"
    assert events[1].message.text == "Hi"


def test_user_rename_wins_over_generated_title():
    s = ConversationSession(topic="New Chat")
    assert s.apply_generated_title("Greetings") is True
    assert s.topic == "Greetings"
    s.rename("Mine")
    assert s.apply_generated_title("Other") is False
    assert s.topic == "Mine"
