import asyncio

from jojo.context import FileAttachment
from jojo.recorder import TurnRecorder, user_turn_text


def test_user_turn_text_notes_attachments():
    files = [FileAttachment(name="a.txt", content="x", isText=True), FileAttachment(name="b.png")]
    assert user_turn_text("hello") == "hello"
    assert user_turn_text("hello", files) == "hello [Attached 2 file(s)]"
    assert user_turn_text("", files[:1]) == "[Attached 1 file(s)]"


def test_records_user_and_assistant_turns(store):
    recorder = TurnRecorder(store)

    async def run():
        await recorder.record_user_turn(1, "s1", "question", [FileAttachment(name="a.txt")])
        await recorder.record_assistant_turn(1, "s1", "answer")

    asyncio.run(run())
    transcript = store.transcript(1, "s1")
    assert [(m.sender, m.message) for m in transcript] == [
        ("user", "question [Attached 1 file(s)]"),
        ("assistant", "answer"),
    ]
