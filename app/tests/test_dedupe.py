"""Tests for the inbound deduplicator."""

from nova.turn.contracts import InputOptions, Turn
from nova.turn.dedupe import InboundDeduplicator, fingerprint, normalize_inbound_text


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _turn(text: str, message_id: str = "", sender: str = "alex", source: str = "hud") -> Turn:
    return Turn.from_input(
        text, InputOptions(source=source, sender=sender, inbound_message_id=message_id)
    )


def test_normalization_ignores_case_width_and_spacing():
    assert normalize_inbound_text("  Hello\u200b   WORLD ") == "hello world"
    assert fingerprint("Hello world") == fingerprint("hello   WORLD\ufeff")


def test_same_text_within_window_is_skipped():
    clock = FakeClock()
    dedupe = InboundDeduplicator(short_window_s=6, clock=clock)
    assert dedupe.should_skip(_turn("what's up")) is False
    clock.now += 2
    assert dedupe.should_skip(_turn("What's   up")) is True


def test_same_text_after_window_is_accepted():
    clock = FakeClock()
    dedupe = InboundDeduplicator(short_window_s=6, clock=clock)
    assert dedupe.should_skip(_turn("hello")) is False
    clock.now += 7
    assert dedupe.should_skip(_turn("hello")) is False


def test_message_id_window_outlives_content_window():
    clock = FakeClock()
    dedupe = InboundDeduplicator(short_window_s=6, long_window_s=900, clock=clock)
    assert dedupe.should_skip(_turn("ping", message_id="m1")) is False
    clock.now += 300
    assert dedupe.should_skip(_turn("ping", message_id="m1")) is True
    clock.now += 700
    assert dedupe.should_skip(_turn("ping", message_id="m1")) is False


def test_scopes_are_independent():
    dedupe = InboundDeduplicator(clock=FakeClock())
    assert dedupe.should_skip(_turn("hi", sender="alex")) is False
    assert dedupe.should_skip(_turn("hi", sender="sam")) is False
    assert dedupe.should_skip(_turn("hi", sender="alex", source="telegram")) is False


def test_empty_text_is_never_a_duplicate():
    dedupe = InboundDeduplicator(clock=FakeClock())
    assert dedupe.should_skip(_turn("   ")) is False
    assert dedupe.should_skip(_turn("   ")) is False
    assert len(dedupe) == 0


def test_store_is_bounded():
    clock = FakeClock()
    dedupe = InboundDeduplicator(max_entries=16, clock=clock)
    for i in range(50):
        clock.now += 0.01
        dedupe.should_skip(_turn(f"message {i}"))
    assert len(dedupe) <= 16
