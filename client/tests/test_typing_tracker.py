import unittest
from typing import Callable, List

from chat_client.typing_tracker import OutboundTyping, TypingTracker


class FakeTimer:
    def __init__(self, clock: "FakeScheduler", due: float, callback: Callable[[], None]) -> None:
        self.clock = clock
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self, self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for timer in list(self.timers):
            if not timer.cancelled and timer.due <= self.now:
                self.timers.remove(timer)
                timer.callback()

    def live(self) -> int:
        return sum(1 for timer in self.timers if not timer.cancelled)


class OutboundTypingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeScheduler()
        self.emitted = []
        self.tracker = TypingTracker(lambda event, peer: self.emitted.append((event, peer)), 3.0, scheduler=self.clock)

    def test_first_keystroke_emits_once(self):
        for text in ("h", "he", "hel"):
            self.tracker.input_changed(text, "bob")
        self.assertEqual(self.emitted, [("typing", "bob")])
        self.assertIs(self.tracker.state, OutboundTyping.TYPING)

    def test_auto_clear_after_inactivity(self):
        self.tracker.input_changed("h", "bob")
        self.clock.advance(2.9)
        self.assertEqual(self.emitted, [("typing", "bob")])
        self.clock.advance(0.2)
        self.assertEqual(self.emitted, [("typing", "bob"), ("stopTyping", "bob")])
        self.assertIs(self.tracker.state, OutboundTyping.IDLE)
        self.assertFalse(self.tracker.timer_pending)

    def test_keystroke_restarts_timer(self):
        self.tracker.input_changed("h", "bob")
        self.clock.advance(2.0)
        self.tracker.input_changed("hi", "bob")
        self.clock.advance(2.0)
        self.assertEqual(self.emitted, [("typing", "bob")])
        self.assertEqual(self.clock.live(), 1)
        self.clock.advance(1.0)
        self.assertEqual(self.emitted[-1], ("stopTyping", "bob"))

    def test_empty_input_stops(self):
        self.tracker.input_changed("h", "bob")
        self.tracker.input_changed("", "bob")
        self.tracker.input_changed("", "bob")
        self.assertEqual(self.emitted, [("typing", "bob"), ("stopTyping", "bob")])
        self.assertEqual(self.clock.live(), 0)

    def test_typing_again_after_idle(self):
        self.tracker.input_changed("h", "bob")
        self.clock.advance(3.0)
        self.tracker.input_changed("ha", "bob")
        self.assertEqual([e for e, _ in self.emitted], ["typing", "stopTyping", "typing"])

    def test_stop_when_idle_is_silent(self):
        self.tracker.stop()
        self.assertEqual(self.emitted, [])

    def test_peer_change_closes_previous_signal(self):
        self.tracker.input_changed("h", "bob")
        self.tracker.input_changed("h", "carol")
        self.assertEqual(self.emitted, [("typing", "bob"), ("stopTyping", "bob"), ("typing", "carol")])

    def test_reset_is_silent_and_releases_timer(self):
        self.tracker.input_changed("h", "bob")
        self.tracker.reset()
        self.clock.advance(10)
        self.assertEqual(self.emitted, [("typing", "bob")])
        self.assertEqual(self.clock.live(), 0)


class RemoteTypingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tracker = TypingTracker(lambda event, peer: None, scheduler=FakeScheduler())

    def test_only_active_selection_is_tracked(self):
        self.assertFalse(self.tracker.remote_typing("carol", "bob"))
        self.assertIsNone(self.tracker.remote)
        self.assertTrue(self.tracker.remote_typing("bob", "bob"))
        self.assertFalse(self.tracker.remote_typing("bob", "bob"))
        self.assertEqual(self.tracker.remote, "bob")

    def test_stop_only_matching_peer(self):
        self.tracker.remote_typing("bob", "bob")
        self.assertFalse(self.tracker.remote_stopped("carol"))
        self.assertTrue(self.tracker.remote_stopped("bob"))
        self.assertIsNone(self.tracker.remote)

    def test_clear_remote(self):
        self.assertFalse(self.tracker.clear_remote())
        self.tracker.remote_typing("bob", "bob")
        self.assertTrue(self.tracker.clear_remote())


class RemoteExpiryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeScheduler()
        self.expired = []
        self.tracker = TypingTracker(
            lambda event, peer: None,
            3.0,
            scheduler=self.clock,
            on_remote_expired=lambda: self.expired.append(self.tracker.remote),
        )

    def test_indicator_expires_after_timeout(self):
        self.tracker.remote_typing("bob", "bob")
        self.clock.advance(2.9)
        self.assertEqual(self.tracker.remote, "bob")
        self.clock.advance(0.2)
        self.assertIsNone(self.tracker.remote)
        self.assertEqual(self.expired, [None])
        self.assertFalse(self.tracker.remote_timer_pending)

    def test_repeated_typing_restarts_expiry(self):
        self.tracker.remote_typing("bob", "bob")
        self.clock.advance(2.0)
        self.tracker.remote_typing("bob", "bob")
        self.clock.advance(2.0)
        self.assertEqual(self.tracker.remote, "bob")
        self.assertEqual(self.clock.live(), 1)
        self.clock.advance(1.1)
        self.assertIsNone(self.tracker.remote)
        self.assertEqual(len(self.expired), 1)

    def test_explicit_clear_cancels_expiry(self):
        self.tracker.remote_typing("bob", "bob")
        self.tracker.remote_stopped("bob")
        self.assertEqual(self.clock.live(), 0)
        self.tracker.remote_typing("bob", "bob")
        self.tracker.reset()
        self.clock.advance(10)
        self.assertEqual(self.expired, [])

    def test_ignored_peer_schedules_nothing(self):
        self.tracker.remote_typing("carol", "bob")
        self.assertEqual(self.clock.live(), 0)


if __name__ == "__main__":
    unittest.main()
