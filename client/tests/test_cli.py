import asyncio
import io
import json
import tempfile
import unittest
from pathlib import Path

from chat_client.cli import _load_steps, main, simulate


STEPS = [
    {"t": "action", "action": "register", "arg": "alice"},
    {
        "t": "event",
        "event": "registrationSuccess",
        "body": {
            "currentUser": "alice",
            "otherUsers": [{"id": "bob", "username": "bob"}],
            "unreadCounts": {"bob": 1},
        },
    },
    {"t": "action", "action": "select", "arg": "bob"},
    {"t": "ack", "id": 1, "body": [{"from": "bob", "to": "alice", "message": "earlier", "timestamp": 5}]},
    {"t": "event", "event": "newMessage", "body": {"from": "bob", "to": "alice", "message": "hi", "timestamp": 10}},
    {"t": "action", "action": "select", "arg": "carol"},
    {"t": "action", "action": "send", "arg": "hello"},
]


def _lines(output: io.StringIO):
    return [json.loads(line) for line in output.getvalue().splitlines()]


class SimulateTests(unittest.TestCase):
    def test_simulate_writes_outbound_frames_and_final_view(self):
        output = io.StringIO()
        view = asyncio.run(simulate(STEPS, output))
        lines = _lines(output)

        out = [line["body"] for line in lines if line["t"] == "out"]
        self.assertEqual(
            [(frame["t"], frame["body"]) for frame in out],
            [
                ("register", "alice"),
                ("getChatHistory", {"withUser": "bob", "currentUser": "alice"}),
                ("markAsRead", {"sender": "bob", "receiver": "alice"}),
                ("privateMessage", {"to": "bob", "from": "alice", "message": "hello"}),
            ],
        )
        self.assertEqual(out[1]["id"], 1)

        errors = [line["body"] for line in lines if line["t"] == "error"]
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0]["action"], "select")

        self.assertEqual(lines[-1]["t"], "view")
        final = lines[-1]["body"]
        self.assertEqual(final["identity"], "alice")
        self.assertEqual(final["auth_state"], "registered")
        self.assertEqual(final["active"], "bob")
        self.assertEqual(final["unread"], {})
        self.assertEqual([m["message"] for m in final["messages"]], ["earlier", "hi"])
        self.assertEqual([m["read"] for m in final["messages"]], [False, True])
        self.assertEqual(view.active, "bob")

    def test_unknown_step_type_is_rejected(self):
        with self.assertRaises(ValueError):
            asyncio.run(simulate([{"t": "bogus"}], io.StringIO()))

    def test_unknown_action_is_rejected(self):
        with self.assertRaises(ValueError):
            asyncio.run(simulate([{"t": "action", "action": "dance"}], io.StringIO()))


class LoadStepsTests(unittest.TestCase):
    def test_accepts_array_lines_and_empty_input(self):
        self.assertEqual(_load_steps(io.StringIO(json.dumps(STEPS[:2]))), STEPS[:2])
        lines = "\n".join(json.dumps(step) for step in STEPS[:2])
        self.assertEqual(_load_steps(io.StringIO(lines)), STEPS[:2])
        self.assertEqual(_load_steps(io.StringIO("  \n")), [])
        self.assertEqual(_load_steps(io.StringIO(json.dumps(STEPS[0]))), [STEPS[0]])


class MainTests(unittest.TestCase):
    def test_simulate_command_reads_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "steps.json"
            path.write_text(json.dumps(STEPS), encoding="utf-8")
            output = io.StringIO()
            code = main(["simulate", "-f", str(path)], output=output)

        self.assertEqual(code, 0)
        lines = _lines(output)
        self.assertEqual(lines[-1]["t"], "view")
        self.assertEqual(lines[-1]["body"]["active"], "bob")

    def test_simulate_typing_timeout_option(self):
        steps = STEPS[:4] + [
            {"t": "action", "action": "input", "arg": "h"},
            {"t": "sleep", "seconds": 0.1},
        ]
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "steps.jsonl"
            path.write_text("\n".join(json.dumps(step) for step in steps), encoding="utf-8")
            output = io.StringIO()
            code = main(["simulate", "-f", str(path), "--typing-timeout", "0.05"], output=output)

        self.assertEqual(code, 0)
        events = [line["body"]["t"] for line in _lines(output) if line["t"] == "out"]
        self.assertEqual(events[-2:], ["typing", "stopTyping"])

    def test_command_is_required(self):
        with self.assertRaises(SystemExit):
            main([], output=io.StringIO())


if __name__ == "__main__":
    unittest.main()
