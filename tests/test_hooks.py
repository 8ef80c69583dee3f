import pytest

from tabrelay.hooks import evaluate, promise_fulfilled, read_transcript_tail


class FakeClient:
    def __init__(self, state=None, reachable=True):
        self.state = state
        self.reachable = reachable
        self.sent = []

    async def send(self, command, params=None):
        self.sent.append(command)
        if not self.reachable:
            return {"success": False, "error": "Relay host is not listening"}
        if command == "getLoopState":
            return {"success": True, "result": self.state}
        return {"success": True, "result": {}}


def loop_state(**overrides):
    state = {
        "active": True,
        "prompt": "Make the tests pass",
        "iteration": 2,
        "maxIterations": 5,
        "completionPromise": None,
    }
    state.update(overrides)
    return state


class TestPromise:
    def test_whitespace_is_normalized(self):
        assert promise_fulfilled("done <promise>ALL  TESTS\nPASS</promise>", "ALL TESTS PASS")

    def test_mismatch(self):
        assert not promise_fulfilled("<promise>NOPE</promise>", "DONE")
        assert not promise_fulfilled("<promise>DONE</promise>", None)

    def test_transcript_tail(self, tmp_path):
        path = tmp_path / "transcript.jsonl"
        path.write_text("a" * 100 + "<promise>DONE</promise>")
        assert read_transcript_tail(str(path), max_bytes=23) == "<promise>DONE</promise>"
        assert read_transcript_tail(str(tmp_path / "missing")) == ""
        assert read_transcript_tail(None) == ""


class TestEvaluate:
    async def test_blocks_and_increments(self):
        client = FakeClient(loop_state())
        decision = await evaluate(client, {})
        assert decision == {
            "decision": "block",
            "reason": "Make the tests pass",
            "systemMessage": "tabrelay loop iteration 3/5",
        }
        assert client.sent == ["getLoopState", "incrementLoopIteration"]

    async def test_unlimited_message(self):
        decision = await evaluate(FakeClient(loop_state(maxIterations=0)), {})
        assert decision["systemMessage"] == "tabrelay loop iteration 3 (unlimited)"

    async def test_bound_reached_stops_loop(self):
        client = FakeClient(loop_state(iteration=5))
        assert await evaluate(client, {}) is None
        assert client.sent == ["getLoopState", "stopLoop"]

    async def test_promise_stops_loop(self, tmp_path):
        transcript = tmp_path / "t.jsonl"
        transcript.write_text('{"text": "<promise>DONE</promise>"}\n')
        client = FakeClient(loop_state(completionPromise="DONE"))
        assert await evaluate(client, {"transcript_path": str(transcript)}) is None
        assert client.sent[-1] == "stopLoop"

    @pytest.mark.parametrize("client", [FakeClient(reachable=False), FakeClient(loop_state(active=False))])
    async def test_exit_allowed(self, client):
        assert await evaluate(client, {}) is None
        assert "incrementLoopIteration" not in client.sent
