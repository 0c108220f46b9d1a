import threading
import time
from unittest import mock

import pytest
import requests

from inframon.errors import RemoteRenameFailure, TransportError
from inframon.network.registration import (
    HeartbeatPublisher,
    MasterClient,
    RetryPolicy,
    ThreadScheduler,
    forward_hostname,
)


def _response(status=200, body=None):
    resp = mock.Mock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.json.return_value = body if body is not None else {"success": True}
    return resp


class FlakyMaster:
    """publish() qui échoue ``failures`` fois puis réussit."""

    def __init__(self, failures=0, exc=TransportError("master down")):
        self.failures = failures
        self.exc = exc
        self.calls = []

    def __call__(self, payload):
        self.calls.append(payload)
        if len(self.calls) <= self.failures:
            raise self.exc
        return {"success": True}


# ----------------------------------------------------------------------
# RetryPolicy
# ----------------------------------------------------------------------

def test_retry_policy_unbounded():
    policy = RetryPolicy()
    assert policy.next_delay(1) == 5.0
    assert policy.next_delay(1000) == 5.0


def test_retry_policy_bounded():
    policy = RetryPolicy(delay=2.0, max_attempts=2)
    assert policy.next_delay(2) == 2.0
    assert policy.next_delay(3) is None


# ----------------------------------------------------------------------
# MasterClient
# ----------------------------------------------------------------------

def test_master_client_register_posts_payload():
    session = mock.Mock()
    session.post.return_value = _response(body={"success": True, "message": "Node registered"})
    client = MasterClient("http://10.0.0.1:3899/", session=session, timeout=2.0)
    assert client.register({"id": "a"})["message"] == "Node registered"
    session.post.assert_called_once_with("http://10.0.0.1:3899/api/nodes/register",
                                         json={"id": "a"}, timeout=2.0)


@pytest.mark.parametrize("outcome", [
    requests.ConnectionError("refused"),
    _response(status=500, body={"success": False}),
    _response(status=200, body={"success": False, "message": "Error processing registration"}),
])
def test_master_client_failures_raise_transport_error(outcome):
    session = mock.Mock()
    if isinstance(outcome, Exception):
        session.post.side_effect = outcome
    else:
        session.post.return_value = outcome
    with pytest.raises(TransportError):
        MasterClient("http://10.0.0.1:3899", session=session).register({"id": "a"})


def test_forward_hostname():
    session = mock.Mock()
    session.post.return_value = _response()
    forward_hostname("10.0.0.2", 3800, "gamma", session=session)
    session.post.assert_called_once_with("http://10.0.0.2:3800/api/hostname",
                                         json={"hostname": "gamma"}, timeout=5.0)


def test_forward_hostname_failures():
    session = mock.Mock()
    session.post.return_value = _response(status=500)
    with pytest.raises(RemoteRenameFailure):
        forward_hostname("10.0.0.2", 3800, "gamma", session=session)
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(RemoteRenameFailure):
        forward_hostname("10.0.0.2", 3800, "gamma", session=session)


# ----------------------------------------------------------------------
# HeartbeatPublisher
# ----------------------------------------------------------------------

class TestHeartbeatPublisher:

    def test_success_marks_registered(self, scheduler):
        master = FlakyMaster()
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, scheduler=scheduler)
        assert pub.tick() is True
        assert pub.registered
        assert master.calls == [{"id": "a"}]
        assert scheduler.pending == []

    def test_initial_failure_schedules_single_retry(self, scheduler):
        master = FlakyMaster(failures=3)
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, scheduler=scheduler)
        assert pub.tick() is False
        assert pub.tick() is False
        assert len(scheduler.pending) == 1
        assert scheduler.pending[0][0] == 5.0
        assert pub.failures == 2

    def test_retry_runs_and_reschedules_until_success(self, scheduler):
        master = FlakyMaster(failures=2)
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, scheduler=scheduler,
                                 retry_policy=RetryPolicy(delay=1.0))
        pub.tick()
        scheduler.run_pending()
        assert not pub.registered
        assert len(scheduler.pending) == 1
        scheduler.run_pending()
        assert pub.registered
        assert scheduler.pending == []
        assert len(master.calls) == 3

    def test_no_retry_after_first_success(self, scheduler):
        master = FlakyMaster()
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, scheduler=scheduler)
        pub.tick()
        master.failures = 10
        assert pub.tick() is False
        assert scheduler.pending == []
        assert pub.registered

    def test_retries_stop_when_policy_exhausted(self, scheduler):
        master = FlakyMaster(failures=10)
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, scheduler=scheduler,
                                 retry_policy=RetryPolicy(delay=1.0, max_attempts=2))
        pub.tick()
        scheduler.run_pending()
        scheduler.run_pending()
        assert scheduler.pending == []
        assert len(master.calls) == 3

    def test_requests_errors_are_swallowed(self, scheduler):
        master = FlakyMaster(failures=1, exc=requests.ConnectionError("boom"))
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, scheduler=scheduler)
        assert pub.tick() is False
        assert pub.failures == 1

    def test_run_loop_stops_on_event(self, scheduler):
        master = FlakyMaster()
        stop = threading.Event()
        ticks = []

        def build():
            ticks.append(1)
            if len(ticks) >= 3:
                stop.set()
            return {"id": "a"}

        pub = HeartbeatPublisher(build, master, interval=0.01, scheduler=scheduler)
        pub.run(stop)
        assert len(master.calls) == 3

    def test_start_stop_thread(self):
        master = FlakyMaster()
        pub = HeartbeatPublisher(lambda: {"id": "a"}, master, interval=0.01)
        pub.start()
        for _ in range(100):
            if master.calls:
                break
            time.sleep(0.01)
        pub.stop()
        assert master.calls
        assert pub.registered

    def test_stop_cancels_pending_retry(self, scheduler):
        pub = HeartbeatPublisher(lambda: {"id": "a"}, FlakyMaster(failures=5), scheduler=scheduler)
        pub.tick()
        pub.stop()
        assert scheduler.cancelled
        assert scheduler.pending == []

    def test_retry_tick_runs_on_loop_thread(self, scheduler):
        master = FlakyMaster(failures=1)
        threads = []

        def publish(payload):
            threads.append(threading.get_ident())
            return master(payload)

        pub = HeartbeatPublisher(lambda: {"id": "a"}, publish, interval=60, scheduler=scheduler)
        loop = threading.Thread(target=pub.run, daemon=True)
        loop.start()
        for _ in range(200):
            if scheduler.pending:
                break
            time.sleep(0.01)
        assert len(scheduler.pending) == 1
        # le timer réveille la boucle au lieu de publier lui-même
        scheduler.run_pending()
        for _ in range(200):
            if pub.registered:
                break
            time.sleep(0.01)
        pub.stop()
        loop.join(2)
        assert pub.registered
        assert len(master.calls) == 2
        assert set(threads) == {loop.ident}

    def test_concurrent_ticks_are_serialized(self, scheduler):
        state = {"active": 0, "peak": 0, "calls": 0}
        guard = threading.Lock()

        def publish(payload):
            with guard:
                state["active"] += 1
                state["calls"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.05)
            with guard:
                state["active"] -= 1
            raise TransportError("master down")

        pub = HeartbeatPublisher(lambda: {"id": "a"}, publish, scheduler=scheduler)
        workers = [threading.Thread(target=pub.tick) for _ in range(4)]
        for w in workers:
            w.start()
        for w in workers:
            w.join(5)
        assert state["peak"] == 1
        assert state["calls"] == 4
        assert pub.failures == 4
        assert len(scheduler.pending) == 1


def test_thread_scheduler_runs_callback():
    done = threading.Event()
    sched = ThreadScheduler()
    sched.call_later(0.01, done.set)
    assert done.wait(2)
    sched.cancel_all()
