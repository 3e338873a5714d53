"""Verification Test: process churn while the monitor is running.

Worker processes are started and killed at random while a PriorityMonitor
polls the real process list. The monitor must keep running and report the
workers' lifecycle even when they vanish in the middle of a lookup.
"""

import multiprocessing
import random
import time
from queue import Empty, Queue

import pytest

from procprio.models import LifecycleEvent
from procprio.monitor import PriorityMonitor
from procprio.store import RuleStore


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


def drain(events: Queue[LifecycleEvent], timeout: float) -> list[LifecycleEvent]:
    """Collect events until none arrive for ``timeout`` seconds."""
    collected = []
    while True:
        try:
            collected.append(events.get(timeout=timeout))
        except Empty:
            return collected


class TestProcessChurn:
    """Churn verification suite tests."""

    def test_monitor_survives_process_termination(self, launcher):
        """
        Test that the monitor keeps running when processes die between polls.

        Every killed worker must eventually be reported as ended.
        """
        processes = []
        for _ in range(20):
            p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
            p.start()
            processes.append(p)

        store = RuleStore(":memory:")
        events: Queue[LifecycleEvent] = Queue()
        monitor = PriorityMonitor(store, launcher=launcher, poll_rate=0.2, events=events)

        try:
            monitor.start()
            started = {event.pid for event in drain(events, timeout=2.0) if event.kind == "started"}
            worker_pids = {p.pid for p in processes}
            assert worker_pids <= started

            killed = random.sample(processes, 10)
            for p in killed:
                p.terminate()
                time.sleep(0.02)
            for p in killed:
                p.join(timeout=2.0)

            ended = {event.pid for event in drain(events, timeout=2.0) if event.kind == "ended"}
            assert {p.pid for p in killed} <= ended
            assert monitor.is_running, "Monitor should still be running after churn"
            assert not ({p.pid for p in killed} & set(monitor.tracked))

        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
            for p in processes:
                p.join(timeout=1.0)
            store.close()

    def test_rapid_process_creation_and_termination(self, launcher):
        """
        Test monitor stability during rapid process churn.

        Workers live for a fraction of a poll interval, so many of them are
        gone before the monitor can resolve them.
        """
        store = RuleStore(":memory:")
        monitor = PriorityMonitor(store, launcher=launcher, poll_rate=0.1)
        processes = []

        try:
            monitor.start()
            start_time = time.time()
            while time.time() - start_time < 3.0:
                p = multiprocessing.Process(target=dummy_worker, args=(random.uniform(0.01, 0.3),))
                p.start()
                processes.append(p)
                time.sleep(0.02)

                if len(processes) > 20:
                    old = processes.pop(0)
                    old.terminate()
                    old.join(timeout=1.0)

            assert monitor.is_running, "Monitor should survive rapid churn"
        except Exception as e:
            pytest.fail(f"Churn raised {e!r}")
        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
                p.join(timeout=1.0)
            store.close()
