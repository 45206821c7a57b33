"""
Tests for build events, the spool directory and the dispatcher.
"""

import json
import time

import pytest

from pushagent.agent.events import BuildEvent, EventDispatcher, SpoolDirectory


class TestBuildEvent:
    def test_from_hook_environment(self):
        event = BuildEvent.from_hook_environment(
            {"DRV_PATH": "/store/x-hello.drv", "OUT_PATHS": "/store/abc-hello /store/abc-hello-man"}
        )

        assert event.derivation_id == "/store/x-hello.drv"
        assert event.output_paths == frozenset({"/store/abc-hello", "/store/abc-hello-man"})

    def test_missing_out_paths(self):
        event = BuildEvent.from_hook_environment({"DRV_PATH": "/store/x.drv"})
        assert event.output_paths == frozenset()

    def test_extra_spaces_ignored(self):
        event = BuildEvent.from_hook_environment({"OUT_PATHS": " /store/a  /store/b "})
        assert event.output_paths == frozenset({"/store/a", "/store/b"})

    def test_dict_conversion(self):
        event = BuildEvent("/store/x.drv", frozenset({"/store/b", "/store/a"}))

        data = event.to_dict()

        assert data["output_paths"] == ["/store/a", "/store/b"]
        assert BuildEvent.from_dict(data) == event

    def test_from_dict_rejects_bad_paths(self):
        with pytest.raises(TypeError):
            BuildEvent.from_dict({"derivation_id": "x", "output_paths": "/store/a"})


class TestSpoolDirectory:
    def test_entries_in_arrival_order(self, tmp_path):
        spool = SpoolDirectory(tmp_path / "spool")
        spool.submit(BuildEvent("/store/1.drv", frozenset({"/store/one"})))
        spool.submit(BuildEvent("/store/2.drv", frozenset({"/store/two"})))

        entries = list(spool.entries())

        assert [e.derivation_id for _, e in entries] == ["/store/1.drv", "/store/2.drv"]
        assert len(spool.pending()) == 2

        for spool_file, _ in entries:
            spool.remove(spool_file)
        assert spool.pending() == []

    def test_entries_of_missing_directory(self, tmp_path):
        assert list(SpoolDirectory(tmp_path / "missing").entries()) == []

    def test_malformed_file_set_aside(self, tmp_path):
        spool_dir = tmp_path / "spool"
        spool_dir.mkdir()
        (spool_dir / "0001-bad.json").write_text("{not json")
        spool = SpoolDirectory(spool_dir)
        spool.submit(BuildEvent("/store/ok.drv", frozenset({"/store/ok"})))

        events = [event for _, event in spool.entries()]

        assert [e.derivation_id for e in events] == ["/store/ok.drv"]
        assert (spool_dir / "0001-bad.json.bad").exists()

    def test_spool_file_content(self, tmp_path):
        spool = SpoolDirectory(tmp_path / "spool")
        path = spool.submit(BuildEvent("/store/x.drv", frozenset({"/store/a"})))

        assert json.loads(path.read_text()) == {
            "derivation_id": "/store/x.drv",
            "output_paths": ["/store/a"],
        }


class TestEventDispatcher:
    def test_poll_once(self, tmp_path):
        spool = SpoolDirectory(tmp_path / "spool")
        spool.submit(BuildEvent("/store/a.drv", frozenset({"/store/a"})))
        spool.submit(BuildEvent("/store/b.drv", frozenset({"/store/b"})))
        received = []

        dispatcher = EventDispatcher(spool, received.append)

        assert dispatcher.poll_once() == 2
        assert [e.derivation_id for e in received] == ["/store/a.drv", "/store/b.drv"]
        assert spool.pending() == []

    def test_background_thread_delivers_events(self, tmp_path):
        spool = SpoolDirectory(tmp_path / "spool")
        received = []
        dispatcher = EventDispatcher(spool, received.append, poll_interval=0.02)
        dispatcher.start()
        try:
            spool.submit(BuildEvent("/store/a.drv", frozenset({"/store/a"})))
            deadline = time.monotonic() + 5
            while not received and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            dispatcher.stop(timeout=5)

        assert [e.derivation_id for e in received] == ["/store/a.drv"]

    def test_handler_error_does_not_stop_polling(self, tmp_path):
        spool = SpoolDirectory(tmp_path / "spool")
        received = []

        def handler(event):
            if event.derivation_id == "/store/bad.drv":
                raise RuntimeError("boom")
            received.append(event)

        dispatcher = EventDispatcher(spool, handler, poll_interval=0.02)
        spool.submit(BuildEvent("/store/bad.drv", frozenset({"/store/bad"})))
        dispatcher.start()
        try:
            time.sleep(0.05)
            spool.submit(BuildEvent("/store/good.drv", frozenset({"/store/good"})))
            deadline = time.monotonic() + 5
            while not received and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            dispatcher.stop(timeout=5)

        assert [e.derivation_id for e in received] == ["/store/good.drv"]
        set_aside = list((tmp_path / "spool").glob("*.json.bad"))
        assert len(set_aside) == 1
        assert json.loads(set_aside[0].read_text())["derivation_id"] == "/store/bad.drv"

    def test_failed_event_kept_on_disk(self, tmp_path):
        """An event the handler could not accept is set aside, not deleted."""
        spool = SpoolDirectory(tmp_path / "spool")
        spool_file = spool.submit(BuildEvent("/store/x.drv", frozenset({"/store/abc-x"})))

        def handler(event):
            raise RuntimeError("queue unavailable")

        assert EventDispatcher(spool, handler).poll_once() == 0

        assert not spool_file.exists()
        bad = spool_file.with_name(spool_file.name + ".bad")
        assert BuildEvent.from_dict(json.loads(bad.read_text())).output_paths == frozenset(
            {"/store/abc-x"}
        )

    def test_stopped_dispatcher_leaves_events(self, tmp_path):
        spool = SpoolDirectory(tmp_path / "spool")
        spool.submit(BuildEvent("/store/a.drv", frozenset({"/store/a"})))
        dispatcher = EventDispatcher(spool, lambda event: None)
        dispatcher.stop()

        assert dispatcher.poll_once() == 0
        assert len(spool.pending()) == 1
