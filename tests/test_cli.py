"""
Tests for the raidbotdb CLI — commands, output and exit codes.

The CLI runs in-process; ``raidbotdb.cli.connect`` is swapped for a factory
handing out clients on the test's fake server, so successive ``main()``
calls share one database.

Exit code contract:
    0  Success (including idempotent no-op)
    1  Operational error (not found, conflict, bad args or config)
    2  Internal failure (backing store error, unexpected exception)
"""

import argparse
import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from raidbotdb import cli
from raidbotdb.relay import PubSubRelay
from raidbotdb.store import SoundboardStore


@pytest.fixture(autouse=True)
def fake_backend(monkeypatch, make_client):
    for var in ("RAIDBOT_REDIS_URL", "RAIDBOT_PREFIX", "RAIDBOT_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(cli, "connect", lambda config, client_name=None: make_client())


def run(argv, capsys):
    """Run the CLI; return (exit code, stdout, stderr)."""
    try:
        cli.main(argv)
        code = 0
    except SystemExit as e:
        code = e.code
    out, err = capsys.readouterr()
    return code, out, err


def _json(argv, capsys):
    code, out, _ = run(argv + ["--json"], capsys)
    assert code == 0
    return json.loads(out)


class TestStoreCommands:
    def test_init_idempotent(self, capsys):
        code, _, err = run(["init"], capsys)
        assert code == 0
        assert "initialized" in err
        code, _, err = run(["init"], capsys)
        assert code == 0
        assert "already present" in err

    def test_sound_add_prints_id(self, capsys):
        code, out, _ = run(["sound", "add", "Airhorn", "--length", "3", "--file", "a.mp3"], capsys)
        assert code == 0
        assert out.strip() == "1"

    def test_sound_add_json(self, capsys):
        data = _json(["sound", "add", "Beep", "--length", "0.5", "--file", "b.mp3",
                      "--owner", "u1"], capsys)
        assert data == {"id": 1, "name": "Beep", "length": 0.5, "file": "b.mp3", "owner": "u1"}

    def test_scenario_via_cli(self, capsys):
        run(["category", "add", "Memes"], capsys)
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a.mp3"], capsys)
        code, _, _ = run(["category", "add-sound", "1", "1"], capsys)
        assert code == 0
        cats = _json(["category", "list"], capsys)
        assert cats == [{"id": 1, "name": "Memes", "membercount": 1}]
        sounds = _json(["category", "show", "1"], capsys)
        assert [s["name"] for s in sounds] == ["Airhorn"]

        code, _, err = run(["sound", "rm", "1"], capsys)
        assert code == 0
        assert "Empty categories removed: 1" in err
        assert _json(["category", "list"], capsys) == []

    def test_search_sorted(self, capsys):
        for name in ("Boom", "Boo", "Cheer"):
            run(["sound", "add", name, "--length", "1", "--file", "x"], capsys)
        hits = _json(["search", "boo"], capsys)
        assert [h["name"] for h in hits] == ["Boo", "Boom"]

    def test_search_no_results(self, capsys):
        code, out, err = run(["search", "nothing"], capsys)
        assert code == 0
        assert out == ""
        assert "No results" in err

    def test_rename_and_show(self, capsys):
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a.mp3"], capsys)
        code, _, _ = run(["sound", "rename", "1", "Foghorn"], capsys)
        assert code == 0
        code, out, _ = run(["sound", "show", "1"], capsys)
        assert "Name:   Foghorn" in out

    def test_joinsound_roundtrip(self, capsys):
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a.mp3"], capsys)
        assert run(["joinsound", "set", "user42", "1"], capsys)[0] == 0
        assert _json(["joinsound", "get", "user42"], capsys)["name"] == "Airhorn"
        assert _json(["joinsound", "list"], capsys) == {"user42": 1}
        assert run(["joinsound", "rm", "user42"], capsys)[0] == 0
        assert _json(["joinsound", "list"], capsys) == {}

    def test_stats_json(self, capsys):
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a.mp3"], capsys)
        stats = _json(["stats"], capsys)
        assert stats["status"] == "ok"
        assert stats["sounds"] == 1
        assert stats["last_sound_id"] == 1

    def test_prefix_flag_isolates(self, capsys):
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a", "--prefix", "g1"], capsys)
        assert _json(["sound", "list", "--prefix", "g2"], capsys) == []
        assert len(_json(["sound", "list", "--prefix", "g1"], capsys)) == 1

    def test_prefix_env(self, capsys, monkeypatch):
        monkeypatch.setenv("RAIDBOT_PREFIX", "envbot")
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a"], capsys)
        assert _json(["stats"], capsys)["key_prefix"] == "envbot:"


class TestExitCodes:
    def test_no_command(self, capsys):
        code, out, _ = run([], capsys)
        assert code == 1
        assert "usage" in out

    def test_not_found(self, capsys):
        code, _, err = run(["sound", "show", "9"], capsys)
        assert code == 1
        assert "sound not found: 9" in err

    def test_conflict(self, capsys):
        run(["sound", "add", "Airhorn", "--length", "3", "--file", "a"], capsys)
        code, _, err = run(["sound", "add", "AIRHORN", "--length", "1", "--file", "b"], capsys)
        assert code == 1
        assert "already in use" in err

    def test_invalid_id(self, capsys):
        code, _, _ = run(["sound", "show", "0"], capsys)
        assert code == 1

    def test_bad_url_scheme(self, capsys):
        code, _, err = run(["stats", "--url", "http://localhost"], capsys)
        assert code == 1
        assert "redis.url" in err

    def test_empty_file_is_bad_input(self, capsys):
        code, _, err = run(["sound", "add", "Boo", "--length", "1", "--file", ""], capsys)
        assert code == 1
        assert "Sound file" in err

    def test_non_finite_length_is_bad_input(self, capsys):
        code, _, _ = run(["sound", "add", "Boo", "--length", "nan", "--file", "b"], capsys)
        assert code == 1

    def test_bad_config_file(self, capsys, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"redis": {"db": 99}}))
        code, _, err = run(["stats", "--config", str(path)], capsys)
        assert code == 1
        assert "redis.db" in err

    def test_backend_failure(self, capsys, monkeypatch):
        async def unreachable(self):
            raise RedisConnectionError("connection refused")

        monkeypatch.setattr(SoundboardStore, "stats", unreachable)
        code, _, err = run(["stats"], capsys)
        assert code == 2
        assert "Internal error" in err


class TestRelayCommands:
    def test_publish(self, capsys):
        code, _, err = run(["publish", "sounds", '{"id": 1}'], capsys)
        assert code == 0
        assert "0 receiver(s)" in err

    def test_publish_invalid_json(self, capsys):
        code, _, err = run(["publish", "sounds", "{oops"], capsys)
        assert code == 1
        assert "not valid JSON" in err

    def test_listen_prints_json_lines(self, capsys, make_client):
        async def main():
            relay = PubSubRelay(make_client(), poll_interval=0.01)
            args = argparse.Namespace(channels=["sounds"], count=2)
            listener = asyncio.ensure_future(cli.cmd_listen(relay, args))
            sender = make_client()
            while (await sender.pubsub_numsub("sounds"))[0][1] < 1:
                await asyncio.sleep(0.01)
            await sender.publish("sounds", json.dumps({"id": 1}))
            await sender.publish("sounds", json.dumps("second"))
            await asyncio.wait_for(listener, timeout=2)
            await sender.aclose()
            await relay.close()

        asyncio.run(main())
        lines = capsys.readouterr().out.strip().splitlines()
        assert [json.loads(line) for line in lines] == [
            {"channel": "sounds", "payload": {"id": 1}},
            {"channel": "sounds", "payload": "second"},
        ]
