"""
CLI commands through Typer's CliRunner with the media backend replaced by fakes.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from gopcache.infra.range_store import RangeStore
from tests.util.cli_utils import run_cli
from tests.util.fakes import FakeMediaBackend, FakeMediaSource, InMemoryFetcher

URL = "https://cdn.example.com/clip.mp4"


@pytest.fixture
def env(tmp_path) -> dict[str, str]:
    return {
        "GOPCACHE_RANGE_CACHE_URL": f"sqlite:///{tmp_path / 'ranges.db'}",
        "GOPCACHE_LOG_LEVEL": "CRITICAL",
    }


@pytest.fixture
def fake_media():
    source = FakeMediaSource([0, 1000, 2000, 3000], duration=4000)
    with patch("gopcache.cli.commands.media.PyAVBackend", return_value=FakeMediaBackend(source)), patch(
        "gopcache.cli.commands.media.fetcher_for", return_value=InMemoryFetcher({URL: b"\x00" * 2048})
    ):
        yield source


class TestHelp:
    def test_root_help_lists_commands(self, env):
        code, output = run_cli(["--help"], env=env)
        assert code == 0
        for name in ("inspect", "play", "ranges"):
            assert name in output


class TestInspect:
    def test_json_output(self, env, fake_media):
        code, output = run_cli(["inspect", URL, "--json"], env=env)
        assert code == 0
        result = json.loads(output)
        assert result["status"] == "ok"
        assert result["meta"]["duration"] == 4000
        assert result["meta"]["file_size"] == 2048
        assert [g["timestamp"] for g in result["gops"]] == [0, 1000, 2000, 3000]

    def test_gop_min_duration_option(self, env, fake_media):
        code, output = run_cli(["inspect", URL, "--json", "--gop-min-duration", "2000"], env=env)
        assert code == 0
        assert [g["timestamp"] for g in json.loads(output)["gops"]] == [0, 3000]

    def test_range_store_is_disposed(self, env, fake_media):
        env = {**env, "GOPCACHE_RANGE_CACHE": "true"}
        with patch.object(RangeStore, "dispose", autospec=True) as dispose:
            code, _ = run_cli(["inspect", URL, "--json"], env=env)
        assert code == 0
        dispose.assert_called_once()

    def test_human_output(self, env, fake_media):
        code, output = run_cli(["inspect", URL], env=env)
        assert code == 0
        assert "GOPs: 4" in output
        assert "h264 640x360" in output

    def test_meta_failure_exits_with_error(self, env):
        with patch("gopcache.cli.commands.media.PyAVBackend", return_value=FakeMediaBackend()), patch(
            "gopcache.cli.commands.media.fetcher_for", return_value=InMemoryFetcher()
        ):
            code, output = run_cli(["inspect", URL, "--json"], env=env)
        assert code == 1
        result = json.loads(output)
        assert result["status"] == "error"
        assert "404" in result["errors"][0]


class TestPlay:
    def test_window_follows_cursor(self, env, fake_media):
        code, output = run_cli(
            ["play", URL, "--start", "0", "--end", "2000", "--step", "500", "--decode-next", "1000", "--json"],
            env=env,
        )
        assert code == 0
        steps = json.loads(output)["steps"]
        assert [s["time"] for s in steps] == [0, 500, 1000, 1500, 2000]
        assert steps[0]["notifications"][0]["kind"] == "meta"
        assert steps[0]["held"] == [0]
        assert steps[0]["frame"] == 0
        assert steps[1]["held"] == [0, 1]
        assert steps[-1]["active_gop"] == 2
        assert steps[-1]["held"] == [1, 2]
        assert steps[-1]["frame"] == 2000
        # each GOP decoded once even though the cursor stayed inside it for several steps
        assert fake_media.video_calls == [(0, 1000), (1000, 2000), (2000, 3000)]

    def test_rejects_non_positive_step(self, env, fake_media):
        code, _ = run_cli(["play", URL, "--end", "1000", "--step", "0"], env=env)
        assert code == 1


class TestRanges:
    def test_stats_and_clear(self, env):
        store = RangeStore.from_url(env["GOPCACHE_RANGE_CACHE_URL"])
        store.put("https://a/x.mp4", 0, 3, b"abc")
        store.put("https://b/y.mp4", 0, 2, b"de")
        store.dispose()

        code, output = run_cli(["ranges", "stats", "--json"], env=env)
        assert code == 0
        assert json.loads(output) == {"count": 2, "size": 5, "urls": ["https://a/x.mp4", "https://b/y.mp4"]}

        code, output = run_cli(["ranges", "clear", "--url", "https://a/x.mp4"], env=env)
        assert code == 0
        assert "Removed 1 cached ranges" in output

        code, output = run_cli(["ranges", "stats"], env=env)
        assert "Ranges: 1" in output
