import logging
import os

import pytest

import pushgate.storage.atomic as atomic
from pushgate.engine import PolicyEngine
from pushgate.policy.matcher import MatchReason
from pushgate.policy.parser import PolicySourceError
from pushgate.storage.cache import CacheError, recorded_source_mtime_ns


def test_first_call_rebuilds_second_does_not(write_denylist, tmp_path):
    source = write_denylist(":bad0001\n")
    engine = PolicyEngine(source, tmp_path / "denylist.db")

    assert engine.ensure_fresh() is True
    assert engine.ensure_fresh() is False
    assert engine.rebuild_count == 1
    engine.close()


def test_fresh_cache_reused_across_engines(write_denylist, tmp_path):
    source = write_denylist(":bad0001\n")
    cache_path = tmp_path / "denylist.db"
    with PolicyEngine(source, cache_path) as first:
        assert first.ensure_fresh() is True

    with PolicyEngine(source, cache_path) as second:
        assert second.ensure_fresh() is False
        assert second.rebuild_count == 0
        assert second.check("main", "bad0001").blocked is True


def test_stale_cache_picks_up_new_rules(write_denylist, bump_mtime, tmp_path):
    source = write_denylist(":bad0001\n")
    cache_path = tmp_path / "denylist.db"
    with PolicyEngine(source, cache_path) as engine:
        engine.ensure_fresh()
        assert engine.check("main", "bad0003").blocked is False

    source.write_text(":bad0003 # new\n", encoding="utf-8")
    bump_mtime(source)

    with PolicyEngine(source, cache_path) as engine:
        assert engine.ensure_fresh() is True
        result = engine.check("main", "bad0003")
        assert result.blocked is True
        assert result.annotation == "new"
        assert engine.check("main", "bad0001").blocked is False


def test_touch_without_change_still_rebuilds(write_denylist, bump_mtime, tmp_path):
    source = write_denylist("main\n")
    with PolicyEngine(source, tmp_path / "denylist.db") as engine:
        engine.ensure_fresh()
        bump_mtime(source)
        assert engine.ensure_fresh() is True
        assert engine.rebuild_count == 2


def test_missing_source_is_fatal_even_with_cache(write_denylist, tmp_path):
    source = write_denylist("main\n")
    cache_path = tmp_path / "denylist.db"
    with PolicyEngine(source, cache_path) as engine:
        engine.ensure_fresh()

    os.remove(source)
    with PolicyEngine(source, cache_path) as engine:
        with pytest.raises(PolicySourceError):
            engine.ensure_fresh()


def test_unreadable_source_is_fatal(tmp_path):
    # A directory cannot be opened as a file.
    (tmp_path / "denylist").mkdir()
    with PolicyEngine(tmp_path / "denylist", tmp_path / "denylist.db") as engine:
        with pytest.raises(PolicySourceError):
            engine.ensure_fresh()


def test_check_ensures_freshness_lazily(write_denylist, tmp_path):
    source = write_denylist("retired # archived\n")
    with PolicyEngine(source, tmp_path / "denylist.db") as engine:
        result = engine.check("retired")
        assert result.reason == MatchReason.REF_BLOCKED
        assert engine.rebuild_count == 1


def test_rebuild_records_parse_warnings(write_denylist, tmp_path, caplog):
    caplog.set_level(logging.INFO, logger="pushgate")
    source = write_denylist("deadbee\nmain\n")
    with PolicyEngine(source, tmp_path / "denylist.db") as engine:
        policy = engine.rebuild()
    assert list(policy.refs) == ["main"]
    assert [w.code for w in engine.last_warnings] == ["REF_LOOKS_LIKE_COMMIT"]
    assert "rebuilt denylist cache" in caplog.text


def test_cache_in_missing_directory_is_created(write_denylist, tmp_path):
    source = write_denylist("main\n")
    cache_path = tmp_path / "state" / "denylist.db"
    with PolicyEngine(source, cache_path) as engine:
        assert engine.ensure_fresh() is True
    assert cache_path.exists()


def test_interleaved_rebuilds_are_harmless(write_denylist, bump_mtime, tmp_path, monkeypatch):
    source = write_denylist(":bad0001\n")
    cache_path = tmp_path / "denylist.db"
    with PolicyEngine(source, cache_path) as engine:
        engine.ensure_fresh()
    source.write_text(":bad0001\nretired # gone\n", encoding="utf-8")
    bump_mtime(source)

    other = PolicyEngine(source, cache_path)
    real_link = os.link
    raced = []

    def _link(src, dst, *args, **kwargs):
        # The other pusher rebuilds and installs while ours is mid-install.
        if not raced:
            raced.append(True)
            assert other.ensure_fresh() is True
        return real_link(src, dst, *args, **kwargs)

    monkeypatch.setattr(atomic.os, "link", _link)

    with PolicyEngine(source, cache_path) as engine:
        assert engine.ensure_fresh() is True
        assert engine.check("retired").annotation == "gone"
    assert raced
    assert other.check("main", "bad0001").blocked is True
    other.close()

    assert recorded_source_mtime_ns(cache_path) == os.stat(source).st_mtime_ns
    assert sorted(p.name for p in tmp_path.iterdir()) == ["denylist", "denylist.db", "denylist.db~"]


def test_unwritable_cache_directory_raises_cache_error(write_denylist, tmp_path, monkeypatch):
    def _denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(atomic.tempfile, "mkstemp", _denied)
    source = write_denylist("main\n")
    with PolicyEngine(source, tmp_path / "denylist.db") as engine:
        with pytest.raises(CacheError, match="failed to build cache"):
            engine.ensure_fresh()
    assert not (tmp_path / "denylist.db").exists()


def test_failed_backup_keeps_previous_cache(write_denylist, bump_mtime, tmp_path, monkeypatch):
    source = write_denylist("main\n")
    cache_path = tmp_path / "denylist.db"
    with PolicyEngine(source, cache_path) as engine:
        engine.ensure_fresh()
    built_from = recorded_source_mtime_ns(cache_path)
    bump_mtime(source)

    def _no_links(*args, **kwargs):
        raise OSError(1, "Operation not permitted")

    def _no_copy(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(atomic.os, "link", _no_links)
    monkeypatch.setattr(atomic.shutil, "copy2", _no_copy)

    with PolicyEngine(source, cache_path) as engine:
        with pytest.raises(CacheError):
            engine.ensure_fresh()
    assert recorded_source_mtime_ns(cache_path) == built_from
    assert sorted(p.name for p in tmp_path.iterdir()) == ["denylist", "denylist.db"]
