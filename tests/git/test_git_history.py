import subprocess

import pytest

from pushgate.git.history import GitHistory, HistoryError
from pushgate.git.refs import NULL_SHA


def test_command_for_range():
    assert GitHistory().command("aaaaaaa", "bbbbbbb") == ["git", "rev-list", "aaaaaaa..bbbbbbb"]


def test_command_for_new_ref_walks_full_history():
    assert GitHistory().command(None, "bbbbbbb") == ["git", "rev-list", "bbbbbbb"]
    assert GitHistory().command(NULL_SHA, "bbbbbbb") == ["git", "rev-list", "bbbbbbb"]


def test_command_with_git_dir_and_binary():
    history = GitHistory(git_dir="/srv/repo.git", git_binary="/usr/bin/git")
    assert history.command("a" * 7, "b" * 7) == [
        "/usr/bin/git",
        "--git-dir=/srv/repo.git",
        "rev-list",
        "aaaaaaa..bbbbbbb",
    ]


def test_list_commits_keeps_git_order(monkeypatch):
    calls = []

    def _run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="ccc3333\nbbb2222\n\n", stderr="")

    monkeypatch.setattr(subprocess, "run", _run)
    assert GitHistory()("aaa1111", "ccc3333") == ["ccc3333", "bbb2222"]
    assert calls == [["git", "rev-list", "aaa1111..ccc3333"]]


def test_list_commits_reports_git_errors(monkeypatch):
    def _run(cmd, **kwargs):
        raise subprocess.CalledProcessError(128, cmd, output="", stderr="fatal: bad revision 'zzz'")

    monkeypatch.setattr(subprocess, "run", _run)
    with pytest.raises(HistoryError, match="bad revision"):
        GitHistory().list_commits("aaa1111", "zzz")


def test_missing_git_binary():
    with pytest.raises(HistoryError, match="not found"):
        GitHistory(git_binary="no-such-git-binary-here").list_commits(None, "abc1234")
