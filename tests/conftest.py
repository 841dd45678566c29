import logging
import os

import pytest


_PUSHGATE_ENV = (
    "PUSHGATE_CONFIG",
    "PUSHGATE_DENYLIST_PATH",
    "PUSHGATE_CACHE_PATH",
    "PUSHGATE_TEMPLATE_PATH",
    "PUSHGATE_ANNOTATION_FORMATTER",
    "PUSHGATE_FORMATTER_TIMEOUT",
    "PUSHGATE_GIT_BINARY",
    "PUSHGATE_GIT_DIR",
    "PUSHGATE_LOG_LEVEL",
    "PUSHGATE_LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def _isolated_hook_dir(tmp_path, monkeypatch):
    # Hooks resolve relative paths against the repo dir; tests get a private one.
    for name in _PUSHGATE_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def write_denylist(tmp_path):
    def _write(text: str, name: str = "denylist", bump_seconds: int = 0):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        if bump_seconds:
            st = os.stat(path)
            os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + bump_seconds * 1_000_000_000))
        return path

    return _write


@pytest.fixture
def bump_mtime():
    def _bump(path, seconds: int = 10):
        st = os.stat(path)
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))

    return _bump


@pytest.fixture(autouse=True)
def _reset_pushgate_logging():
    yield
    logger = logging.getLogger("pushgate")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
