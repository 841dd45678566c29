import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager, suppress


def _fsync_directory(folder: str) -> None:
    # Best-effort durability for the directory entry (rename).
    try:
        dir_fd = os.open(folder or ".", os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def backup_path(filepath: str, suffix: str = "~") -> str:
    return f"{filepath}{suffix}"


def preserve_backup(filepath: str, suffix: str = "~") -> None:
    """
    Keep the current file around as `<filepath>~`.

    The backup is staged under a unique name and renamed into place;
    concurrent rebuilds each install a complete one. A hard link leaves
    `filepath` in place, so readers never see it vanish. Filesystems without
    hard links get a copy instead.
    """
    if not os.path.exists(filepath):
        return
    backup = backup_path(filepath, suffix)
    folder = os.path.dirname(filepath)
    staged = os.path.join(folder, f".{os.path.basename(backup)}.{uuid.uuid4().hex}.tmp")
    try:
        try:
            os.link(filepath, staged)
        except FileNotFoundError:
            # Replaced out from under us; nothing left to back up.
            return
        except OSError:
            shutil.copy2(filepath, staged)
        os.replace(staged, backup)
    finally:
        with suppress(FileNotFoundError):
            os.remove(staged)


def atomic_install(temp_path: str, filepath: str, backup_suffix: str = "~") -> None:
    """
    Move a fully written temp file over `filepath` in a single rename,
    keeping the previous version as a backup.
    """
    preserve_backup(filepath, backup_suffix)
    os.replace(temp_path, filepath)
    _fsync_directory(os.path.dirname(filepath))


@contextmanager
def atomic_temp_path(filepath: str, suffix: str = ".tmp", backup_suffix: str = "~"):
    """
    Yield a temp path next to `filepath`; on clean exit it is installed over
    `filepath`, on error it is removed and `filepath` is left untouched.

    For writers (like sqlite3) that need a path rather than a file object.
    """
    folder = os.path.dirname(filepath)
    if folder:
        os.makedirs(folder, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=folder or ".", prefix=f".{os.path.basename(filepath)}.", suffix=suffix)
    os.close(fd)
    try:
        yield temp_path
        atomic_install(temp_path, filepath, backup_suffix)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


@contextmanager
def atomic_write(filepath: str, mode: str = "w"):
    """
    Safe atomic write. Writes to a temp file, then renames to target.
    Ensures no partial files exist at target path if process crashes.
    """
    folder = os.path.dirname(filepath)
    if folder:
        os.makedirs(folder, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=folder or ".", text="b" not in mode)

    try:
        with os.fdopen(fd, mode) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, filepath)
        _fsync_directory(folder)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise
