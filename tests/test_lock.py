"""Tests for the run lock."""
import pytest

from panelo.core.errors import ExitCode, LockError
from panelo.core.lock import RunLock, run_lock


class TestRunLock:
    """Test exclusive run lock."""

    def test_acquire_writes_pid(self, tmp_path):
        lock_file = tmp_path / "run" / "panelo.lock"
        with RunLock(lock_file):
            lines = lock_file.read_text().splitlines()
            assert lines[0].isdigit()
        assert not lock_file.exists()

    def test_second_holder_is_refused(self, tmp_path):
        lock_file = tmp_path / "panelo.lock"
        with run_lock(lock_file):
            with pytest.raises(LockError) as exc:
                RunLock(lock_file).acquire()
        assert exc.value.exit_code == ExitCode.LOCKED
        assert "Another panelo run is in progress" in str(exc.value)

    def test_released_after_error(self, tmp_path):
        lock_file = tmp_path / "panelo.lock"
        with pytest.raises(RuntimeError):
            with run_lock(lock_file):
                raise RuntimeError("step failed")

        with run_lock(lock_file) as lock:
            assert lock is not None

    def test_disabled_lock(self, tmp_path):
        with run_lock(tmp_path / "panelo.lock", enabled=False) as lock:
            assert lock is None
        assert not (tmp_path / "panelo.lock").exists()
