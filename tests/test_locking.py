"""Tests for initflow.lib.locking module."""

import os

import pytest

from initflow.lib.locking import LockTimeout, initiative_lock


class TestInitiativeLock:
    """Per-initiative flock."""

    def test_lock_file_records_pid(self, tmp_path):
        """Lock file holds the owner's pid and is left behind."""
        with initiative_lock(tmp_path, "alpha"):
            lock_file = tmp_path / ".locks" / "alpha.lock"
            assert lock_file.read_text().strip() == str(os.getpid())
        assert lock_file.exists()

    def test_contention_times_out(self, tmp_path):
        """A second holder times out."""
        with initiative_lock(tmp_path, "alpha"):
            with pytest.raises(LockTimeout):
                with initiative_lock(tmp_path, "alpha", timeout=0.2):
                    pass

    def test_initiatives_lock_independently(self, tmp_path):
        """Different initiatives do not contend."""
        with initiative_lock(tmp_path, "alpha"):
            with initiative_lock(tmp_path, "beta", timeout=0.2):
                pass

    def test_released_after_exception(self, tmp_path):
        """An exception inside the block releases the lock."""
        with pytest.raises(RuntimeError):
            with initiative_lock(tmp_path, "alpha"):
                raise RuntimeError("boom")

        with initiative_lock(tmp_path, "alpha", timeout=0.2):
            pass
