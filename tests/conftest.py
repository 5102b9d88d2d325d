import pytest

import udisk_endurance as ue

KIB = 1024


class FakeProbe:
    """Free-space probe that replays scripted answers, one per call.

    The last answer repeats once the script runs out. Exceptions in the
    script are raised instead of returned.
    """

    def __init__(self, *answers, total=None):
        self.answers = list(answers)
        self.total = total
        self.calls = []

    def __call__(self, path):
        self.calls.append(path)
        value = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(value, BaseException):
            raise value
        return ue.FreeSpace(free=value, total=self.total)


class ShortFile:
    """Wraps a real raw file but moves at most ``limit`` bytes per call."""

    def __init__(self, raw, limit):
        self._raw = raw
        self.limit = limit
        self.calls = 0

    def write(self, data):
        self.calls += 1
        return self._raw.write(memoryview(data)[: self.limit])

    def readinto(self, buf):
        self.calls += 1
        return self._raw.readinto(memoryview(buf)[: self.limit])

    def flush(self):
        self._raw.flush()

    def fileno(self):
        return self._raw.fileno()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._raw.close()
        return False


class FailingFile(ShortFile):
    """Moves data normally until ``fail_after`` bytes, then raises EIO."""

    def __init__(self, raw, fail_after):
        super().__init__(raw, limit=None)
        self.fail_after = fail_after
        self.moved = 0

    def _check(self, n):
        if self.moved >= self.fail_after:
            raise OSError(5, "Input/output error")
        return min(n, self.fail_after - self.moved)

    def write(self, data):
        n = self._check(len(data))
        done = self._raw.write(memoryview(data)[:n])
        self.moved += done
        return done

    def readinto(self, buf):
        n = self._check(len(buf))
        done = self._raw.readinto(memoryview(buf)[:n])
        self.moved += done
        return done


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        params = dict(
            target_path=str(tmp_path),
            repeat=1,
            block_size=64 * KIB,
            reserve=1 * KIB,
            show_progress=False,
        )
        params.update(overrides)
        return ue.DriveTestConfig(**params)

    return _make
