#!/usr/bin/env python3
r"""
USB drive endurance test (repeated fill + read-back verification)

What it does:
  • Measures free space on the target (statvfs on Linux/macOS, GetDiskFreeSpaceExW on Windows)
  • Fills it, minus a small reserve, with a deterministic BLAKE2b-tiled pattern
  • fsyncs, re-reads the file from the drive and compares BLAKE2b-512 digests
  • Repeats N rounds; round 1's digest is the baseline every later round must match
  • Stops at the first failed round and says which round and phase failed
  • JSON report via --report-json <path> (JSON Lines)

Interactive prompts if you run with no arguments. Writes one file per round and deletes it afterwards.
"""

import argparse
import ctypes
import glob
import hashlib
import json
import ntpath
import os
import platform
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

__version__ = "1.2.0"

MB = 1024**2
DIGEST_SIZE = 64  # BLAKE2b-512

DEFAULT_SEED = b"udisk-endurance/fixed-seed/v1"
DEFAULT_BLOCK_SIZE = 64 * MB
DEFAULT_RESERVE = 4 * MB
DEFAULT_REPEAT = 5
DEFAULT_FILE_PREFIX = "udisk_fixed_data"
WRITE_TEST_NAME = ".udisk_write_test"

ProgressFn = Callable[[int, int], None]

# ---------------------------- helpers ----------------------------


def human_bytes(n: float) -> str:
    for unit in ["B", "KB", "MB", "GB", "TB", "PB", "EB"]:
        if n < 1024.0:
            return f"{n:.2f} {unit}"
        n /= 1024.0
    return f"{n:.2f} ZB"


def human_time(seconds: float) -> str:
    m, s = divmod(max(0.0, seconds), 60)
    return f"{int(m)}m {s:,.2f}s"


def mb_per_s(n: int, seconds: float) -> float:
    if seconds <= 0:
        return 0.0
    return n / seconds / MB


# ----------------------------- errors -----------------------------


class Phase(Enum):
    PROBING = "probing"
    SIZING = "sizing"
    WRITING = "writing"
    FLUSHING = "flushing"
    VERIFYING = "verifying"
    COMPARING = "comparing"
    CLEANING = "cleaning"
    DONE = "done"
    FAILED = "failed"


class DriveTestError(Exception):
    """Base error. Carries the path involved and the round phase it belongs to."""

    default_phase: Optional[Phase] = None

    def __init__(
        self, message: str, path: Optional[str] = None, phase: Optional[Phase] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.phase = phase if phase is not None else self.default_phase

    def __str__(self) -> str:
        text = self.message
        if self.path:
            text += f" [{self.path}]"
        if self.__cause__ is not None:
            text += f": {self.__cause__}"
        return text


class TargetError(DriveTestError):
    pass


class SpaceQueryError(DriveTestError):
    default_phase = Phase.PROBING


class InsufficientSpaceError(DriveTestError):
    default_phase = Phase.SIZING

    def __init__(self, free: int, reserve: int, path: Optional[str] = None) -> None:
        super().__init__(
            f"free space {human_bytes(free)} is not above the {human_bytes(reserve)} reserve",
            path,
        )
        self.free = free
        self.reserve = reserve


class WriteError(DriveTestError):
    default_phase = Phase.WRITING

    def __init__(self, message: str, path: Optional[str] = None, written: int = 0) -> None:
        super().__init__(message, path)
        self.written = written


class FlushError(DriveTestError):
    default_phase = Phase.FLUSHING


class ReadError(DriveTestError):
    default_phase = Phase.VERIFYING

    def __init__(self, message: str, path: Optional[str] = None, read: int = 0) -> None:
        super().__init__(message, path)
        self.read = read


class SizeMismatchError(DriveTestError):
    default_phase = Phase.COMPARING

    def __init__(self, expected: int, written: int, read: int, path: Optional[str] = None) -> None:
        super().__init__(
            f"byte counts disagree: target {expected}, written {written}, read back {read}",
            path,
        )
        self.expected = expected
        self.written = written
        self.read = read


class DigestMismatchError(DriveTestError):
    default_phase = Phase.COMPARING

    def __init__(self, expected: str, actual: str, path: Optional[str] = None) -> None:
        super().__init__(
            f"read-back digest differs from written digest (expected {expected}, got {actual})",
            path,
        )
        self.expected = expected
        self.actual = actual


class BaselineMismatchError(DriveTestError):
    default_phase = Phase.COMPARING

    def __init__(
        self,
        round_index: int,
        baseline: str,
        actual: str,
        baseline_size: int,
        actual_size: int,
        path: Optional[str] = None,
    ) -> None:
        if baseline_size == actual_size:
            detail = f"same {actual_size} bytes"
        else:
            detail = f"round 1 wrote {baseline_size} bytes, this round {actual_size}"
        super().__init__(
            f"round {round_index} digest drifted from the round 1 baseline "
            f"({detail}; baseline {baseline}, got {actual})",
            path,
        )
        self.round_index = round_index
        self.baseline = baseline
        self.actual = actual
        self.baseline_size = baseline_size
        self.actual_size = actual_size

    @property
    def same_size(self) -> bool:
        return self.baseline_size == self.actual_size


class CleanupError(DriveTestError):
    default_phase = Phase.CLEANING


# ------------------------ free-space probes ------------------------


class FreeSpace(NamedTuple):
    free: int
    total: Optional[int] = None


def posix_free_space(path: str) -> FreeSpace:
    if not os.path.isabs(path):
        raise SpaceQueryError(f"mount path must be absolute, like /mnt/udisk (got: {path!r})")
    if not os.path.exists(path):
        raise SpaceQueryError("mount path does not exist", path)
    try:
        st = os.statvfs(path)
    except OSError as e:
        raise SpaceQueryError("statvfs failed", path) from e
    return FreeSpace(free=st.f_bavail * st.f_frsize, total=st.f_blocks * st.f_frsize)


def normalize_drive(drive: str) -> str:
    """'e', 'E:', 'E:\\' -> 'E:\\'. Other absolute Windows paths get a trailing separator."""
    d = drive.strip().strip('"').strip("'")
    if len(d) == 1 and d.isalpha():
        d += ":"
    if len(d) in (2, 3) and d[0].isalpha() and d[1] == ":" and d[2:] in ("", "\\", "/"):
        return d[0].upper() + ":\\"
    if ntpath.isabs(d):
        return d if d.endswith(("\\", "/")) else d + "\\"
    raise SpaceQueryError(f"Drive must look like E: or an absolute path (got: {drive!r})")


def windows_free_space(drive: str) -> FreeSpace:
    root = normalize_drive(drive)
    if not os.path.isdir(root):
        raise SpaceQueryError(f"{root} is not a valid/existing drive.", root)

    from ctypes import wintypes

    k32 = ctypes.WinDLL("kernel32", use_last_error=True)
    fn = k32.GetDiskFreeSpaceExW
    fn.restype = wintypes.BOOL
    fn.argtypes = [
        wintypes.LPCWSTR,
        ctypes.POINTER(ctypes.c_ulonglong),
        ctypes.POINTER(ctypes.c_ulonglong),
        ctypes.POINTER(ctypes.c_ulonglong),
    ]
    free_to_caller = ctypes.c_ulonglong(0)
    total = ctypes.c_ulonglong(0)
    total_free = ctypes.c_ulonglong(0)
    if not fn(root, ctypes.byref(free_to_caller), ctypes.byref(total), ctypes.byref(total_free)):
        err = ctypes.get_last_error()
        raise SpaceQueryError("GetDiskFreeSpaceExW failed", root) from OSError(
            err, f"WinError {err}"
        )
    return FreeSpace(free=free_to_caller.value, total=total.value)


_PROBES: Dict[str, Callable[[str], FreeSpace]] = {
    "posix": posix_free_space,
    "nt": windows_free_space,
}


def select_probe(os_name: Optional[str] = None) -> Callable[[str], FreeSpace]:
    name = os.name if os_name is None else os_name
    try:
        return _PROBES[name]
    except KeyError:
        raise ValueError(f"no free-space probe for platform {name!r}") from None


def basic_target_info(path: str, space: FreeSpace) -> None:
    total = f"  Total: {human_bytes(space.total)}" if space.total else ""
    print(f"[INFO ] {path}{total}  Free: {human_bytes(space.free)}")
    print(f"[INFO ] Python {sys.version.split()[0]} on {platform.system()} {platform.release()}")
    try:
        st = os.stat(path)
        print(f"[INFO ] Mode {oct(st.st_mode & 0o7777)}  Device {st.st_dev}")
    except OSError:
        pass


# ------------------------ payload + digests ------------------------


def seed_digest(seed: bytes) -> bytes:
    return hashlib.blake2b(seed, digest_size=DIGEST_SIZE).digest()


class PayloadGenerator:
    """Deterministic payload: the BLAKE2b-512 digest of the seed, tiled end to end.

    Byte ``i`` of the stream is ``seed_digest(seed)[i % 64]`` no matter how the
    stream is cut into blocks. Only one working buffer of ``block_size + 64``
    bytes is held; blocks are memoryview slices of it and stay valid until the
    next call. ``reset()`` refills that buffer in place, so one generator
    serves every round.
    """

    def __init__(
        self,
        block_size: int = DEFAULT_BLOCK_SIZE,
        seed: bytes = DEFAULT_SEED,
        total_size: int = 0,
    ) -> None:
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.block_size = block_size
        self._buf = bytearray(block_size + DIGEST_SIZE)
        self._view = memoryview(self._buf)
        self.seed = b""
        self.pattern = b""
        self.total_size = 0
        self.emitted = 0
        self.reset(total_size, seed)

    def reset(self, total_size: int, seed: Optional[bytes] = None) -> None:
        if total_size < 0:
            raise ValueError("total_size must not be negative")
        if seed is not None and (not self.pattern or bytes(seed) != self.seed):
            self.seed = bytes(seed)
            self.pattern = seed_digest(self.seed)
            self._fill()
        self.total_size = total_size
        self.emitted = 0

    def _fill(self) -> None:
        n = len(self._buf)
        self._view[:DIGEST_SIZE] = self.pattern
        filled = DIGEST_SIZE
        while filled < n:
            step = min(filled, n - filled)
            self._view[filled : filled + step] = self._view[:step]
            filled += step

    @property
    def remaining(self) -> int:
        return self.total_size - self.emitted

    def next_block(self) -> memoryview:
        n = min(self.block_size, self.remaining)
        if n <= 0:
            return self._view[:0]
        start = self.emitted % DIGEST_SIZE
        self.emitted += n
        return self._view[start : start + n]

    def __iter__(self):
        while True:
            block = self.next_block()
            if not block:
                return
            yield block


def generate(seed: bytes, size: int, block_size: int = 1 * MB) -> bytes:
    """Materialize a payload. Debugging and tests only; the test itself never does this."""
    gen = PayloadGenerator(block_size=min(block_size, max(size, 1)), seed=seed, total_size=size)
    return b"".join(bytes(b) for b in gen)


class DigestAccumulator:
    """BLAKE2b-512 bound to one stream: feed in order, finalize once, then discard."""

    def __init__(self) -> None:
        self._h = hashlib.blake2b(digest_size=DIGEST_SIZE)
        self._digest: Optional[bytes] = None
        self.fed = 0

    def update(self, chunk) -> None:
        if self._digest is not None:
            raise RuntimeError("digest already finalized; start a fresh accumulator")
        self._h.update(chunk)
        self.fed += len(chunk)

    def finalize(self) -> bytes:
        if self._digest is not None:
            raise RuntimeError("digest already finalized")
        self._digest = self._h.digest()
        return self._digest

    @property
    def finalized(self) -> bool:
        return self._digest is not None

    def hexdigest(self) -> str:
        if self._digest is None:
            raise RuntimeError("digest not finalized yet")
        return self._digest.hex()


# ---------------------------- progress ----------------------------


class ProgressCounter:
    """Advisory progress sink, called as ``progress(done, total)`` after every block.

    The count only moves forward and is read under a lock, so a reporting
    thread can poll ``value`` while I/O runs. With a ``stream`` it also redraws
    a one-line status at most once per ``interval`` seconds.
    """

    def __init__(self, label: str, total: int, interval: float = 1.0, stream=None) -> None:
        self.label = label
        self.total = total
        self.interval = interval
        self.stream = stream
        self.calls = 0
        self._lock = threading.Lock()
        self._done = 0
        self._t0 = time.perf_counter()
        self._last_draw = 0.0

    def __call__(self, done: int, total: Optional[int] = None) -> None:
        with self._lock:
            self.calls += 1
            if done > self._done:
                self._done = done
            if total:
                self.total = total
        if self.stream is None:
            return
        now = time.perf_counter()
        if now - self._last_draw >= self.interval or done >= self.total:
            self._last_draw = now
            self._draw(done, now - self._t0)

    @property
    def value(self) -> int:
        with self._lock:
            return self._done

    def _draw(self, done: int, elapsed: float) -> None:
        pct = (done / self.total) * 100 if self.total else 100.0
        eta = (self.total - done) * (elapsed / done) if done else 0.0
        line = (
            f"{self.label}: {pct:6.2f}% | {human_bytes(done)} / {human_bytes(self.total)} | "
            f"{mb_per_s(done, elapsed):,.1f} MB/s | ETA {human_time(eta)}"
        )
        self.stream.write("\r" + line)
        self.stream.flush()

    def finish(self) -> None:
        if self.stream is not None:
            self.stream.write("\n")
            self.stream.flush()


# -------------------------- I/O workers --------------------------


def _open_for_write(path: str):
    flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
    flags |= getattr(os, "O_BINARY", 0) | getattr(os, "O_SEQUENTIAL", 0)
    fd = os.open(path, flags, 0o666)
    return os.fdopen(fd, "wb", buffering=0)


def _open_for_read(path: str):
    flags = os.O_RDONLY | getattr(os, "O_BINARY", 0) | getattr(os, "O_SEQUENTIAL", 0)
    fd = os.open(path, flags)
    return os.fdopen(fd, "rb", buffering=0)


def write_payload(
    path: str,
    total_size: int,
    blocks: Iterable,
    digest: Optional[DigestAccumulator] = None,
    progress: Optional[ProgressFn] = None,
) -> int:
    """Stream ``blocks`` into ``path`` until exactly ``total_size`` bytes are on disk.

    Every accepted block is also fed to ``digest``, so the write-side digest
    never needs a second pass over the file. The file is fsynced before
    returning. On failure the partial file is left where it is and the error
    carries the byte count reached.
    """
    written = 0
    try:
        with _open_for_write(path) as f:
            for block in blocks:
                if written >= total_size:
                    break
                view = memoryview(block)[: total_size - written]
                off = 0
                while off < len(view):
                    n = f.write(view[off:])
                    if not n:
                        raise OSError(f"short write: device accepted 0 of {len(view) - off} bytes")
                    off += n
                    written += n
                if digest is not None:
                    digest.update(view)
                if progress is not None:
                    progress(written, total_size)
            if written < total_size:
                raise WriteError(
                    f"payload source ran dry at {written} of {total_size} bytes", path, written
                )
            try:
                f.flush()
                os.fsync(f.fileno())
            except OSError as e:
                raise FlushError("fsync failed", path) from e
    except OSError as e:
        raise WriteError(f"write failed after {written} bytes", path, written) from e
    return written


def read_and_digest(
    path: str,
    expected_size: Optional[int] = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
    digest: Optional[DigestAccumulator] = None,
    progress: Optional[ProgressFn] = None,
) -> Tuple[bytes, int]:
    """Re-read ``path`` from storage and return ``(digest, bytes_read)``.

    A read of zero bytes ends the stream; short reads are normal and the loop
    keeps going. ``expected_size`` only feeds progress totals, the caller
    checks the byte count.
    """
    acc = digest if digest is not None else DigestAccumulator()
    buf = bytearray(block_size)
    view = memoryview(buf)
    read = 0
    try:
        with _open_for_read(path) as f:
            total = expected_size if expected_size is not None else os.fstat(f.fileno()).st_size
            while True:
                n = f.readinto(buf)
                if not n:
                    break
                acc.update(view[:n])
                read += n
                if progress is not None:
                    progress(read, total)
    except OSError as e:
        raise ReadError(f"read failed after {read} bytes", path, read) from e
    return acc.finalize(), read


# -------------------------- orchestration --------------------------


@dataclass
class DriveTestConfig:
    target_path: str
    repeat: int = DEFAULT_REPEAT
    block_size: int = DEFAULT_BLOCK_SIZE
    reserve: int = DEFAULT_RESERVE
    seed: bytes = DEFAULT_SEED
    random_seed: bool = False
    file_prefix: str = DEFAULT_FILE_PREFIX
    keep: bool = False
    show_progress: bool = True

    def validate(self) -> None:
        if not self.target_path:
            raise ValueError("target path is required")
        if self.repeat < 1:
            raise ValueError(f"repeat must be at least 1 (got {self.repeat})")
        if self.block_size <= 0:
            raise ValueError(f"block size must be positive (got {self.block_size})")
        if self.reserve < 0:
            raise ValueError(f"reserve must not be negative (got {self.reserve})")
        if not self.file_prefix or os.sep in self.file_prefix or "/" in self.file_prefix:
            raise ValueError(f"file prefix must be a plain file name (got {self.file_prefix!r})")

    def file_path(self, index: int) -> str:
        return os.path.join(self.target_path, f"{self.file_prefix}_round{index:03d}.bin")


@dataclass
class TestRound:
    index: int
    seed: str = ""
    free_space: Optional[int] = None
    target_size: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    write_digest: Optional[str] = None
    verify_digest: Optional[str] = None
    baseline_consistent: Optional[bool] = None
    phase: Phase = Phase.PROBING
    failed_phase: Optional[Phase] = None
    error: Optional[DriveTestError] = None
    cleanup_error: Optional[CleanupError] = None
    write_seconds: float = 0.0
    read_seconds: float = 0.0
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.phase is Phase.DONE

    def as_dict(self) -> Dict[str, object]:
        return {
            "round": self.index,
            "ok": self.ok,
            "seed": self.seed,
            "free_space": self.free_space,
            "target_size": self.target_size,
            "bytes_written": self.bytes_written,
            "bytes_read": self.bytes_read,
            "write_digest": self.write_digest,
            "verify_digest": self.verify_digest,
            "baseline_consistent": self.baseline_consistent,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "cleanup_error": str(self.cleanup_error) if self.cleanup_error else None,
            "write": {
                "seconds": self.write_seconds,
                "mb_per_s": mb_per_s(self.bytes_written, self.write_seconds),
            },
            "read": {
                "seconds": self.read_seconds,
                "mb_per_s": mb_per_s(self.bytes_read, self.read_seconds),
            },
            "elapsed": self.elapsed,
        }


@dataclass
class RunReport:
    config: DriveTestConfig
    rounds: List[TestRound] = field(default_factory=list)
    baseline_digest: Optional[str] = None
    baseline_size: Optional[int] = None

    @property
    def passed(self) -> bool:
        return len(self.rounds) == self.config.repeat and all(r.ok for r in self.rounds)

    @property
    def failed_round(self) -> Optional[TestRound]:
        for r in self.rounds:
            if not r.ok:
                return r
        return None

    def as_dict(self) -> Dict[str, object]:
        failed = self.failed_round
        return {
            "passed": self.passed,
            "repeat": self.config.repeat,
            "completed_rounds": len(self.rounds),
            "baseline_digest": self.baseline_digest,
            "baseline_size": self.baseline_size,
            "failed_round": failed.index if failed else None,
            "failed_phase": failed.failed_phase.value if failed and failed.failed_phase else None,
            "rounds": [r.as_dict() for r in self.rounds],
        }


class CycleOrchestrator:
    """Runs ``config.repeat`` write/verify/delete rounds against one target.

    Each round goes probe -> size -> write+fsync -> re-read -> compare ->
    delete, strictly in sequence. The first failed round ends the run.
    """

    def __init__(
        self,
        config: DriveTestConfig,
        probe: Optional[Callable[[str], FreeSpace]] = None,
        progress_stream=None,
    ) -> None:
        config.validate()
        self.config = config
        self.probe = probe if probe is not None else select_probe()
        if progress_stream is None and config.show_progress:
            progress_stream = sys.stdout
        self.progress_stream = progress_stream
        self._generator: Optional[PayloadGenerator] = None

    def preflight(self) -> None:
        path = self.config.target_path
        if not os.path.isdir(path):
            raise TargetError("target is not an existing directory", path)
        check = os.path.join(path, WRITE_TEST_NAME)
        try:
            with open(check, "wb") as f:
                f.write(b"\0")
            os.remove(check)
        except OSError as e:
            raise TargetError("target is not writable", path) from e

    def run(self) -> RunReport:
        cfg = self.config
        self.preflight()
        self.remove_leftovers()
        report = RunReport(config=cfg)
        for index in range(1, cfg.repeat + 1):
            rnd = self.run_round(index, report.baseline_digest, report.baseline_size)
            report.rounds.append(rnd)
            if not rnd.ok:
                break
            if index == 1:
                report.baseline_digest = rnd.verify_digest
                report.baseline_size = rnd.target_size
            print(f"===== Round {index} done ({human_time(rnd.elapsed)}) =====")
        print_summary(report)
        return report

    def run_round(
        self,
        index: int,
        baseline: Optional[str] = None,
        baseline_size: Optional[int] = None,
    ) -> TestRound:
        cfg = self.config
        seed = os.urandom(32) if cfg.random_seed else cfg.seed
        rnd = TestRound(index=index, seed=seed.hex())
        path = cfg.file_path(index)
        t0 = time.perf_counter()
        print(f"\n===== Round {index}/{cfg.repeat} =====")
        try:
            space = self._probe(rnd)
            self._size(rnd, space)
            self._write(rnd, path, seed)
            self._verify(rnd, path)
            self._compare(rnd, path, baseline, baseline_size)
        except DriveTestError as e:
            if e.phase is None:
                e.phase = rnd.phase
            rnd.error = e
            rnd.failed_phase = e.phase
            print(f"[FAIL ] Round {index} failed while {e.phase.value}: {e}")
        self._cleanup(rnd, path)
        rnd.phase = Phase.FAILED if rnd.error else Phase.DONE
        rnd.elapsed = time.perf_counter() - t0
        return rnd

    def remove_leftovers(self) -> List[str]:
        """Delete every round file an interrupted run left behind, before round 1 is sized.

        All rounds must be measured against the same free space, otherwise a
        leftover for a later round makes that round longer than the baseline.
        """
        cfg = self.config
        pattern = os.path.join(
            glob.escape(cfg.target_path), glob.escape(cfg.file_prefix) + "_round*.bin"
        )
        removed = []
        for path in sorted(glob.glob(pattern)):
            print(f"[CLEAN] Removing leftover {path} from an interrupted run")
            try:
                os.remove(path)
                removed.append(path)
            except OSError as e:
                # the write truncates it anyway; only the measurement comes out smaller
                print(f"[WARN ] Could not remove leftover file: {e}")
        return removed

    def _probe(self, rnd: TestRound) -> FreeSpace:
        rnd.phase = Phase.PROBING
        target = self.config.target_path
        try:
            space = self.probe(target)
        except OSError as e:
            raise SpaceQueryError("free-space query failed", target) from e
        rnd.free_space = space.free
        total = f" of {human_bytes(space.total)}" if space.total else ""
        print(f"[SPACE] Free: {human_bytes(space.free)}{total}")
        return space

    def _size(self, rnd: TestRound, space: FreeSpace) -> None:
        rnd.phase = Phase.SIZING
        reserve = self.config.reserve
        if space.free <= reserve:
            raise InsufficientSpaceError(space.free, reserve, self.config.target_path)
        rnd.target_size = space.free - reserve

    def _payload(self, size: int, seed: bytes) -> PayloadGenerator:
        if self._generator is None:
            self._generator = PayloadGenerator(self.config.block_size, seed, size)
        else:
            self._generator.reset(size, seed)
        return self._generator

    def _progress(self, label: str, total: int) -> ProgressCounter:
        return ProgressCounter(label, total, stream=self.progress_stream)

    def _write(self, rnd: TestRound, path: str, seed: bytes) -> None:
        rnd.phase = Phase.WRITING
        size = rnd.target_size
        print(
            f"[WRITE] {human_bytes(size)} to {path} "
            f"(block {human_bytes(self.config.block_size)}, seed {seed.hex()[:16]}…)"
        )
        payload = self._payload(size, seed)
        acc = DigestAccumulator()
        progress = self._progress("Write", size)
        t0 = time.perf_counter()
        try:
            rnd.bytes_written = write_payload(path, size, payload, digest=acc, progress=progress)
        except WriteError as e:
            rnd.bytes_written = e.written
            raise
        finally:
            progress.finish()
        rnd.write_seconds = time.perf_counter() - t0
        rnd.write_digest = acc.finalize().hex()
        print(
            f"[WRITE] Wrote {human_bytes(rnd.bytes_written)} in {rnd.write_seconds:.2f}s  →  "
            f"{mb_per_s(rnd.bytes_written, rnd.write_seconds):.1f} MB/s (fsynced)"
        )

    def _verify(self, rnd: TestRound, path: str) -> None:
        rnd.phase = Phase.VERIFYING
        print(f"[READ ] Reading & hashing {human_bytes(rnd.target_size)} from {path}")
        progress = self._progress("Read ", rnd.target_size)
        t0 = time.perf_counter()
        try:
            digest, rnd.bytes_read = read_and_digest(
                path, rnd.target_size, self.config.block_size, progress=progress
            )
        except ReadError as e:
            rnd.bytes_read = e.read
            raise
        finally:
            progress.finish()
        rnd.read_seconds = time.perf_counter() - t0
        rnd.verify_digest = digest.hex()
        print(
            f"[READ ] Read {human_bytes(rnd.bytes_read)} in {rnd.read_seconds:.2f}s  →  "
            f"{mb_per_s(rnd.bytes_read, rnd.read_seconds):.1f} MB/s"
        )

    def _compare(
        self,
        rnd: TestRound,
        path: str,
        baseline: Optional[str],
        baseline_size: Optional[int] = None,
    ) -> None:
        rnd.phase = Phase.COMPARING
        if not rnd.bytes_written == rnd.target_size == rnd.bytes_read:
            raise SizeMismatchError(rnd.target_size, rnd.bytes_written, rnd.bytes_read, path)
        print(f"[HASH ] Written : {rnd.write_digest}")
        print(f"[HASH ] Readback: {rnd.verify_digest}")
        if rnd.write_digest != rnd.verify_digest:
            raise DigestMismatchError(rnd.write_digest or "", rnd.verify_digest or "", path)
        print("[OK   ] Read-after-write checksum matches ✅")

        if self.config.random_seed:
            return  # fresh content every round; nothing to hold against the baseline
        if baseline is None:
            rnd.baseline_consistent = True
            return
        rnd.baseline_consistent = rnd.verify_digest == baseline
        if not rnd.baseline_consistent:
            raise BaselineMismatchError(
                rnd.index,
                baseline,
                rnd.verify_digest or "",
                baseline_size if baseline_size is not None else rnd.target_size,
                rnd.target_size,
                path,
            )
        print("[OK   ] Matches round 1 baseline")

    def _cleanup(self, rnd: TestRound, path: str) -> None:
        if not os.path.exists(path):
            return
        if self.config.keep:
            print(f"[KEEP ] Leaving {path} in place")
            return
        if rnd.error is None:
            rnd.phase = Phase.CLEANING
        try:
            os.remove(path)
            print(f"[CLEAN] Deleted {path}")
        except OSError as e:
            err = CleanupError("could not delete test file", path)
            err.__cause__ = e
            rnd.cleanup_error = err
            print(f"[WARN ] {err}")


def print_summary(report: RunReport) -> None:
    print("\n============================")
    for r in report.rounds:
        status = "OK  " if r.ok else "FAIL"
        digest = r.verify_digest or r.write_digest or "-"
        print(f"[{status} ] Round {r.index}: {human_bytes(r.target_size)}  {digest}")
        if r.cleanup_error is not None:
            print(f"[WARN ]   cleanup: {r.cleanup_error}")
    failed = report.failed_round
    if report.passed:
        print(f"[OK   ] All {len(report.rounds)} rounds passed, data integrity good ✅")
    elif failed is not None:
        phase = failed.failed_phase.value if failed.failed_phase else "?"
        print(f"[FAIL ] Round {failed.index} failed while {phase}: {failed.error} ❌")
        err = failed.error
        if isinstance(err, BaselineMismatchError) and not err.same_size:
            print(
                f"[NOTE ] Free space changed between rounds ({human_bytes(err.baseline_size)} "
                f"vs {human_bytes(err.actual_size)}); digests of different lengths cannot be compared."
            )
        elif isinstance(err, (DigestMismatchError, BaselineMismatchError)):
            print("[FAIL ] Data corruption detected. STOP trusting this drive.")


# ----------------------- interactive prompts -----------------------


def _prompt(text: str, default: Optional[str] = None) -> str:
    if default is None:
        return input(text).strip()
    else:
        s = input(f"{text} [{default}]: ").strip()
        return s if s else default


def _prompt_yes_no(text: str, default: bool = False) -> bool:
    d = "Y/n" if default else "y/N"
    while True:
        s = input(f"{text} ({d}): ").strip().lower()
        if not s:
            return default
        if s in ("y", "yes"):
            return True
        if s in ("n", "no"):
            return False
        print("Please answer y or n.")


def _prompt_int(text: str, default: int, minimum: int) -> int:
    while True:
        try:
            value = int(_prompt(text, str(default)))
            if value < minimum:
                raise ValueError
            return value
        except ValueError:
            print(f"Enter an integer >= {minimum}.")


def interactive_config(defaults: argparse.Namespace) -> argparse.Namespace:
    print("\n--- Interactive Mode ---")
    example = "E:" if os.name == "nt" else "/mnt/udisk"
    while True:
        path = _prompt(f"Target drive or mount path (like {example})", defaults.path or None)
        try:
            path = normalize_target(path)
        except (ValueError, SpaceQueryError) as e:
            print(str(e))
            continue
        if os.path.isdir(path):
            break
        print(f"{path} is not an existing directory.")

    space = select_probe()(path)
    print(f"Detected {path} with ~{human_bytes(space.free)} free.")

    repeat = _prompt_int("Rounds (write + verify cycles)", defaults.repeat, 1)
    block_mb = _prompt_int("I/O block size in MB", defaults.block_mb, 1)
    reserve_mb = _prompt_int("Free space to leave unwritten, in MB", defaults.reserve_mb, 0)
    random_seed = _prompt_yes_no("Fresh random pattern every round?", defaults.random_seed)
    keep = _prompt_yes_no("Keep the test files after run?", defaults.keep)
    report_in = _prompt(
        "Save results to JSON (path or 'y' for default; Enter to skip)",
        getattr(defaults, "report_json", "") or "",
    )

    return argparse.Namespace(
        path=path,
        repeat=repeat,
        block_mb=block_mb,
        reserve_mb=reserve_mb,
        seed=defaults.seed,
        random_seed=random_seed,
        file_prefix=defaults.file_prefix,
        keep=keep,
        no_progress=defaults.no_progress,
        report_json=resolve_report_path(report_in, path),
    )


# ------------------------------- main -------------------------------


def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="USB drive endurance test: fill, fsync, re-read and verify, N times",
        add_help=True,
    )
    ap.add_argument(
        "-p", "--path", help=r"Windows: drive letter like E: ; Linux/macOS: mount path like /mnt/udisk"
    )
    ap.add_argument(
        "-r", "--repeat", type=int, default=DEFAULT_REPEAT,
        help=f"Write + verify rounds (default {DEFAULT_REPEAT})",
    )
    ap.add_argument(
        "--block-mb", type=int, default=DEFAULT_BLOCK_SIZE // MB,
        help=f"I/O block size in MB (default {DEFAULT_BLOCK_SIZE // MB})",
    )
    ap.add_argument(
        "--reserve-mb", type=int, default=DEFAULT_RESERVE // MB,
        help=f"Free space left unwritten, in MB (default {DEFAULT_RESERVE // MB})",
    )
    ap.add_argument(
        "--seed", default=None,
        help="Text seed for the fixed pattern (default: built-in constant)",
    )
    ap.add_argument(
        "--random-seed", action="store_true",
        help="Draw a fresh random seed every round (recorded in the report; disables baseline check)",
    )
    ap.add_argument(
        "--file-prefix", default=DEFAULT_FILE_PREFIX,
        help=f"Test file name prefix (default: {DEFAULT_FILE_PREFIX})",
    )
    ap.add_argument("--keep", action="store_true", help="Keep the test files (skip cleanup)")
    ap.add_argument("--no-progress", action="store_true", help="Do not draw progress lines")
    ap.add_argument(
        "--report-json", help="Append one JSON object per run to this file (JSON Lines)"
    )
    return ap


def normalize_target(path: str) -> str:
    p = path.strip().strip('"').strip("'")
    if not p:
        raise ValueError("target path is required")
    if os.name == "nt":
        return normalize_drive(p)
    if not os.path.isabs(p):
        raise ValueError(f"mount path must be absolute, like /mnt/udisk (got: {p!r})")
    return os.path.normpath(p)


def config_from_args(args: argparse.Namespace) -> DriveTestConfig:
    if args.block_mb <= 0:
        raise ValueError(f"--block-mb must be positive (got {args.block_mb})")
    if args.reserve_mb < 0:
        raise ValueError(f"--reserve-mb must not be negative (got {args.reserve_mb})")
    config = DriveTestConfig(
        target_path=normalize_target(args.path or ""),
        repeat=args.repeat,
        block_size=args.block_mb * MB,
        reserve=args.reserve_mb * MB,
        seed=args.seed.encode("utf-8") if args.seed else DEFAULT_SEED,
        random_seed=bool(args.random_seed),
        file_prefix=args.file_prefix,
        keep=bool(args.keep),
        show_progress=not args.no_progress,
    )
    config.validate()
    return config


def resolve_report_path(user_value: Optional[str], target: str) -> Optional[str]:
    if not user_value:
        return None

    v = user_value.strip().strip('"').strip("'")
    if not v:
        return None

    # Default base: script directory
    script_dir = os.path.dirname(os.path.abspath(__file__))
    label = "".join(c if c.isalnum() else "_" for c in target).strip("_") or "target"
    default_name = f"udisk_runs_{label}.jsonl"

    # "y"/"yes" means the default file in the script dir
    if v.lower() in ("y", "yes", "true", "1"):
        return os.path.join(script_dir, default_name)

    path = os.path.expandvars(os.path.expanduser(v))

    if path.endswith(("\\", "/")) or os.path.isdir(path):
        return os.path.join(path, default_name)

    root, ext = os.path.splitext(path)
    if ext.lower() in (".json", ".jsonl"):
        return path

    return os.path.join(path, default_name)


def build_report_record(report: RunReport) -> Dict[str, object]:
    cfg = report.config
    return {
        "timestamp_local": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime()),
        "script_version": __version__,
        "python_version": sys.version.split()[0],
        "os": {
            "system": platform.system(),
            "release": platform.release(),
            "version": platform.version(),
        },
        "target": cfg.target_path,
        "params": {
            "repeat": cfg.repeat,
            "block_size": cfg.block_size,
            "reserve": cfg.reserve,
            "seed_policy": "random-per-round" if cfg.random_seed else "fixed",
            "seed": None if cfg.random_seed else cfg.seed.hex(),
            "keep": cfg.keep,
        },
        "result": report.as_dict(),
    }


def _write_report_json(path: str, obj: Dict[str, object]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False) + "\n")
    print(f"[REPORT] Appended JSON to {path}")


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_argparser()
    argv = sys.argv[1:] if argv is None else argv

    # No CLI args: interactive prompts.
    if not argv:
        args = interactive_config(ap.parse_args([]))
    else:
        args = ap.parse_args(argv)
        if not args.path:
            ap.error("-p/--path is required")
        if args.report_json:
            args.report_json = resolve_report_path(args.report_json, args.path)

    print(f"=== USB Drive Endurance Test v{__version__} ===")
    try:
        config = config_from_args(args)
    except (ValueError, SpaceQueryError) as e:
        print(f"[ERR  ] {e}")
        return 2
    print(
        f"[CONF ] Target: {config.target_path} | rounds: {config.repeat} | "
        f"block: {human_bytes(config.block_size)} | reserve: {human_bytes(config.reserve)} | "
        f"seed: {'random per round' if config.random_seed else 'fixed'}"
    )

    orchestrator = CycleOrchestrator(config)
    try:
        basic_target_info(config.target_path, orchestrator.probe(config.target_path))
        report = orchestrator.run()
    except (TargetError, SpaceQueryError) as e:
        print(f"[ERR  ] {e}")
        return 2

    if args.report_json:
        try:
            _write_report_json(args.report_json, build_report_record(report))
        except OSError as e:
            print(f"[ERR  ] Could not write JSON report to {args.report_json}: {e}")

    return 0 if report.passed else 1


def cli() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n[ABORT] Interrupted by user.")
        sys.exit(130)


if __name__ == "__main__":
    cli()
