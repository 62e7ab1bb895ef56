"""Filesystem, rlimit and bpffs helpers shared by the XDP tools."""

from __future__ import annotations

import errno
import fcntl
import functools
import os
import re
import resource

from xdputil.log import LogLevel, log_print, pr_debug, pr_warn

PATH_MAX = 4096
BPF_DIR_MNT = "/sys/fs/bpf"
BPF_OBJECT_PATH = "/usr/lib/bpf"
XDP_OBJECT_ENVVAR = "LIBXDP_OBJECT_PATH"
MOUNTS_FILE = "/proc/mounts"
BPF_FSTYPE = "bpf"

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def _join(*parts):
    """Join path parts with '/', refusing results longer than PATH_MAX."""
    path = "/".join(parts)
    if len(path) >= PATH_MAX:
        raise OSError(errno.ENAMETOOLONG, os.strerror(errno.ENAMETOOLONG), path)
    return path


def make_dir_subdir(parent, directory):
    """Create *parent* and *parent*/*directory* (mode 0700) if missing.

    Returns the path of the subdirectory.
    """
    path = _join(parent, directory)
    for target in (parent, path):
        try:
            os.mkdir(target, 0o700)
        except FileExistsError:
            pass
    return path


def set_rlimit(min_limit):
    """Raise the locked-memory soft limit.

    With a non-zero *min_limit* the limit is raised to at least that value;
    with zero it is doubled. Returns the soft limit now in effect.
    """
    try:
        soft, hard = resource.getrlimit(resource.RLIMIT_MEMLOCK)
    except OSError:
        pr_warn("Couldn't get current rlimit\n")
        raise

    if soft == resource.RLIM_INFINITY or soft == 0:
        pr_debug("Current rlimit is infinity or 0. Not raising\n")
        raise OSError(errno.ENOMEM, "rlimit is infinity or 0; not raising")

    if min_limit:
        if soft >= min_limit:
            pr_debug(f"Current rlimit {soft} already >= minimum {min_limit}\n")
            return soft
        pr_debug(f"Setting rlimit to minimum {min_limit}\n")
        soft = min_limit
    else:
        pr_debug(f"Doubling current rlimit of {soft}\n")
        soft <<= 1

    if hard != resource.RLIM_INFINITY:
        hard = max(soft, hard)

    try:
        resource.setrlimit(resource.RLIMIT_MEMLOCK, (soft, hard))
    except ValueError as exc:
        pr_warn(f"Couldn't raise rlimit: {exc}\n")
        raise PermissionError(errno.EPERM, str(exc)) from exc
    except OSError as exc:
        pr_warn(f"Couldn't raise rlimit: {exc.strerror}\n")
        raise
    return soft


def double_rlimit():
    """Double the locked-memory limit after a permission failure."""
    pr_debug("Permission denied when loading eBPF object; "
             "raising rlimit and retrying\n")
    return set_rlimit(0)


def check_bpf_environ():
    """Check that we run as root and start with a 1 MiB memlock limit."""
    if os.geteuid() != 0:
        pr_warn("This program must be run as root.\n")
        raise PermissionError(errno.EPERM, "This program must be run as root")
    try:
        set_rlimit(1024 * 1024)
    except (OSError, ValueError):
        pass


def _is_file(path):
    pr_debug(f"Looking for '{path}'\n")
    return os.path.exists(path)


def find_bpf_file(progname, search_paths=None, env_var=XDP_OBJECT_ENVVAR):
    """Locate the BPF object file *progname*.

    If the environment variable *env_var* is set, only the directory it
    names is searched; otherwise each of *search_paths* is tried in order.
    Returns the full path, or raises FileNotFoundError.
    """
    env_path = os.environ.get(env_var) if env_var else None
    if env_path is not None:
        candidates = [env_path]
    else:
        candidates = list(search_paths if search_paths is not None
                          else (BPF_OBJECT_PATH,))

    for directory in candidates:
        try:
            path = _join(directory, progname)
        except OSError:
            continue
        if _is_file(path):
            return path

    pr_warn(f"Couldn't find a BPF file with name {progname}\n")
    raise FileNotFoundError(errno.ENOENT,
                            f"Couldn't find a BPF file with name {progname}")


def _unescape(field):
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def _read_mounts(mounts_file):
    """Return (mount point, filesystem type) pairs in file order."""
    try:
        with open(mounts_file, encoding="utf-8", errors="replace") as fp:
            lines = fp.read().splitlines()
    except OSError:
        return []
    mounts = []
    for line in lines:
        fields = line.split()
        if len(fields) >= 3:
            mounts.append((_unescape(fields[1]), fields[2]))
    return mounts


def find_bpf_mount(known_mounts=None, mounts_file=MOUNTS_FILE):
    """Find a mounted BPF filesystem.

    Each of *known_mounts* is checked first; failing that, the first bpf
    mount listed in *mounts_file* is returned. Returns None if none exists.
    """
    if known_mounts is None:
        known_mounts = (BPF_DIR_MNT, "/bpf")
    mounts = _read_mounts(mounts_file)
    bpf_mounts = [mnt for mnt, fstype in mounts if fstype == BPF_FSTYPE]
    for candidate in known_mounts:
        if candidate in bpf_mounts:
            return candidate
    return bpf_mounts[0] if bpf_mounts else None


@functools.lru_cache(maxsize=None)
def _bpf_work_dir():
    mnt = find_bpf_mount()
    if mnt is not None:
        return mnt
    try:
        os.mkdir(BPF_DIR_MNT, 0o700)
    except FileExistsError:
        pass
    except OSError as exc:
        pr_warn(f"mkdir {BPF_DIR_MNT} failed: {exc.strerror}\n")
        return None
    return find_bpf_mount((BPF_DIR_MNT,))


def get_bpf_root_dir(subdir=None, fatal=False):
    """Return the bpffs working directory, optionally joined with *subdir*.

    Raises FileNotFoundError when no BPF filesystem is mounted; the message
    is logged as a warning if *fatal*, else at debug level.
    """
    bpf_dir = _bpf_work_dir()
    if bpf_dir is None:
        log_print(LogLevel.WARN if fatal else LogLevel.DEBUG,
                  "Could not find BPF working dir - bpffs not mounted?\n")
        raise FileNotFoundError(errno.ENOENT,
                                "Could not find BPF working dir")
    if subdir:
        return _join(bpf_dir, subdir)
    return _join(bpf_dir)


def unlink_pinned_map(dir_fd, map_name):
    """Remove the pinned map *map_name* in the directory *dir_fd*.

    Returns True if it was removed, False if it was not pinned.
    """
    try:
        os.stat(map_name, dir_fd=dir_fd)
    except FileNotFoundError:
        pr_debug(f"Map name {map_name} not pinned\n")
        return False
    except OSError as exc:
        pr_warn(f"Couldn't stat pinned map {map_name}: {exc.strerror}\n")
        raise

    pr_debug(f"Unlinking pinned map {map_name}\n")
    try:
        os.unlink(map_name, dir_fd=dir_fd)
    except OSError as exc:
        pr_warn(f"Couldn't unlink pinned map {map_name}: {exc.strerror}\n")
        raise
    return True


def prog_lock_acquire(directory):
    """Take an exclusive flock on *directory*, creating it if needed.

    Returns the file descriptor that holds the lock.
    """
    while True:
        try:
            lock_fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
            break
        except FileNotFoundError as exc:
            try:
                os.mkdir(directory, 0o700)
            except OSError:
                pr_warn(f"Couldn't open lock directory at {directory}: "
                        f"{exc.strerror}\n")
                raise exc from None
        except OSError as exc:
            pr_warn(f"Couldn't open lock directory at {directory}: "
                    f"{exc.strerror}\n")
            raise

    try:
        fcntl.flock(lock_fd, fcntl.LOCK_EX)
    except OSError as exc:
        pr_warn(f"Couldn't flock fd {lock_fd}: {exc.strerror}\n")
        os.close(lock_fd)
        raise

    pr_debug(f"Acquired lock from {directory} with fd {lock_fd}\n")
    return lock_fd


def prog_lock_release(lock_fd):
    """Release the lock held on *lock_fd* and close it."""
    try:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
    except OSError as exc:
        pr_warn(f"Couldn't unlock fd {lock_fd}: {exc.strerror}\n")
        raise
    else:
        pr_debug(f"Released lock fd {lock_fd}\n")
    finally:
        os.close(lock_fd)