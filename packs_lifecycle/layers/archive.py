"""Deterministic layer archives.

This module handles:
- Turning a layer directory into a reproducible tar archive
- Computing the layer's diffID (sha256 of the uncompressed archive)
- Restoring a layer archive into a launch directory

Archives are reproducible: entries are sorted lexicographically by path,
mtimes and ownership are zeroed, and only permission bits are kept, so
byte-identical directory contents always give the same diffID.

A missing or empty directory produces no layer (``None``).
"""

from __future__ import annotations

import copy
import hashlib
import io
import logging
import os
import stat
import tarfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from packs_lifecycle.errors import LayerStoreError

logger = logging.getLogger(__name__)

# Mode for synthesized parent directory entries (e.g. 'launch/', 'launch/<bp>/')
PARENT_DIR_MODE = 0o755

# Permission bits restored on extraction (setuid, setgid and sticky are dropped)
PERMISSION_BITS = 0o777


@dataclass(frozen=True)
class LayerArchive:
    """An uncompressed layer archive and its diffID.

    Attributes:
        data: Uncompressed tar bytes.
        diff_id: 'sha256:<hex>' digest of data.
    """

    data: bytes = field(repr=False)
    diff_id: str

    @property
    def size(self) -> int:
        return len(self.data)


def compute_diff_id(data: bytes) -> str:
    """Compute the diffID of an uncompressed layer archive."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def layer_prefix(image_launch_dir: str, buildpack_id: str, layer_name: str) -> str:
    """Return the in-image path of a layer directory, without leading slash."""
    root = image_launch_dir.strip("/")
    parts = [p for p in (root, buildpack_id, layer_name) if p]
    return "/".join(parts)


def _normalized(info: tarfile.TarInfo, mode: int) -> tarfile.TarInfo:
    info.mode = stat.S_IMODE(mode)
    info.mtime = 0
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    return info


def _dir_info(name: str, mode: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    return _normalized(info, mode)


def _collect_entries(directory: Path) -> list[tuple[str, Path]]:
    """List every entry below directory as (relative posix path, path).

    Symlinked directories are not descended into.
    """
    entries: list[tuple[str, Path]] = []
    stack = [directory]
    while stack:
        current = stack.pop()
        with os.scandir(current) as it:
            for entry in it:
                path = Path(entry.path)
                entries.append((path.relative_to(directory).as_posix(), path))
                if entry.is_dir(follow_symlinks=False):
                    stack.append(path)
    entries.sort(key=lambda e: e[0])
    return entries


def build_layer(directory: Path, prefix: str) -> LayerArchive | None:
    """Build a deterministic layer archive from a directory.

    Entries are stored under ``prefix`` (e.g. 'launch/<bp>/<layer>'), preceded
    by entries for each parent directory of the prefix.

    Args:
        directory: Layer directory on disk.
        prefix: Path of the layer directory inside the image.

    Returns:
        LayerArchive, or None if the directory is missing or empty.

    Raises:
        LayerStoreError: If the directory cannot be read or holds
            unsupported file types.
    """
    if not directory.exists():
        logger.debug("No layer directory at %s", directory)
        return None
    if not directory.is_dir():
        raise LayerStoreError(
            f"layer path is not a directory: {directory}",
            code="not_a_directory",
            operation="build layer",
        )

    prefix = prefix.strip("/")
    try:
        entries = _collect_entries(directory)
        if not entries:
            logger.debug("Layer directory is empty: %s", directory)
            return None

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
            parts = prefix.split("/")
            for i in range(1, len(parts)):
                tar.addfile(_dir_info("/".join(parts[:i]), PARENT_DIR_MODE))
            tar.addfile(_dir_info(prefix, directory.stat().st_mode))

            for rel_path, path in entries:
                name = f"{prefix}/{rel_path}"
                st = path.lstat()
                if stat.S_ISLNK(st.st_mode):
                    info = tarfile.TarInfo(name)
                    info.type = tarfile.SYMTYPE
                    info.linkname = os.readlink(path)
                    tar.addfile(_normalized(info, st.st_mode))
                elif stat.S_ISDIR(st.st_mode):
                    tar.addfile(_dir_info(name, st.st_mode))
                elif stat.S_ISREG(st.st_mode):
                    info = _normalized(tarfile.TarInfo(name), st.st_mode)
                    info.size = st.st_size
                    with path.open("rb") as f:
                        tar.addfile(info, f)
                else:
                    raise LayerStoreError(
                        f"unsupported file type in layer: {path}",
                        code="unsupported_file_type",
                        operation="build layer",
                    )
    except OSError as e:
        raise LayerStoreError(
            f"cannot archive {directory}: {e}",
            code="layer_read_error",
            operation="build layer",
        ) from e

    data = buf.getvalue()
    archive = LayerArchive(data=data, diff_id=compute_diff_id(data))
    logger.debug(
        "Built layer %s from %s (%d entries, %d bytes)",
        archive.diff_id[:19],
        directory,
        len(entries),
        archive.size,
    )
    return archive


def _relative_member(member: tarfile.TarInfo, prefix: str) -> tarfile.TarInfo | None:
    name = member.name.rstrip("/")
    if not name.startswith(prefix + "/"):
        return None

    rel = name[len(prefix) + 1 :]
    rel_path = PurePosixPath(rel)
    if rel_path.is_absolute() or ".." in rel_path.parts:
        raise LayerStoreError(
            f"refusing to extract {member.name}: path traversal detected",
            code="path_traversal",
            operation="restore layer",
        )

    relocated = copy.copy(member)
    relocated.name = rel
    if member.islnk():
        if not member.linkname.startswith(prefix + "/"):
            raise LayerStoreError(
                f"refusing to extract {member.name}: hard link outside layer",
                code="path_traversal",
                operation="restore layer",
            )
        relocated.linkname = member.linkname[len(prefix) + 1 :]
    return relocated


def _restore_filter(
    member: tarfile.TarInfo, dest_path: str
) -> tarfile.TarInfo | None:
    # tar_filter clears group/other write bits; keep the archived permissions
    filtered = tarfile.tar_filter(member, dest_path)
    if filtered is None or member.issym():
        return filtered
    return filtered.replace(mode=member.mode & PERMISSION_BITS, deep=False)


def extract_layer(data: bytes, dest: Path, prefix: str) -> int:
    """Restore the layer directory stored under ``prefix`` into ``dest``.

    Members outside the prefix (including the synthesized parent
    directories) are skipped. Permission bits are preserved so rebuilding
    the restored directory reproduces the original diffID.

    Args:
        data: Uncompressed layer archive.
        dest: Directory to restore into (created if missing).
        prefix: Path of the layer directory inside the archive.

    Returns:
        Number of entries restored.

    Raises:
        LayerStoreError: If the archive is invalid or unsafe.
    """
    prefix = prefix.strip("/")
    root_mode: int | None = None
    members: list[tarfile.TarInfo] = []

    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            for member in tar.getmembers():
                if member.name.rstrip("/") == prefix and member.isdir():
                    root_mode = member.mode
                    continue
                relocated = _relative_member(member, prefix)
                if relocated is not None:
                    members.append(relocated)

            dest.mkdir(parents=True, exist_ok=True)
            tar.extractall(dest, members=members, filter=_restore_filter)

        if root_mode is not None:
            dest.chmod(stat.S_IMODE(root_mode))
    except tarfile.TarError as e:
        raise LayerStoreError(
            f"cannot restore layer into {dest}: {e}",
            code="layer_extract_error",
            operation="restore layer",
        ) from e
    except OSError as e:
        raise LayerStoreError(
            f"cannot restore layer into {dest}: {e}",
            code="layer_write_error",
            operation="restore layer",
        ) from e

    logger.debug("Restored %d entries into %s", len(members), dest)
    return len(members)


__all__ = [
    "PARENT_DIR_MODE",
    "LayerArchive",
    "build_layer",
    "compute_diff_id",
    "extract_layer",
    "layer_prefix",
]
