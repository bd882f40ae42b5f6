"""
The read-only filesystem index behind the directory and leaf-search nodes.

`FindIndex` is the contract the nodes depend on. `FsIndex` implements it
by scanning a build tree once and answering each query with the same
paths the corresponding shell idiom prints, in sorted order.
"""
from __future__ import annotations

import fnmatch
import logging
import os
import posixpath
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

from makesh.makesh_text import SsvWriter

logger = logging.getLogger(__name__)


class FindIndex(ABC):
    """Contract for the index consulted by the filesystem query nodes."""

    @abstractmethod
    def ready(self) -> bool: raise NotImplementedError
    @abstractmethod
    def leaves_ready(self) -> bool: raise NotImplementedError
    @abstractmethod
    def initialize(self, options: Optional[Mapping[str, Any]] = None) -> None: raise NotImplementedError

    # Each query returns False when it cannot answer for the given paths;
    # the caller then runs the original command.

    @abstractmethod
    def list_directory(self, writer: SsvWriter, dir: str) -> bool:
        """`if [ -d D ] ; then cd D ; find ./ -not -name '.*' -and -type f -and -not -type l ; fi`"""
        raise NotImplementedError

    @abstractmethod
    def list_extension_files_under(self, writer: SsvWriter, chdir: str, root: str, ext: str) -> bool:
        """`cd C ; find -L R -name "*EXT" -and -not -name ".*"`"""
        raise NotImplementedError

    @abstractmethod
    def list_java_resource_group(self, writer: SsvWriter, dir: str) -> bool:
        """`cd D && find . -type d -a -name ".svn" -prune -o -type f -a ...` over non-Java resources."""
        raise NotImplementedError

    @abstractmethod
    def find_leaves(self, writer: SsvWriter, dir: str, name: str, prunes: Sequence[str], mindepth: int) -> bool:
        """`findleaves.py --prune=... [--mindepth=N] DIR NAME` for one directory of the dirlist.

        A negative mindepth means no minimum.
        """
        raise NotImplementedError


class _Entry(NamedTuple):
    name: str
    kind: str                   # 'file' | 'dir' | 'link' | 'other'
    target: Optional[str] = None
    # For links: 'file' | 'dir' | 'other' | 'dangling' | 'outside'
    target_kind: Optional[str] = None


class _CannotAnswer(Exception):
    pass


# Files excluded from a Java resource group, besides '.svn' directories.
JAVA_RESOURCE_EXCLUDES = ("*.java", "package.html", "overview.html", ".*.swp", ".DS_Store", "*~")


def _join(base: str, name: str) -> str:
    return name if base == "." else f"{base}/{name}"


class FsIndex(FindIndex):
    """Scans a build tree once and answers find-style queries from memory.

    Relative query paths are taken from the current directory, where the
    original command would run. Paths that end up outside the indexed root
    cannot be answered.

    Options accepted by `initialize`:
      - root: directory to index (defaults to the current directory),
      - enabled: when False the index stays not-ready forever.
    """
    def __init__(self):
        self.root: Optional[str] = None
        self._dirs: Dict[str, Dict[str, _Entry]] = {}
        self._lock = threading.Lock()
        self._initialized = False
        self._ready = False
        self._leaves_ready = False

    def __repr__(self) -> str:
        return f"<FsIndex root={self.root!r} ready={self._ready} dirs={len(self._dirs)}>"

    def ready(self) -> bool:
        return self._ready

    def leaves_ready(self) -> bool:
        return self._leaves_ready

    def initialize(self, options: Optional[Mapping[str, Any]] = None) -> None:
        with self._lock:
            if self._initialized:
                return
            self._initialized = True
            opts = dict(options or {})
            if not opts.get("enabled", True):
                logger.info("[find-index] disabled by configuration")
                return
            self.root = os.path.realpath(opts.get("root") or os.getcwd())
            if not os.path.isdir(self.root):
                logger.warning(f"[find-index] root {self.root!r} is not a directory; index stays not ready")
                return
            self._scan(self.root, ".")
            self._leaves_ready = True
            self._ready = True
            logger.info(f"[find-index] indexed {len(self._dirs)} directories under {self.root}")

    # -----------------------------------------------------------------
    # Scanning
    # -----------------------------------------------------------------

    def _scan(self, path: str, rel: str) -> None:
        entries: List[_Entry] = []
        subdirs: List[Tuple[str, str]] = []
        try:
            with os.scandir(path) as it:
                found = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"[find-index] cannot read {path!r}: {e}")
            found = []
        for de in found:
            if de.is_symlink():
                target, target_kind = self._link_target(de.path)
                entries.append(_Entry(de.name, "link", target, target_kind))
            elif de.is_dir(follow_symlinks=False):
                entries.append(_Entry(de.name, "dir"))
                subdirs.append((de.path, _join(rel, de.name)))
            elif de.is_file(follow_symlinks=False):
                entries.append(_Entry(de.name, "file"))
            else:
                entries.append(_Entry(de.name, "other"))
        self._dirs[rel] = {e.name: e for e in entries}
        for sub_path, sub_rel in subdirs:
            self._scan(sub_path, sub_rel)

    def _link_target(self, path: str) -> Tuple[Optional[str], str]:
        real = os.path.realpath(path)
        if not os.path.exists(real):
            return None, "dangling"
        rel = self._rel(real)
        if rel is None:
            return None, "outside"
        if os.path.isdir(real):
            return rel, "dir"
        if os.path.isfile(real):
            return rel, "file"
        return rel, "other"

    # -----------------------------------------------------------------
    # Path helpers
    # -----------------------------------------------------------------

    def _rel(self, path: str) -> Optional[str]:
        """Map a query path to a root-relative path, or None when it leaves the tree."""
        if self.root is None:
            return None
        # '..' after a symlink is physical for find but lexical for normpath.
        if ".." in path.split("/"):
            return None
        if not os.path.isabs(path):
            path = os.path.join(os.path.realpath(os.getcwd()), path)
        norm = os.path.normpath(path)
        if norm == self.root:
            return "."
        prefix = self.root.rstrip(os.sep) + os.sep
        if norm.startswith(prefix):
            return norm[len(prefix):]
        return None

    def _resolve(self, rel: str) -> Optional[Tuple[str, str]]:
        """Follow a relative path through the index, resolving symlinks.

        Returns (kind, real relative path), None when nothing is there,
        or raises _CannotAnswer when the path leads outside the tree.
        """
        if rel == ".":
            return ("dir", ".")
        cur = "."
        parts = rel.split("/")
        for i, part in enumerate(parts):
            last = i == len(parts) - 1
            listing = self._dirs.get(cur)
            if listing is None:
                return None
            entry = listing.get(part)
            if entry is None:
                return None
            kind, real = entry.kind, _join(cur, part)
            if kind == "link":
                if entry.target_kind == "outside":
                    raise _CannotAnswer(rel)
                if entry.target_kind == "dangling":
                    return ("dangling", real) if last else None
                kind, real = entry.target_kind, entry.target
            if last:
                return (kind, real)
            if kind != "dir":
                return None
            cur = real
        return None

    def _locate(self, path: str) -> Optional[Tuple[str, str]]:
        rel = self._rel(path)
        if rel is None:
            raise _CannotAnswer(path)
        return self._resolve(rel)

    def _locate_dir(self, dir: str) -> Optional[str]:
        """Real relative path of a query directory, or None when it is not a directory."""
        found = self._locate(dir)
        if found is None or found[0] != "dir":
            return None
        return found[1]

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def list_directory(self, writer: SsvWriter, dir: str) -> bool:
        try:
            real = self._locate_dir(dir)
        except _CannotAnswer as e:
            logger.debug(f"[find-index] cannot list {e}")
            return False
        if real is not None:
            writer.write_words(self._walk_files(real, "."))
        return True

    def _walk_files(self, real: str, shown: str) -> Iterator[str]:
        for entry in self._dirs.get(real, {}).values():
            path = f"{shown}/{entry.name}"
            if entry.kind == "dir":
                yield from self._walk_files(_join(real, entry.name), path)
            elif entry.kind == "file" and not entry.name.startswith("."):
                yield path

    def list_extension_files_under(self, writer: SsvWriter, chdir: str, root: str, ext: str) -> bool:
        if not root:
            return False
        pattern = "*" + ext
        shown = root.rstrip("/") or "/"

        def wanted(name: str) -> bool:
            return fnmatch.fnmatchcase(name, pattern) and not name.startswith(".")

        out: List[str] = []
        try:
            # A failed cd leaves find running somewhere else; let the shell do that.
            if self._locate_dir(chdir) is None:
                return False
            found = self._locate(posixpath.join(chdir, root))
            if found is None:
                # find would only complain on stderr; let the shell do that.
                return False
            kind, real = found
            if wanted(posixpath.basename(shown)):
                out.append(shown)
            if kind == "dir":
                self._walk_following(real, shown, wanted, out, {real})
        except _CannotAnswer as e:
            logger.debug(f"[find-index] cannot answer find -L under {root!r}: {e}")
            return False
        writer.write_words(out)
        return True

    def _walk_following(self, real: str, shown: str, wanted, out: List[str], active: Set[str]) -> None:
        for entry in self._dirs.get(real, {}).values():
            path = f"{shown}/{entry.name}"
            kind, target = entry.kind, _join(real, entry.name)
            if kind == "link":
                if entry.target_kind == "outside":
                    raise _CannotAnswer(path)
                if entry.target_kind != "dangling":
                    kind, target = entry.target_kind, entry.target
            if wanted(entry.name):
                out.append(path)
            if kind == "dir":
                if target in active:
                    raise _CannotAnswer(f"symlink loop at {path}")
                self._walk_following(target, path, wanted, out, active | {target})

    def list_java_resource_group(self, writer: SsvWriter, dir: str) -> bool:
        try:
            real = self._locate_dir(dir)
        except _CannotAnswer as e:
            logger.debug(f"[find-index] cannot list resources in {e}")
            return False
        if real is not None:
            writer.write_words(self._walk_resources(real, "."))
        return True

    def _walk_resources(self, real: str, shown: str) -> Iterator[str]:
        for entry in self._dirs.get(real, {}).values():
            path = f"{shown}/{entry.name}"
            if entry.kind == "dir":
                if entry.name == ".svn":
                    continue
                yield from self._walk_resources(_join(real, entry.name), path)
            elif entry.kind == "file":
                if any(fnmatch.fnmatchcase(entry.name, pat) for pat in JAVA_RESOURCE_EXCLUDES):
                    continue
                yield path

    def find_leaves(self, writer: SsvWriter, dir: str, name: str, prunes: Sequence[str], mindepth: int) -> bool:
        try:
            start = self._locate_dir(dir)
            results = self._leaves_under(dir, start, name, set(prunes), mindepth) if start is not None else []
        except _CannotAnswer as e:
            logger.debug(f"[find-leaves] cannot answer under {dir!r}: {e}")
            return False
        writer.write_words(sorted(results))
        return True

    def _leaves_under(self, dir: str, start: str, name: str, prunes: Set[str], mindepth: int) -> Set[str]:
        results: Set[str] = set()
        seen: Set[str] = set()
        root_depth = dir.count("/")
        stack: List[Tuple[str, str]] = [(dir, start)]
        while stack:
            shown, real = stack.pop()
            dirs: List[Tuple[str, str]] = []
            files: List[str] = []
            for entry in self._dirs.get(real, {}).values():
                kind, target = entry.kind, _join(real, entry.name)
                if kind == "link":
                    if entry.target_kind == "outside":
                        if entry.name in prunes:
                            continue
                        raise _CannotAnswer(posixpath.join(shown, entry.name))
                    if entry.target_kind != "dangling":
                        kind, target = entry.target_kind, entry.target
                if kind == "dir":
                    if entry.name not in prunes:
                        dirs.append((entry.name, target))
                else:
                    files.append(entry.name)
            if mindepth > 0 and 1 + shown.count("/") - root_depth < mindepth:
                matched = False
            else:
                matched = name in files
                if matched:
                    results.add(posixpath.join(shown, name))
            if matched:
                continue
            fresh: List[Tuple[str, str]] = []
            for d, target in dirs:
                if target in seen:
                    continue
                seen.add(target)
                fresh.append((posixpath.join(shown, d), target))
            stack.extend(reversed(fresh))
        return results
