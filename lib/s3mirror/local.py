#!/usr/bin/env python
#
# Copyright (c) 2024-2025, Ryan Galloway (ryan@rsgalloway.com)
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
#  - Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
#  - Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  - Neither the name of the software nor the names of its contributors
#    may be used to endorse or promote products derived from this software
#    without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.
#

__doc__ = """
Contains the local file hash index, tree scanning and cleanup functions.
"""

import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Set

from tqdm import tqdm

from s3mirror import config
from s3mirror.logger import get_logger


def norm_rel(root: str, path: str) -> str:
    """Returns path relative to root using "/" as separator.

    :param root: root directory.
    :param path: path under root.
    :raises ValueError: if path is not under root.
    :return: relative path.
    """
    return Path(path).relative_to(root).as_posix()


def local_path(root: str, rel: str) -> str:
    """Joins a "/" separated relative path onto root using the platform
    separator.

    :param root: root directory.
    :param rel: relative path.
    :return: absolute local path.
    """
    return os.path.join(root, *rel.split("/"))


def file_hash(path: str, chunk_size: int = config.HASH_CHUNK_SIZE) -> str:
    """Returns the md5 hex digest of the file's bytes.

    :param path: file path.
    :param chunk_size: read size.
    :return: hex digest.
    """
    h = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def quote_etag(digest: str) -> str:
    """Wraps a digest in double quotes, the way S3 returns ETags."""
    return f'"{digest}"'


class HashIndex:
    """Thread safe map of relative file path to content fingerprint."""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, str] = dict(entries or {})

    def get(self, rel: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(rel)

    def set(self, rel: str, fingerprint: str) -> None:
        with self._lock:
            self._entries[rel] = fingerprint

    def snapshot(self) -> Dict[str, str]:
        """Returns a copy of the current entries."""
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, rel: str) -> bool:
        with self._lock:
            return rel in self._entries


class CandidateSet:
    """Thread safe set of local file paths pending deletion."""

    def __init__(self, paths: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._paths: Set[str] = set(paths)

    def discard(self, path: str) -> None:
        with self._lock:
            self._paths.discard(path)

    def remaining(self) -> Set[str]:
        with self._lock:
            return set(self._paths)

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._paths


def _walk_error(log: logging.Logger):
    """Returns an os.walk onerror callback that logs and carries on."""

    def _onerror(err: OSError):
        log.error("can't read dir %s: %s", err.filename, err)

    return _onerror


def _is_excluded(path: str, exclude: Optional[str]) -> bool:
    return exclude is not None and os.path.abspath(path) == exclude


def _walk(root: str, exclude: Optional[str], log: logging.Logger):
    """Walks root top-down yielding (dirname, relative dirname, files).
    Subtrees whose relative path can't be computed are pruned, as is the
    excluded directory.
    """
    if exclude is not None:
        exclude = os.path.abspath(exclude)
    for dirname, dirs, files in os.walk(
        root, topdown=True, onerror=_walk_error(log), followlinks=False
    ):
        try:
            rel_dir = norm_rel(root, dirname)
        except ValueError as e:
            log.error("can't get relative path for %s: %s", dirname, e)
            dirs[:] = []
            continue
        dirs[:] = [
            d for d in dirs if not _is_excluded(os.path.join(dirname, d), exclude)
        ]
        yield dirname, rel_dir, files


def list_files(
    root: str, exclude: Optional[str] = None, log: Optional[logging.Logger] = None
) -> Set[str]:
    """Returns the absolute paths of all files under root. Directories are
    not included.

    :param root: root directory.
    :param exclude: optional directory to skip, e.g. the temp dir.
    :param log: optional logger.
    :return: set of file paths.
    """
    log = log or get_logger("local")
    root = os.path.abspath(root)
    result = set()
    for dirname, _, files in _walk(root, exclude, log):
        for name in files:
            result.add(os.path.join(dirname, name))
    return result


def build_hash_index(
    root: str,
    index: HashIndex,
    exclude: Optional[str] = None,
    log: Optional[logging.Logger] = None,
) -> int:
    """Hashes every file under root into index, keyed by relative path.
    Hashes are quoted so they compare equal to S3 ETags of single part
    uploads. Files that can't be read are logged and skipped.

    :param root: root directory.
    :param index: hash index to populate.
    :param exclude: optional directory to skip, e.g. the temp dir.
    :param log: optional logger.
    :return: number of files indexed.
    """
    log = log or get_logger("local")
    root = os.path.abspath(root)
    count = 0

    # indeterminate bar, only shown on a terminal
    with tqdm(desc=f"[hashing {root}]", unit="file", leave=False, disable=None) as pbar:
        for dirname, rel_dir, files in _walk(root, exclude, log):
            for name in files:
                path = os.path.join(dirname, name)
                rel = name if rel_dir == "." else f"{rel_dir}/{name}"
                try:
                    digest = file_hash(path)
                except OSError as e:
                    log.error("can't calculate checksum for %s: %s", path, e)
                    continue
                index.set(rel, quote_etag(digest))
                count += 1
                pbar.update(1)

    log.info("hash cache initialized for %d files", count)
    return count


def remove_files(paths: Iterable[str], log: Optional[logging.Logger] = None) -> int:
    """Deletes files, logging failures without stopping.

    :param paths: file paths to delete.
    :param log: optional logger.
    :return: number of files deleted.
    """
    log = log or get_logger("local")
    deleted = 0
    for path in sorted(paths):
        try:
            os.remove(path)
            deleted += 1
            log.debug("deleted %s", path)
        except OSError as e:
            log.error("can't remove file %s: %s", path, e)
    return deleted


def remove_empty_dirs(
    root: str, exclude: Optional[str] = None, log: Optional[logging.Logger] = None
) -> int:
    """Removes directories under root that contain no files, directly or
    in any subdirectory. The root itself is never removed.

    :param root: root directory.
    :param exclude: optional directory to keep, e.g. the temp dir.
    :param log: optional logger.
    :return: number of directories removed.
    """
    log = log or get_logger("local")
    root = os.path.abspath(root)
    if exclude is not None:
        exclude = os.path.abspath(exclude)

    removed = 0
    keep: Set[str] = set()

    for dirname, dirs, files in os.walk(
        root, topdown=False, onerror=_walk_error(log), followlinks=False
    ):
        # symlinks to directories count as content
        if files or any(os.path.islink(os.path.join(dirname, d)) for d in dirs):
            keep.add(dirname)
        if dirname in keep or dirname == root or dirname == exclude:
            keep.add(os.path.dirname(dirname))
            continue
        try:
            os.rmdir(dirname)
            removed += 1
            log.debug("removed empty dir %s", dirname)
        except OSError as e:
            log.error("can't remove dir %s: %s", dirname, e)
            keep.add(os.path.dirname(dirname))

    return removed
