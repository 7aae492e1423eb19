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
Contains tests for the local module.
"""

import hashlib
import os
import threading

from s3mirror import local


def test_norm_rel_uses_forward_slashes(tmp_path):
    """Test relative paths are "/" separated."""
    path = os.path.join(str(tmp_path), "a", "b", "c.txt")
    assert local.norm_rel(str(tmp_path), path) == "a/b/c.txt"
    assert local.norm_rel(str(tmp_path), str(tmp_path)) == "."


def test_local_path_joins_with_platform_separator(tmp_path):
    """Test local_path maps a relative key into the root."""
    assert local.local_path(str(tmp_path), "a/b.txt") == os.path.join(
        str(tmp_path), "a", "b.txt"
    )


def test_file_hash(tmp_path):
    """Test file_hash returns the md5 hex digest of the file."""
    f = tmp_path / "f.bin"
    f.write_bytes(b"x" * 3000)
    expected = hashlib.md5(b"x" * 3000).hexdigest()
    assert local.file_hash(str(f), chunk_size=1024) == expected


def test_hash_index_concurrent_updates():
    """Test the hash index keeps every update made from many threads."""
    index = local.HashIndex()

    def fill(n):
        for i in range(200):
            index.set(f"{n}/{i}", str(i))
            index.get(f"{(n + 1) % 4}/{i}")

    threads = [threading.Thread(target=fill, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(index) == 800
    assert index.get("3/199") == "199"
    assert "0/0" in index


def test_candidate_set():
    """Test discarding and listing deletion candidates."""
    candidates = local.CandidateSet(["/a", "/b"])
    candidates.discard("/a")
    candidates.discard("/missing")
    assert "/a" not in candidates
    assert candidates.remaining() == {"/b"}
    assert len(candidates) == 1


def test_list_files_returns_files_only(tmp_path):
    """Test list_files returns files and skips directories."""
    (tmp_path / "d" / "e").mkdir(parents=True)
    (tmp_path / "d" / "e" / "f.txt").write_text("f")
    (tmp_path / "g.txt").write_text("g")
    (tmp_path / "empty").mkdir()

    files = local.list_files(str(tmp_path))
    assert files == {
        os.path.join(str(tmp_path), "d", "e", "f.txt"),
        os.path.join(str(tmp_path), "g.txt"),
    }


def test_list_files_excludes_dir(tmp_path):
    """Test the excluded directory is not listed."""
    (tmp_path / "tmp").mkdir()
    (tmp_path / "tmp" / "partial").write_text("p")
    (tmp_path / "a.txt").write_text("a")

    files = local.list_files(str(tmp_path), exclude=str(tmp_path / "tmp"))
    assert files == {os.path.join(str(tmp_path), "a.txt")}


def test_build_hash_index(tmp_path):
    """Test every local file is hashed under its relative path."""
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.txt").write_bytes(b"bbb")
    (tmp_path / "a.txt").write_bytes(b"aaa")
    index = local.HashIndex()

    count = local.build_hash_index(str(tmp_path), index)
    assert count == 2
    assert index.snapshot() == {
        "a.txt": '"%s"' % hashlib.md5(b"aaa").hexdigest(),
        "sub/b.txt": '"%s"' % hashlib.md5(b"bbb").hexdigest(),
    }


def test_build_hash_index_skips_unreadable(tmp_path, monkeypatch):
    """Test files that can't be hashed are skipped."""
    (tmp_path / "good.txt").write_text("g")
    (tmp_path / "bad.txt").write_text("b")
    real_hash = local.file_hash

    def fake_hash(path, *args, **kwargs):
        if path.endswith("bad.txt"):
            raise PermissionError("denied")
        return real_hash(path, *args, **kwargs)

    monkeypatch.setattr(local, "file_hash", fake_hash)
    index = local.HashIndex()

    assert local.build_hash_index(str(tmp_path), index) == 1
    assert "good.txt" in index
    assert "bad.txt" not in index


def test_remove_files_continues_after_failure(tmp_path):
    """Test a failed delete does not stop the others."""
    (tmp_path / "a").write_text("a")
    (tmp_path / "b").write_text("b")
    paths = [str(tmp_path / "a"), str(tmp_path / "missing"), str(tmp_path / "b")]

    assert local.remove_files(paths) == 2
    assert list(tmp_path.iterdir()) == []


def test_remove_empty_dirs(tmp_path):
    """Test nested empty directories are removed bottom up."""
    (tmp_path / "x" / "y" / "z").mkdir(parents=True)
    (tmp_path / "keep" / "a" / "b").mkdir(parents=True)
    (tmp_path / "keep" / "a" / "b" / "file").write_text("f")
    (tmp_path / "keep" / "empty").mkdir()

    removed = local.remove_empty_dirs(str(tmp_path))
    assert removed == 4
    assert not (tmp_path / "x").exists()
    assert not (tmp_path / "keep" / "empty").exists()
    assert (tmp_path / "keep" / "a" / "b" / "file").exists()
    assert tmp_path.is_dir()


def test_remove_empty_dirs_keeps_root_and_excluded(tmp_path):
    """Test the root and the excluded directory are never removed."""
    (tmp_path / "tmp").mkdir()

    assert local.remove_empty_dirs(str(tmp_path), exclude=str(tmp_path / "tmp")) == 0
    assert (tmp_path / "tmp").is_dir()
    assert local.remove_empty_dirs(str(tmp_path)) == 1
    assert tmp_path.is_dir()


def test_unreadable_dirs_are_logged(tmp_path, monkeypatch, caplog):
    """Test walk errors are logged and the rest of the tree is still
    processed."""
    (tmp_path / "locked").mkdir()
    (tmp_path / "locked" / "hidden.txt").write_text("h")
    (tmp_path / "open.txt").write_text("o")
    real_scandir = os.scandir

    def fake_scandir(path="."):
        if os.fspath(path).endswith("locked"):
            raise PermissionError(13, "Permission denied", os.fspath(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", fake_scandir)

    files = local.list_files(str(tmp_path))
    assert files == {str(tmp_path / "open.txt")}
    assert "can't read dir" in caplog.text
    assert "locked" in caplog.text

    caplog.clear()
    assert local.remove_empty_dirs(str(tmp_path)) == 0
    assert "can't read dir" in caplog.text
    assert (tmp_path / "locked" / "hidden.txt").exists()
