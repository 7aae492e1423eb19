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
Contains shared fixtures for the tests.
"""

import threading

import pytest

from s3mirror.remote import RemoteObject
from s3mirror.sync import Syncer, SyncSpec


class FakeStore:
    """In-memory object store with the S3Store interface."""

    def __init__(self, page_size: int = 1000):
        self.page_size = page_size
        self.objects = {}
        self.fail_keys = set()
        self.fail_listing_after = None
        self.downloads = []
        self.on_page = None
        self._lock = threading.Lock()

    def put(self, key: str, etag: str, data: bytes = None):
        self.objects[key] = (etag, data if data is not None else key.encode())

    def delete(self, key: str):
        del self.objects[key]

    def list_pages(self, prefix: str):
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        for n, i in enumerate(range(0, len(keys), self.page_size)):
            if self.fail_listing_after is not None and n >= self.fail_listing_after:
                raise RuntimeError("listing failed")
            if self.on_page is not None:
                self.on_page(n)
            page = keys[i : i + self.page_size]
            yield [RemoteObject(k, self.objects[k][0]) for k in page]

    def download(self, key: str, fileobj):
        with self._lock:
            self.downloads.append(key)
        data = self.objects[key][1]
        if key in self.fail_keys:
            fileobj.write(data[: len(data) // 2])
            raise IOError("connection reset")
        fileobj.write(data)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def local_dir(tmp_path):
    path = tmp_path / "local"
    path.mkdir()
    return path


@pytest.fixture
def make_syncer(tmp_path, local_dir):
    """Returns a factory for syncers mirroring s3://bucket/data."""

    def _make(store, workers=2, prefix="data", queue_size=10, **kwargs):
        spec = SyncSpec.from_uri(
            f"s3://bucket/{prefix}",
            str(local_dir),
            temp_dir=str(tmp_path / "tmp"),
            workers=workers,
            queue_size=queue_size,
        )
        return Syncer(spec, store=store, **kwargs)

    return _make


def read_tree(root):
    """Returns {relative posix path: bytes} for every file under root."""
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }
