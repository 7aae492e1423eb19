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
Contains remote object store path parsing and the S3 store client.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import BinaryIO, Generator, List, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config

from s3mirror import config
from s3mirror.logger import get_logger


class ConfigError(Exception):
    """Raised when the sync configuration is invalid."""

    pass


@dataclass(frozen=True)
class RemotePath:
    """A bucket and a key prefix inside it."""

    bucket: str
    prefix: str


@dataclass(frozen=True)
class RemoteObject:
    """A listed remote object and its ETag, quotes included."""

    key: str
    etag: str


def parse_remote_uri(uri: str) -> RemotePath:
    """Parses a remote URI into a bucket and a prefix:

        s3://bucket/path/to/prefix -> RemotePath("bucket", "path/to/prefix")

    :param uri: remote URI.
    :raises ConfigError: if the URI is malformed, has the wrong scheme or an
        empty bucket.
    :return: RemotePath.
    """
    try:
        u = urlparse(uri)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"can't parse remote uri {uri!r}: {e}")
    if u.scheme != config.URI_SCHEME:
        raise ConfigError(f"path is not valid {config.URI_SCHEME} url: {uri}")
    if not u.netloc:
        raise ConfigError(f"empty bucket in {config.URI_SCHEME} url: {uri}")
    prefix = u.path
    if prefix.startswith("/"):
        prefix = prefix[1:]
    return RemotePath(bucket=u.netloc, prefix=prefix)


def relative_key(prefix: str, key: str) -> str:
    """Returns key relative to prefix, "/" separated. Returns "." when key
    is the prefix itself.

    :param prefix: key prefix.
    :param key: object key.
    :raises ValueError: if key is not a descendant of prefix.
    :return: relative key.
    """
    stem = prefix.rstrip("/")
    if not stem:
        rest = key
    elif key == stem or key == stem + "/":
        rest = ""
    elif key.startswith(stem + "/"):
        rest = key[len(stem) + 1 :]
    else:
        raise ValueError(f"{key} is not under {prefix}")

    # string operations only, never consults the working directory
    rel = posixpath.normpath(rest) if rest else "."
    if rel == ".." or rel.startswith("../") or posixpath.isabs(rel):
        raise ValueError(f"{key} is not under {prefix}")
    return rel


def is_dir_marker(key: str) -> bool:
    """Returns True if key is a folder placeholder object."""
    return key.endswith(config.DIR_MARKER)


class S3Store:
    """Read-only S3 compatible object store (AWS S3, MinIO, Ceph)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        disable_ssl: bool = False,
        region: str = config.REGION,
        logger: Optional[logging.Logger] = None,
    ):
        """Creates the boto3 client.

        :param bucket: bucket name.
        :param endpoint_url: optional custom endpoint, forces path-style
            addressing.
        :param disable_ssl: use plain http.
        :param region: region name.
        :param logger: optional logger.
        """
        self.bucket = bucket
        self.log = logger or get_logger("remote")

        s3_options = {}
        if endpoint_url:
            s3_options["addressing_style"] = "path"

        kwargs = {
            "config": Config(
                region_name=region,
                retries={
                    "max_attempts": config.S3_MAX_ATTEMPTS,
                    "mode": config.S3_RETRY_MODE,
                },
                s3=s3_options,
            ),
            "use_ssl": not disable_ssl,
        }
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url

        self._client = boto3.client("s3", **kwargs)

    def uri(self, key: str) -> str:
        """Returns the s3:// uri of key."""
        return f"{config.URI_SCHEME}://{self.bucket}/{key}"

    def list_pages(self, prefix: str) -> Generator[List[RemoteObject], None, None]:
        """Yields one list of objects per listing page under prefix.

        :param prefix: key prefix.
        :return: generator of object lists.
        """
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            contents = page.get("Contents", [])
            self.log.debug("found %d objects in %s", len(contents), self.bucket)
            objects = []
            for obj in contents:
                key = obj.get("Key")
                if key is None:
                    continue
                objects.append(RemoteObject(key=key, etag=obj.get("ETag", "")))
            yield objects

    def download(self, key: str, fileobj: BinaryIO) -> None:
        """Writes the content of key to fileobj.

        :param key: object key.
        :param fileobj: binary file object opened for writing.
        """
        self._client.download_fileobj(self.bucket, key, fileobj)
