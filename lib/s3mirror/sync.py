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
Contains the sync engine that mirrors a remote bucket prefix to a local
directory.

A pull lists the local tree, pages through the remote listing and queues
a download for every object whose ETag differs from the hash index. A
pool of worker threads installs each download atomically (temp file then
rename). Once listing and downloads are done, local files that were not
seen in the listing are deleted and empty directories are pruned.
"""

import concurrent.futures as cf
import hashlib
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from s3mirror import config
from s3mirror.local import (
    CandidateSet,
    HashIndex,
    build_hash_index,
    list_files,
    local_path,
    remove_empty_dirs,
    remove_files,
)
from s3mirror.logger import get_logger
from s3mirror.remote import (
    ConfigError,
    S3Store,
    is_dir_marker,
    parse_remote_uri,
    relative_key,
)

# relative paths that denote the prefix itself
ROOT_PATHS = ("", ".", "/")

# tells a worker to exit
_STOP = object()

# local path conflicts that can clear once stale files are removed
BLOCKED_ERRORS = (NotADirectoryError, IsADirectoryError, FileExistsError)


class SyncError(Exception):
    """Raised when a pull can't complete, e.g. the listing failed."""

    pass


class DownloadError(Exception):
    """A single object could not be installed."""

    def __init__(self, message: str, key: str = "", local_path: str = ""):
        super().__init__(message)
        self.key = key
        self.local_path = local_path


@dataclass(frozen=True)
class SyncSpec:
    """Sync configuration, fixed for the lifetime of a Syncer."""

    local_dir: str
    remote_uri: str
    bucket: str
    prefix: str
    temp_dir: str = config.TEMP_DIR
    endpoint_url: Optional[str] = None
    disable_ssl: bool = False
    workers: int = config.WORKERS
    queue_size: int = config.QUEUE_SIZE
    region: str = config.REGION

    @classmethod
    def from_uri(
        cls,
        remote_uri: str,
        local_dir: str,
        temp_dir: str = config.TEMP_DIR,
        endpoint_url: Optional[str] = None,
        disable_ssl: bool = False,
        workers: int = config.WORKERS,
        queue_size: int = config.QUEUE_SIZE,
        region: str = config.REGION,
    ) -> "SyncSpec":
        """Builds and validates a SyncSpec from a remote uri:

            SyncSpec.from_uri("s3://bucket/data", "/srv/data")

        :param remote_uri: s3://bucket/prefix uri.
        :param local_dir: local directory to mirror into.
        :param temp_dir: directory for partial downloads, should be on the
            same filesystem as local_dir.
        :param endpoint_url: optional custom S3 endpoint.
        :param disable_ssl: use plain http to talk to the endpoint.
        :param workers: number of download threads.
        :param queue_size: max number of queued downloads.
        :param region: S3 region name.
        :raises ConfigError: if the sync settings are invalid.
        :return: SyncSpec.
        """
        remote = parse_remote_uri(remote_uri)
        spec = cls(
            local_dir=os.path.abspath(local_dir),
            remote_uri=remote_uri,
            bucket=remote.bucket,
            prefix=remote.prefix,
            temp_dir=os.path.abspath(temp_dir or config.TEMP_DIR),
            endpoint_url=endpoint_url or None,
            disable_ssl=disable_ssl,
            workers=workers,
            queue_size=queue_size,
            region=region,
        )
        spec.validate()
        return spec

    def validate(self) -> None:
        """Checks the sync settings are usable.

        :raises ConfigError: if the local dir is missing, the bucket is
            empty or the worker settings are out of range.
        """
        if not os.path.exists(self.local_dir):
            raise ConfigError(f"can't stat local dir {self.local_dir}")
        if not os.path.isdir(self.local_dir):
            raise ConfigError(f"local path is not a directory: {self.local_dir}")
        if not self.bucket:
            raise ConfigError(f"empty bucket in {self.remote_uri}")
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")
        if self.queue_size < 1:
            raise ConfigError(f"queue size must be at least 1, got {self.queue_size}")


@dataclass(frozen=True)
class SyncTask:
    """A single object to download."""

    key: str
    local_path: str
    etag: str
    rel_path: str


@dataclass
class RunOutcome:
    """Counts and errors of one pull."""

    listed: int = 0
    pulled: int = 0
    installed: int = 0
    deleted: int = 0
    duration: float = 0.0
    errors: List[DownloadError] = field(default_factory=list)

    @property
    def error(self) -> Optional[DownloadError]:
        """The first error encountered, if any."""
        return self.errors[0] if self.errors else None

    @property
    def ok(self) -> bool:
        return not self.errors


class Syncer:
    """Mirrors a remote bucket prefix into a local directory."""

    def __init__(
        self,
        spec: SyncSpec,
        store=None,
        metrics=None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initializes the syncer.

        :param spec: sync configuration.
        :param store: optional object store with list_pages(prefix) and
            download(key, fileobj), defaults to an S3Store built on first
            pull.
        :param metrics: optional sink with observe(outcome) and
            observe_failure().
        :param logger: optional logger.
        :raises ConfigError: if the sync settings are invalid.
        """
        spec.validate()
        self.spec = spec
        self.metrics = metrics
        self.log = logger or get_logger("syncer")
        self.hash_index = HashIndex()
        self._store = store
        self._stop = threading.Event()
        self._running = threading.Lock()
        self._outcome_lock = threading.Lock()

    @property
    def store(self):
        """Returns the object store, creating the S3 client if needed.

        :raises SyncError: if the client can't be created.
        """
        if self._store is None:
            try:
                self._store = S3Store(
                    self.spec.bucket,
                    endpoint_url=self.spec.endpoint_url,
                    disable_ssl=self.spec.disable_ssl,
                    region=self.spec.region,
                    logger=self.log,
                )
            except Exception as e:
                raise SyncError(f"can't create s3 client: {e}") from e
        return self._store

    def init_hash_index(self) -> int:
        """Hashes the files already in the local dir. Called once at
        startup, before the first pull.

        :return: number of files indexed.
        """
        return build_hash_index(
            self.spec.local_dir,
            self.hash_index,
            exclude=self.spec.temp_dir,
            log=self.log,
        )

    def stop(self) -> None:
        """Stops an in-flight pull after the current object and prevents
        further pulls."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def temp_path(self, dest: str) -> str:
        """Returns the temp file path used while downloading dest."""
        name = hashlib.md5(dest.encode("utf-8")).hexdigest()
        return os.path.join(self.spec.temp_dir, name)

    def pull(self) -> RunOutcome:
        """Runs one full sync pass.

        :raises SyncError: if the pass could not complete.
        :return: RunOutcome.
        """
        if not self._running.acquire(blocking=False):
            raise SyncError("pull is already running")
        try:
            outcome = self._pull()
        except SyncError:
            if self.metrics is not None:
                self.metrics.observe_failure()
            raise
        finally:
            self._running.release()

        if self.metrics is not None:
            self.metrics.observe(outcome)
        return outcome

    def _pull(self) -> RunOutcome:
        if self.stopped:
            raise SyncError("syncer is stopped")

        t0 = time.time()
        created_temp = self._create_temp_dir()
        try:
            outcome = self._run()
        finally:
            if created_temp:
                self._delete_temp_dir()

        outcome.duration = time.time() - t0
        self.log.info(
            "pull finished in %.2fs listed=%d pulled=%d deleted=%d errors=%d",
            outcome.duration,
            outcome.listed,
            outcome.pulled,
            outcome.deleted,
            len(outcome.errors),
        )
        return outcome

    def _run(self) -> RunOutcome:
        # every local file is stale until the listing says otherwise
        candidates = CandidateSet(
            list_files(self.spec.local_dir, exclude=self.spec.temp_dir, log=self.log)
        )
        store = self.store
        tasks = queue.Queue(maxsize=self.spec.queue_size)
        outcome = RunOutcome()
        blocked: List[SyncTask] = []
        list_error = None

        with cf.ThreadPoolExecutor(
            max_workers=self.spec.workers, thread_name_prefix="s3mirror-worker"
        ) as ex:
            futures = [
                ex.submit(self._worker, i, store, tasks, outcome, blocked)
                for i in range(self.spec.workers)
            ]
            try:
                self.dispatch(store, candidates, tasks, outcome)
            except Exception as e:
                list_error = e
            finally:
                for _ in futures:
                    tasks.put(_STOP)

        # all workers have exited here
        for fut in futures:
            fut.result()

        if list_error is not None:
            if isinstance(list_error, SyncError):
                raise list_error
            raise SyncError(f"can't list remote: {list_error}") from list_error

        outcome.deleted = self.housekeeper(candidates)
        if blocked:
            self.retry_blocked(store, blocked, outcome)
        return outcome

    def dispatch(
        self, store, candidates: CandidateSet, tasks: queue.Queue, outcome: RunOutcome
    ) -> None:
        """Pages through the remote listing and queues a SyncTask for every
        object that is new or changed. Objects found remotely are removed
        from candidates.

        :param store: object store.
        :param candidates: local files pending deletion.
        :param tasks: download queue, blocks when full.
        :param outcome: run outcome to count into.
        :raises SyncError: if the syncer is stopped mid listing.
        """
        for page in store.list_pages(self.spec.prefix):
            for obj in page:
                if self.stopped:
                    raise SyncError("pull interrupted")
                task = self._diff(obj, candidates, outcome)
                if task is not None:
                    tasks.put(task)

    def _diff(self, obj, candidates: CandidateSet, outcome: RunOutcome):
        """Returns a SyncTask for obj, or None if it can be skipped."""
        if is_dir_marker(obj.key):
            self.log.debug("skipping directory %s", obj.key)
            return None

        try:
            rel = relative_key(self.spec.prefix, obj.key)
        except ValueError:
            self.log.debug("skipping %s, not under %s", obj.key, self.spec.remote_uri)
            return None

        if rel in ROOT_PATHS:
            return None

        dest = local_path(self.spec.local_dir, rel)
        outcome.listed += 1

        # a file deleted locally is fetched again even if indexed
        present = dest in candidates
        candidates.discard(dest)

        if present and self.hash_index.get(rel) == obj.etag:
            return None

        outcome.pulled += 1
        return SyncTask(key=obj.key, local_path=dest, etag=obj.etag, rel_path=rel)

    def _worker(
        self,
        worker_id: int,
        store,
        tasks: queue.Queue,
        outcome: RunOutcome,
        blocked: List[SyncTask],
    ) -> None:
        self.log.debug("worker %d started", worker_id)
        while True:
            task = tasks.get()
            try:
                if task is _STOP:
                    break
                self._process(store, task, outcome, blocked)
            finally:
                tasks.task_done()
        self.log.debug("worker %d exited", worker_id)

    def _process(
        self,
        store,
        task: SyncTask,
        outcome: RunOutcome,
        blocked: Optional[List[SyncTask]] = None,
    ) -> None:
        try:
            self.download(store, task)
        except DownloadError as e:
            if blocked is not None and isinstance(e.__cause__, BLOCKED_ERRORS):
                self.log.debug("deferring %s: %s", task.key, e)
                with self._outcome_lock:
                    blocked.append(task)
                return
            err = e
        except Exception as e:
            err = DownloadError(
                f"can't pull {task.key}: {e}", task.key, task.local_path
            )
        else:
            with self._outcome_lock:
                outcome.installed += 1
            return
        self.log.error("%s", err)
        with self._outcome_lock:
            outcome.errors.append(err)

    def download(self, store, task: SyncTask) -> None:
        """Downloads task.key into a temp file and renames it over
        task.local_path, then records the ETag in the hash index. The
        destination is left untouched on failure.

        :param store: object store.
        :param task: task to process.
        :raises DownloadError: if any step fails.
        """
        parent = os.path.dirname(task.local_path)
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise DownloadError(
                f"can't create directory {parent} for {task.local_path}: {e}",
                task.key,
                task.local_path,
            ) from e

        tmp_path = self.temp_path(task.local_path)
        try:
            try:
                f = open(tmp_path, "wb")
            except OSError as e:
                raise DownloadError(
                    f"can't create temp file {tmp_path}: {e}", task.key, task.local_path
                ) from e

            with f:
                try:
                    store.download(task.key, f)
                except Exception as e:
                    raise DownloadError(
                        f"can't download {task.key}: {e}", task.key, task.local_path
                    ) from e

            try:
                os.replace(tmp_path, task.local_path)
            except OSError as e:
                raise DownloadError(
                    f"can't rename temp file for {task.local_path}: {e}",
                    task.key,
                    task.local_path,
                ) from e
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError as e:
                    self.log.warning("can't remove temp file %s: %s", tmp_path, e)

        self.hash_index.set(task.rel_path, task.etag)
        self.log.debug("pulled %s -> %s", task.key, task.local_path)

    def housekeeper(self, candidates: CandidateSet) -> int:
        """Deletes local files that were not in the listing and prunes the
        directories they leave empty.

        :param candidates: local files pending deletion.
        :return: number of files deleted.
        """
        paths = candidates.remaining()
        self.log.debug("found %d files to delete", len(paths))
        deleted = remove_files(paths, log=self.log)
        if deleted:
            self.log.info("deleted %d files", deleted)
        remove_empty_dirs(self.spec.local_dir, exclude=self.spec.temp_dir, log=self.log)
        return deleted

    def retry_blocked(
        self, store, blocked: List[SyncTask], outcome: RunOutcome
    ) -> None:
        """Retries downloads that failed because a local file stood where a
        directory was needed, or the other way round. Runs after the
        housekeeper has removed stale paths, so the conflict is usually gone.

        :param store: object store.
        :param blocked: tasks deferred by the workers.
        :param outcome: run outcome to count into.
        """
        self.log.info("retrying %d blocked downloads", len(blocked))
        for task in sorted(blocked, key=lambda t: t.local_path):
            self._process(store, task, outcome)
        remove_empty_dirs(self.spec.local_dir, exclude=self.spec.temp_dir, log=self.log)

    def _create_temp_dir(self) -> bool:
        """Creates the temp dir if missing.

        :raises SyncError: if it can't be created.
        :return: True if the dir was created by this call.
        """
        if os.path.isdir(self.spec.temp_dir):
            return False
        try:
            os.makedirs(self.spec.temp_dir)
        except OSError as e:
            raise SyncError(f"can't create temp dir: {e}") from e
        return True

    def _delete_temp_dir(self) -> None:
        try:
            os.rmdir(self.spec.temp_dir)
        except OSError as e:
            self.log.error("can't delete temp dir %s: %s", self.spec.temp_dir, e)
