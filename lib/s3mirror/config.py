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
Contains default config and settings.
"""

import os

# remote store settings
URI_SCHEME = "s3"
DIR_MARKER = "/"
REGION = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-west-1"))
S3_ENDPOINT = os.getenv("S3MIRROR_S3_ENDPOINT", "")
S3_MAX_ATTEMPTS = 3
S3_RETRY_MODE = "standard"

# build info
BUILD_TIME = os.getenv("S3MIRROR_BUILD_TIME", "")

# sync engine settings
TEMP_DIR = os.getenv("S3MIRROR_TEMP_DIR", "tmp")
WORKERS = int(os.getenv("S3MIRROR_WORKERS", min(32, (os.cpu_count() or 8) * 4)))
QUEUE_SIZE = int(os.getenv("S3MIRROR_QUEUE_SIZE", 1000))
HASH_CHUNK_SIZE = 1024 * 1024

# scheduler settings
INTERVAL = float(os.getenv("S3MIRROR_INTERVAL", 5))
METRICS_HOST = os.getenv("S3MIRROR_METRICS_HOST", "0.0.0.0")
METRICS_PORT = int(os.getenv("S3MIRROR_METRICS_PORT", 8085))
METRICS_NAMESPACE = "s3mirror"

# logging settings
LOG_NAME = "s3mirror"
LOG_DIR = os.getenv("LOG_DIR", os.path.expanduser("~/log/s3mirror"))
LOG_FILE = "s3mirror.log"
LOG_LEVEL_DEFAULT = "INFO"
LOG_LEVEL = os.getenv("LOG_LEVEL", LOG_LEVEL_DEFAULT)
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 5
