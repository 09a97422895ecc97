# log_utils.py -- Logging utilities for excise
# Copyright (C) 2026 The excise authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# excise is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Logging utilities for excise.

excise is usable as a library, so the package logger carries a null handler
and emits nothing until the application configures logging. The command line
tool calls default_logging_config(), which honours EXCISE_TRACE the way git
honours GIT_TRACE:

- "1", "2" or "true" traces to stderr
- an integer from 3 to 9 traces to that file descriptor
- an absolute path traces to that file, or to a per-process file when the
  path is a directory
"""

__all__ = [
    "TRACE_ENV",
    "default_logging_config",
    "getLogger",
    "remove_null_handler",
]

import logging
import os
import sys

getLogger = logging.getLogger

TRACE_ENV = "EXCISE_TRACE"

_NULL_HANDLER = logging.NullHandler()
_EXCISE_LOGGER = getLogger("excise")
_EXCISE_LOGGER.addHandler(_NULL_HANDLER)

_TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


def _get_trace_target(value: str | None = None) -> str | int | None:
    """Get the trace target from the EXCISE_TRACE environment variable.

    Returns: None if tracing is disabled, 2 for stderr, a file descriptor
        number, or an absolute path.
    """
    if value is None:
        value = os.environ.get(TRACE_ENV, "")
    if not value or value.lower() in ("0", "false"):
        return None
    if value.lower() in ("1", "2", "true"):
        return 2
    try:
        fd = int(value)
    except ValueError:
        pass
    else:
        if 3 <= fd <= 9:
            return fd
        return None
    if os.path.isabs(value):
        return value
    return None


def _configure_logging_from_trace() -> bool:
    """Configure logging based on EXCISE_TRACE.

    Returns: True if trace output was configured
    """
    trace_target = _get_trace_target()
    if trace_target is None:
        return False

    if trace_target == 2:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format=_TRACE_FORMAT)
        return True

    if isinstance(trace_target, int):
        try:
            stream = os.fdopen(trace_target, "w", buffering=1)
        except OSError as e:
            sys.stderr.write(f"Warning: Failed to open {TRACE_ENV} fd {trace_target}: {e}\n")
            return False
        logging.basicConfig(level=logging.DEBUG, stream=stream, format=_TRACE_FORMAT)
        return True

    if os.path.isdir(trace_target):
        filename = os.path.join(trace_target, f"trace.{os.getpid()}")
    else:
        filename = trace_target
    try:
        logging.basicConfig(
            level=logging.DEBUG, filename=filename, filemode="a", format=_TRACE_FORMAT
        )
    except OSError as e:
        sys.stderr.write(f"Warning: Failed to open {TRACE_ENV} file {trace_target}: {e}\n")
        return False
    return True


def default_logging_config(level: int = logging.INFO) -> None:
    """Set up the default excise loggers.

    Args:
      level: Level used when EXCISE_TRACE does not ask for tracing
    """
    remove_null_handler()
    if not _configure_logging_from_trace():
        logging.basicConfig(
            level=level,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s: %(message)s",
        )


def remove_null_handler() -> None:
    """Remove the null handler from the excise loggers."""
    _EXCISE_LOGGER.removeHandler(_NULL_HANDLER)
