# errors.py -- errors for excise
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

"""excise-related exception classes."""

__all__ = [
    "AmbiguousMatch",
    "ApplyDeltaError",
    "CorruptGraph",
    "DanglingRef",
    "FileFormatException",
    "NotBlobError",
    "NotCommitError",
    "NotTagError",
    "NotTreeError",
    "ObjectFormatException",
    "ObjectNotFound",
    "RefUpdateConflict",
    "RewriteCancelled",
    "SizeLimitExceeded",
    "StoreUnavailable",
    "VerificationFailed",
    "WrongObjectException",
]

# Please do not add more errors here, but instead add them close to the code
# that raises the error.

from collections.abc import Sequence


class WrongObjectException(Exception):
    """Baseclass for all the _ is not a _ exceptions on objects.

    Do not instantiate directly.

    Subclasses should define a type_name attribute that indicates what
    was expected if they were raised.
    """

    type_name: str

    def __init__(self, sha: bytes, *args: object, **kwargs: object) -> None:
        """Initialize a WrongObjectException.

        Args:
            sha: The SHA of the object that was not of the expected type.
            *args: Additional positional arguments.
            **kwargs: Additional keyword arguments.
        """
        self.sha = sha
        Exception.__init__(self, f"{sha.decode('ascii')} is not a {self.type_name}")


class NotCommitError(WrongObjectException):
    """Indicates that the sha requested does not point to a commit."""

    type_name = "commit"


class NotTreeError(WrongObjectException):
    """Indicates that the sha requested does not point to a tree."""

    type_name = "tree"


class NotTagError(WrongObjectException):
    """Indicates that the sha requested does not point to a tag."""

    type_name = "tag"


class NotBlobError(WrongObjectException):
    """Indicates that the sha requested does not point to a blob."""

    type_name = "blob"


class ObjectNotFound(KeyError):
    """Indicates that a requested object is not in the object store."""

    def __init__(self, sha: bytes) -> None:
        """Initialize an ObjectNotFound exception.

        Args:
            sha: The SHA of the missing object.
        """
        self.sha = sha
        KeyError.__init__(self, sha)

    def __str__(self) -> str:
        return f"{self.sha.decode('ascii', 'replace')} is not in the object store"


class StoreUnavailable(Exception):
    """The underlying object storage could not be read or written.

    This is a transient condition; callers may retry the operation.
    """

    def __init__(self, path: str, reason: BaseException | str) -> None:
        """Initialize a StoreUnavailable exception.

        Args:
            path: Path (or description) of the storage that failed.
            reason: The underlying error.
        """
        self.path = path
        self.reason = reason
        Exception.__init__(self, f"Object storage unavailable at {path}: {reason}")


class ApplyDeltaError(Exception):
    """Indicates that applying a delta failed."""


class FileFormatException(Exception):
    """Base class for exceptions relating to reading git file formats."""


class ObjectFormatException(FileFormatException):
    """Indicates an error parsing an object."""


class CorruptGraph(Exception):
    """The object graph is not a well-formed DAG.

    Raised when a ref or object references a missing object, or when a cycle
    is detected. No rewriting may be built on top of a corrupt graph.
    """

    def __init__(
        self, message: str, sha: bytes | None = None, path: Sequence[bytes] = ()
    ) -> None:
        """Initialize a CorruptGraph exception.

        Args:
            message: Description of the defect.
            sha: The object identity at which the defect was found.
            path: Chain of identities that led to the defect.
        """
        self.sha = sha
        self.path = list(path)
        Exception.__init__(self, message)


class AmbiguousMatch(UserWarning):
    """A blob matched the removal policy at one path but not at another."""


class DanglingRef(Exception):
    """The entire history behind a ref was removed by the rewrite."""

    def __init__(self, ref: bytes, old_sha: bytes) -> None:
        """Initialize a DanglingRef.

        Args:
            ref: Name of the ref.
            old_sha: The identity the ref pointed at before the rewrite.
        """
        self.ref = ref
        self.old_sha = old_sha
        Exception.__init__(
            self,
            f"{ref.decode('utf-8', 'replace')} has no surviving history "
            f"(was {old_sha.decode('ascii')})",
        )


class RefUpdateConflict(Exception):
    """A ref changed underneath the updater and was left unmodified."""

    def __init__(
        self, ref: bytes, expected: bytes | None, new_sha: bytes | None = None
    ) -> None:
        """Initialize a RefUpdateConflict.

        Args:
            ref: Name of the ref.
            expected: The value the ref was expected to hold.
            new_sha: The value the updater tried to write.
        """
        self.ref = ref
        self.expected = expected
        self.new_sha = new_sha
        Exception.__init__(
            self,
            f"{ref.decode('utf-8', 'replace')} no longer points at "
            f"{(expected or b'(none)').decode('ascii')}",
        )


class SizeLimitExceeded(Exception):
    """Blobs larger than the configured threshold survived the rewrite."""

    def __init__(self, oversized: Sequence[tuple[bytes, int]], limit: int) -> None:
        """Initialize a SizeLimitExceeded exception.

        Args:
            oversized: List of (blob sha, size) tuples.
            limit: The configured threshold in bytes.
        """
        self.oversized = list(oversized)
        self.limit = limit
        Exception.__init__(
            self, f"{len(self.oversized)} blob(s) exceed the limit of {limit} bytes"
        )


class VerificationFailed(Exception):
    """One or more post-rewrite invariants do not hold."""

    def __init__(self, failures: Sequence[str]) -> None:
        """Initialize a VerificationFailed exception.

        Args:
            failures: Human readable description of each failed check.
        """
        self.failures = list(failures)
        Exception.__init__(self, "; ".join(self.failures))


class RewriteCancelled(Exception):
    """The rewrite was cancelled before all objects were processed."""
