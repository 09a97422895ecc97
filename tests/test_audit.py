# test_audit.py -- tests for audit.py
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

"""Tests for the audit log and rewrite report."""

import os
import shutil
import tempfile

from excise.audit import (
    DELETED_FILES_NAME,
    OBJECT_ID_MAP_NAME,
    WARNINGS_NAME,
    AuditLog,
    DeletedFile,
    RewriteReport,
)
from excise.errors import DanglingRef
from excise.objects import ZERO_SHA

from . import TestCase

ONES = b"1" * 40
TWOS = b"2" * 40
THREES = b"3" * 40


class AuditLogTests(TestCase):
    def test_record_deleted_dedupes(self) -> None:
        log = AuditLog()
        self.assertTrue(log.record_deleted(ONES, 10, b"big.bin"))
        self.assertFalse(log.record_deleted(ONES, 10, b"big.bin"))
        self.assertTrue(log.record_deleted(ONES, 10, b"copy/big.bin"))
        self.assertEqual(
            [DeletedFile(ONES, 10, b"big.bin"), DeletedFile(ONES, 10, b"copy/big.bin")],
            log.deleted,
        )

    def test_record_mapping(self) -> None:
        log = AuditLog()
        log.record_mapping(ONES, TWOS)
        log.record_mapping(THREES, None)
        self.assertEqual({ONES: TWOS, THREES: ZERO_SHA}, log.object_map)
        self.assertEqual(2, len(log))

    def test_write(self) -> None:
        report_dir = os.path.join(tempfile.mkdtemp(), "report")
        self.addCleanup(shutil.rmtree, os.path.dirname(report_dir))
        log = AuditLog()
        log.record_mapping(THREES, None)
        log.record_mapping(ONES, TWOS)
        log.record_deleted(TWOS, 1234, b"z/big.bin")
        log.record_deleted(ONES, None, b"build/")
        log.warn("something odd")

        written = log.write(report_dir)

        self.assertEqual(
            [
                os.path.join(report_dir, OBJECT_ID_MAP_NAME),
                os.path.join(report_dir, DELETED_FILES_NAME),
                os.path.join(report_dir, WARNINGS_NAME),
            ],
            written,
        )
        with open(os.path.join(report_dir, OBJECT_ID_MAP_NAME), "rb") as f:
            self.assertEqual(
                ONES + b" " + TWOS + b"\n" + THREES + b" " + ZERO_SHA + b"\n",
                f.read(),
            )
        with open(os.path.join(report_dir, DELETED_FILES_NAME), "rb") as f:
            self.assertEqual(
                ONES + b" - build/\n" + TWOS + b" 1234 z/big.bin\n", f.read()
            )
        with open(os.path.join(report_dir, WARNINGS_NAME), "rb") as f:
            self.assertEqual(b"something odd\n", f.read())

    def test_write_empty(self) -> None:
        report_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, report_dir)
        for path in AuditLog().write(report_dir):
            self.assertEqual(0, os.path.getsize(path))


class RewriteReportTests(TestCase):
    def test_unchanged(self) -> None:
        report = RewriteReport(scanned_blobs=10, oversized_blobs=0)
        self.assertFalse(report.changed)

    def test_changed(self) -> None:
        self.assertTrue(RewriteReport(rewritten_commits=1).changed)
        self.assertTrue(RewriteReport(pruned_commits=1).changed)
        self.assertTrue(RewriteReport(removed_tags=1).changed)

    def test_format(self) -> None:
        report = RewriteReport(matched_blobs=2, rewritten_commits=3)
        report.updated_refs.append(b"refs/heads/master")
        report.dangling_refs.append(DanglingRef(b"refs/heads/junk", ONES))
        report.scan_errors.append((TWOS, "unreadable"))
        text = report.format()
        self.assertIn("Blobs removed:        2\n", text)
        self.assertIn("Commits rewritten:    3\n", text)
        self.assertIn("Refs updated:         1\n", text)
        self.assertIn("refs/heads/junk has no surviving history", text)
        self.assertIn(TWOS.decode("ascii") + ": unreadable", text)
