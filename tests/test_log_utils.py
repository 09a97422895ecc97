# test_log_utils.py -- Tests for log_utils.py
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

"""Tests for excise.log_utils."""

import logging
import os
import sys
import tempfile
from unittest.mock import patch

from excise.log_utils import (
    _EXCISE_LOGGER,
    _NULL_HANDLER,
    TRACE_ENV,
    _get_trace_target,
    default_logging_config,
    getLogger,
    remove_null_handler,
)

from . import TestCase


class LogUtilsTests(TestCase):
    """Tests for log_utils."""

    def setUp(self) -> None:
        super().setUp()
        self.original_handlers = list(_EXCISE_LOGGER.handlers)

    def tearDown(self) -> None:
        _EXCISE_LOGGER.handlers = self.original_handlers
        super().tearDown()

    def test_null_handler_installed(self) -> None:
        self.assertIn(_NULL_HANDLER, _EXCISE_LOGGER.handlers)

    def test_remove_null_handler(self) -> None:
        remove_null_handler()
        self.assertNotIn(_NULL_HANDLER, _EXCISE_LOGGER.handlers)

    def test_get_logger(self) -> None:
        logger = getLogger("excise.test")
        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual("excise.test", logger.name)

    def test_trace_target_disabled(self) -> None:
        for value in ("", "0", "false", "FALSE", "relative/path", "12"):
            self.assertIsNone(_get_trace_target(value), value)

    def test_trace_target_stderr(self) -> None:
        for value in ("1", "2", "true", "True"):
            self.assertEqual(2, _get_trace_target(value), value)

    def test_trace_target_fd(self) -> None:
        self.assertEqual(3, _get_trace_target("3"))
        self.assertEqual(9, _get_trace_target("9"))

    def test_trace_target_path(self) -> None:
        path = os.path.abspath("trace.log")
        self.assertEqual(path, _get_trace_target(path))

    def test_trace_target_from_environment(self) -> None:
        self.overrideEnv(TRACE_ENV, "true")
        self.assertEqual(2, _get_trace_target())
        self.overrideEnv(TRACE_ENV, None)
        self.assertIsNone(_get_trace_target())

    def test_default_logging_config(self) -> None:
        with patch("logging.basicConfig") as basic_config:
            default_logging_config(logging.WARNING)
        self.assertNotIn(_NULL_HANDLER, _EXCISE_LOGGER.handlers)
        basic_config.assert_called_once()
        kwargs = basic_config.call_args.kwargs
        self.assertEqual(logging.WARNING, kwargs["level"])
        self.assertIs(sys.stderr, kwargs["stream"])

    def test_trace_to_stderr(self) -> None:
        self.overrideEnv(TRACE_ENV, "1")
        with patch("logging.basicConfig") as basic_config:
            default_logging_config(logging.WARNING)
        kwargs = basic_config.call_args.kwargs
        self.assertEqual(logging.DEBUG, kwargs["level"])
        self.assertIs(sys.stderr, kwargs["stream"])

    def test_trace_to_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            self.overrideEnv(TRACE_ENV, tmpdir)
            with patch("logging.basicConfig") as basic_config:
                default_logging_config()
        kwargs = basic_config.call_args.kwargs
        self.assertEqual(logging.DEBUG, kwargs["level"])
        self.assertEqual(
            os.path.join(tmpdir, f"trace.{os.getpid()}"), kwargs["filename"]
        )

    def test_trace_to_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "trace.log")
            self.overrideEnv(TRACE_ENV, path)
            with patch("logging.basicConfig") as basic_config:
                default_logging_config()
        self.assertEqual(path, basic_config.call_args.kwargs["filename"])
