# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The base ``TestCase`` for cephblock tests.
"""

import json
import tempfile
from unittest import SkipTest

from eliot import add_destinations, remove_destination
from eliot.prettyprint import pretty_format
from fixtures import Fixture
import testtools
from testtools.content import Content
from testtools.content_type import UTF8_TEXT

from twisted.python.filepath import FilePath


class TestCase(testtools.TestCase):
    """
    A ``testtools.TestCase`` which records Eliot messages and hands out
    per-test temporary paths.
    """

    # Eliot's logging validation only recognises unittest.SkipTest as a skip.
    skipException = SkipTest

    def setUp(self):
        super().setUp()
        self.useFixture(_EliotLogs())

    def make_temporary_directory(self):
        """
        :return: A ``FilePath`` to a new, empty directory under a directory
            named after the test.
        """
        return make_temporary_directory(
            FilePath(_path_for_test_id(self.id())))

    def make_temporary_path(self):
        """
        :return: A ``FilePath`` which does not exist yet, in a new directory.
        """
        return self.make_temporary_directory().child('temp')

    def mktemp(self):
        """
        Like ``twisted.trial.unittest.TestCase.mktemp``.

        :return: The ``str`` path of ``make_temporary_path``.
        """
        return self.make_temporary_path().path


class _EliotLogs(Fixture):
    """
    Collect the Eliot messages logged during a test and attach them, pretty
    printed, as the ``eliot-log`` detail.

    Messages logged inside ``eliot.testing.capture_logging`` go to its
    ``MemoryLogger`` instead.
    """
    def _setUp(self):
        messages = []
        add_destinations(messages.append)
        self.addCleanup(remove_destination, messages.append)
        self.addDetail(
            'eliot-log',
            Content(UTF8_TEXT, lambda: _pretty_messages(messages)))


def _pretty_messages(messages):
    """
    :param list messages: Eliot message dictionaries.
    :yield: Each message pretty printed, as UTF-8 ``bytes``.
    """
    for message in messages:
        # Values Eliot could not serialize are shown by their repr.
        data = json.loads(json.dumps(message, default=repr))
        yield (pretty_format(data) + '\n').encode("utf-8")


def _path_for_test_id(test_id, max_segment_length=32):
    """
    :param str test_id: The id of a test: ``module.Class.method``, where the
        module may itself be dotted.
    :param int max_segment_length: Longer segments are truncated.
    :return: The relative path ``module/Class/method`` for the test.
    """
    segments = test_id.rsplit('.', 2)
    if len(segments) < 3:
        raise ValueError(
            "Expected a test id like module.Class.method, got {!r}".format(
                test_id))
    return '/'.join(segment[:max_segment_length] for segment in segments)


def make_temporary_directory(base_path):
    """
    Create a new directory beneath ``base_path``, creating ``base_path``
    too if necessary.  The caller removes it.

    :param FilePath base_path: Where to create the directory.
    :return: The ``FilePath`` of the new directory.
    """
    if not base_path.exists():
        base_path.makedirs()
    return FilePath(tempfile.mkdtemp(dir=base_path.path))
