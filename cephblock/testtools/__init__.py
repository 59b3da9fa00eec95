# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Fakes and helpers for cephblock unit and functional tests.
"""

import io
import sys
from random import randrange

from bitmath import MiB

from zope.interface import implementer

from twisted.python.filepath import FilePath
from twisted.python.logfile import LogFile

from .. import __version__
from ..common import ICommandRunner, CommandFailed
from ..blockdevice_manager import MountInfo
from ._base import TestCase, make_temporary_directory


__all__ = [
    'TestCase', 'make_temporary_directory', 'random_name', 'FakeSysModule',
    'StandardOptionsTestsMixin', 'command_failed', 'FakeCommandRunner',
    'FakeRBDHost', 'SHOWMAPPED_HEADER',
]


def random_name(case):
    """
    :param TestCase case: The running test; its id is part of the name so
        that leftovers can be traced back to it.

    :return: A ``str`` name unlikely to collide with any other.
    """
    return "{}-{}".format(case.id().replace(".", "_"), randrange(10 ** 6))


class FakeSysModule(object):
    """
    Stands in for ``sys`` when testing what a command reads from ``argv``
    and writes to ``stdout`` and ``stderr``.

    :ivar list argv: The command line.
    :ivar io.StringIO stdout: Captured standard output.
    :ivar io.StringIO stderr: Captured standard error.
    """
    def __init__(self, argv=None):
        self.argv = [] if argv is None else argv
        self.stdout = io.StringIO()
        self.stderr = io.StringIO()


class StandardOptionsTestsMixin(object):
    """
    Tests for a ``usage.Options`` class decorated with
    ``cephblock_standard_options``.  Mix into a ``TestCase`` and set
    ``options``.

    :ivar options: The ``usage.Options`` subclass under test.
    """
    options = None

    def _parseable(self, options):
        # Let the standard options parse without the command's own
        # arguments or subcommand.
        self.patch(options, "parseArgs", lambda: None)
        self.patch(options, "postOptions", lambda: None)
        return options

    def test_sys_module_default(self):
        """
        Without a ``sys_module`` argument the real ``sys`` is used.
        """
        self.assertIs(sys, self.options()._sys_module)

    def test_sys_module_override(self):
        """
        A ``sys_module`` argument replaces ``sys``.
        """
        fake = FakeSysModule()
        self.assertIs(fake, self.options(sys_module=fake)._sys_module)

    def test_version(self):
        """
        ``--version`` writes the version to stdout and exits with status 0.
        """
        fake = FakeSysModule()
        e = self.assertRaises(
            SystemExit,
            self.options(sys_module=fake).parseOptions, ['--version'],
        )
        self.assertEqual(
            (__version__ + '\n', 0), (fake.stdout.getvalue(), e.code))

    def test_verbosity_default(self):
        """
        Verbosity starts at 0.
        """
        self.assertEqual(0, self.options()['verbosity'])

    def test_verbosity_option(self):
        """
        ``--verbose`` raises verbosity by 1.
        """
        options = self._parseable(self.options())
        options.parseOptions(['--verbose'])
        self.assertEqual(1, options['verbosity'])

    def test_verbosity_multiple(self):
        """
        ``-v`` and ``--verbose`` add up.
        """
        options = self._parseable(self.options())
        options.parseOptions(['-v', '--verbose'])
        self.assertEqual(2, options['verbosity'])

    def test_logfile_default(self):
        """
        Nothing is logged to a file unless ``--logfile`` is given.
        """
        options = self._parseable(self.options(sys_module=FakeSysModule()))
        options.parseOptions([])
        self.assertIs(None, options['logfile'])

    def test_logfile_override(self):
        """
        ``--logfile`` opens a rotated ``LogFile`` at the given path.
        """
        options = self._parseable(self.options())
        path = self.make_temporary_path()
        options.parseOptions(['--logfile', path.path])
        logfile = options['logfile']
        self.addCleanup(logfile.close)
        self.assertEqual(
            (LogFile, path.path, int(MiB(100).to_Byte().value), 5),
            (type(logfile), logfile.path, logfile.rotateLength,
             logfile.maxRotatedFiles),
        )


def command_failed(argv, stderr, returncode=1):
    """
    :return: The ``CommandFailed`` a utility exiting with ``returncode``
        after writing ``stderr`` would produce.
    """
    return CommandFailed(
        returncode=returncode, cmd=list(argv), output="", stderr=stderr,
    )


@implementer(ICommandRunner)
class FakeCommandRunner(object):
    """
    Pretend to run host utilities, replaying scripted results.

    :ivar list calls: The argument vectors of every ``run`` call, in order.
    """
    def __init__(self, executables=None):
        """
        :param dict executables: Maps executable names to the paths ``which``
            reports for them.
        """
        self.calls = []
        self.executables = dict(executables or {})
        self._responses = {}

    def respond(self, argv, *results):
        """
        Script the results of running ``argv``.

        :param list argv: The complete argument vector.
        :param results: ``str`` outputs or exceptions, used in order.  The
            last one is repeated for any further calls.  Exceptions are raised.
        """
        self._responses.setdefault(tuple(argv), []).extend(results)

    def run(self, name, args):
        argv = (name,) + tuple(args)
        self.calls.append(list(argv))
        results = self._responses.get(argv)
        if not results:
            return ""
        if len(results) > 1:
            result = results.pop(0)
        else:
            result = results[0]
        if isinstance(result, Exception):
            raise result
        return result

    def which(self, name):
        return self.executables.get(name)


SHOWMAPPED_HEADER = "id  pool  namespace  image  snap  device"


@implementer(ICommandRunner)
class FakeRBDHost(object):
    """
    A simulated node with the ``rbd``, ``blkid``, ``mkfs.*``, ``mount`` and
    ``umount`` utilities.

    :ivar list calls: The argument vectors of every ``run`` call, in order.
    :ivar list mappings: ``(id, pool, image, FilePath)`` tuples, one for
        each mapped image.
    :ivar dict filesystems: Maps device paths to the filesystem type on them.
    :ivar dict mounts: Maps device paths to the path they are mounted at.
    :ivar dict failures: Maps executable base names to the ``CommandFailed``
        running them raises.
    """
    def __init__(self, filesystem_types=("xfs", "ext4")):
        """
        :param filesystem_types: The filesystem types there is a ``mkfs``
            for.
        """
        self.calls = []
        self.mappings = []
        self.filesystems = {}
        self.mounts = {}
        self.failures = {}
        self._executables = {
            "mkfs." + fs_type: "/sbin/mkfs." + fs_type
            for fs_type in filesystem_types
        }

    def fail(self, name, stderr):
        """
        Make every later run of ``name`` fail with ``stderr``.
        """
        self.failures[name] = command_failed([name], stderr)

    def add_mapping(self, pool, image, device, filesystem=None):
        """
        Record ``image`` as mapped to ``device`` without running anything.

        :param FilePath device: The device the image is mapped to.
        :param filesystem: The filesystem type on the device, if any.
        """
        self.mappings.append(
            (self._next_id(), pool, image, device))
        if filesystem is not None:
            self.filesystems[device.path] = filesystem

    def mount_table(self):
        """
        :return: A ``list`` of ``MountInfo`` for the simulated mounts.
        """
        return [
            MountInfo(blockdevice=FilePath(device),
                      mountpoint=FilePath(mountpoint))
            for device, mountpoint in sorted(self.mounts.items())
        ]

    def commands(self, name):
        """
        :return: The argument vectors of the calls which ran ``name``.
        """
        return [argv for argv in self.calls
                if argv[0].rsplit("/", 1)[-1] == name]

    def which(self, name):
        return self._executables.get(name)

    def run(self, name, args):
        argv = [name] + list(args)
        self.calls.append(argv)
        basename = name.rsplit("/", 1)[-1]
        if basename in self.failures:
            raise self.failures[basename]
        if basename.startswith("mkfs."):
            return self._mkfs(argv, basename[len("mkfs."):], args)
        handler = getattr(self, "_" + basename, None)
        if handler is None:
            raise command_failed(
                argv, "{}: command not found".format(name), returncode=127)
        return handler(argv, args)

    def _next_id(self):
        used = {mapping[0] for mapping in self.mappings}
        return next(i for i in range(len(used) + 1) if i not in used)

    def _device(self, path):
        for mapping in self.mappings:
            if mapping[3].path == path:
                return mapping
        return None

    def _rbd(self, argv, args):
        command, rest = args[0], list(args[1:])
        if command == "showmapped":
            lines = [SHOWMAPPED_HEADER]
            for (device_id, pool, image, device) in self.mappings:
                lines.append("{}   {}             {}  -     {}".format(
                    device_id, pool, image, device.path))
            return "\n".join(lines)
        if command == "map":
            pool = "rbd"
            if "--id" in rest:
                del rest[rest.index("--id"):rest.index("--id") + 2]
            if "--pool" in rest:
                index = rest.index("--pool")
                pool = rest[index + 1]
                del rest[index:index + 2]
            device_id = self._next_id()
            device = FilePath("/dev/rbd{}".format(device_id))
            self.mappings.append((device_id, pool, rest[0], device))
            return device.path
        if command == "unmap":
            mapping = self._device(rest[0])
            if mapping is None:
                raise command_failed(
                    argv, "rbd: {}: not a mapped image or snapshot".format(
                        rest[0]))
            if rest[0] in self.mounts:
                raise command_failed(
                    argv, "rbd: sysfs write failed\n"
                          "rbd: unmap failed: (16) Device or resource busy")
            self.mappings.remove(mapping)
            return ""
        raise command_failed(argv, "rbd: unknown command")

    def _blkid(self, argv, args):
        filesystem = self.filesystems.get(args[-1])
        if filesystem is None:
            raise command_failed(argv, "", returncode=2)
        return filesystem

    def _mkfs(self, argv, filesystem, args):
        if self._device(args[-1]) is None:
            raise command_failed(
                argv, "The file {} does not exist".format(args[-1]))
        self.filesystems[args[-1]] = filesystem
        return ""

    def _mount(self, argv, args):
        filesystem, device, mountpoint = args[1], args[2], args[3]
        if self._device(device) is None:
            raise command_failed(
                argv, "mount: special device {} does not exist".format(
                    device), returncode=32)
        if self.filesystems.get(device) != filesystem:
            raise command_failed(
                argv, "mount: wrong fs type, bad option, bad superblock on "
                      "{}".format(device), returncode=32)
        self.mounts[device] = mountpoint
        return ""

    def _umount(self, argv, args):
        if args[0] not in self.mounts:
            raise command_failed(
                argv, "umount: {}: not mounted".format(args[0]),
                returncode=32)
        del self.mounts[args[0]]
        return ""
