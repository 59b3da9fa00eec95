# -*- test-case-name: cephblock.common.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Running ``cephblock`` commands: shared options, and routing Eliot output to
a log file or standard error.
"""

import sys

from bitmath import MiB

from eliot import FileDestination, add_destinations, remove_destination

from twisted.python import usage
from twisted.python.logfile import LogFile
from twisted.python.filepath import FilePath

from zope.interface import Interface

from .. import __version__


__all__ = [
    'cephblock_standard_options',
    'ICommandLineScript',
    'CommandLineScriptRunner',
]


# Log files are rotated at this size, keeping this many old files.
LOGFILE_LENGTH = int(MiB(100).to_Byte().value)
LOGFILE_COUNT = 5


def _opt_version(self):
    """Print the version and exit."""
    self._sys_module.stdout.write(__version__ + '\n')
    raise SystemExit(0)


def _opt_verbose(self):
    """Log to standard error.  May be given more than once."""
    self['verbosity'] += 1


def _opt_logfile(self, path):
    """
    Log to a rotated file, creating its directory if necessary.
    """
    path = FilePath(path)
    if not path.parent().exists():
        path.parent().makedirs()
    self['logfile'] = LogFile.fromFullPath(
        path.path, rotateLength=LOGFILE_LENGTH, maxRotatedFiles=LOGFILE_COUNT,
    )


def cephblock_standard_options(cls):
    """
    Give a ``usage.Options`` subclass the ``--version``, ``--verbose`` and
    ``--logfile`` options every ``cephblock`` command has.

    The decorated class takes an optional ``sys_module`` keyword argument, a
    ``sys`` substitute for tests, kept as ``_sys_module``.

    :param type cls: The class to decorate.
    :return: ``cls``.
    """
    wrapped_init = cls.__init__

    def __init__(self, *args, **kwargs):
        self._sys_module = kwargs.pop('sys_module', sys)
        self['verbosity'] = 0
        self['logfile'] = None
        wrapped_init(self, *args, **kwargs)

    cls.__init__ = __init__
    cls.opt_version = _opt_version
    cls.opt_verbose = cls.opt_v = _opt_verbose
    cls.opt_logfile = _opt_logfile
    return cls


class ICommandLineScript(Interface):
    """
    The logic of a command, run by ``CommandLineScriptRunner`` once its
    options have been parsed.
    """
    def main(options, sys_module):
        """
        :param usage.Options options: The parsed options.
        :param sys_module: A ``sys`` like module whose ``stdout`` and
            ``stderr`` the script reports to.
        :return: The ``int`` exit status of the script.
        """


class CommandLineScriptRunner(object):
    """
    Parse the command line, set up logging and run an
    ``ICommandLineScript``.

    :ivar ICommandLineScript script: The script to run.
    :ivar usage.Options options: The option parser for the script.
    :ivar bool logging: Whether to add an Eliot destination at all.
    :ivar sys_module: The ``sys`` like module arguments are read from and
        output written to.
    """
    def __init__(self, script, options, logging=True, sys_module=None):
        self.script = script
        self.options = options
        self.logging = logging
        self.sys_module = sys if sys_module is None else sys_module

    def _parse_options(self, arguments):
        """
        Parse ``arguments`` with ``self.options``.  On a ``UsageError`` the
        help and the error are written to standard error and the process
        exits with status 1.

        :param list arguments: The command line arguments.
        :return: The populated ``usage.Options``.
        """
        try:
            self.options.parseOptions(arguments)
        except usage.UsageError as e:
            self.sys_module.stderr.write(str(self.options))
            self.sys_module.stderr.write('ERROR: {}\n'.format(e))
            raise SystemExit(1)
        return self.options

    def _log_destination(self, options):
        """
        :return: An Eliot destination writing to the ``--logfile``, or to
            standard error when verbose, or ``None`` to log nothing.
        """
        if not self.logging:
            return None
        target = options.get('logfile')
        if target is None and options.get('verbosity', 0) > 0:
            target = self.sys_module.stderr
        if target is None:
            return None
        return FileDestination(file=target)

    def main(self):
        """
        Run the script and exit with its status.
        """
        # Parsing may exit, e.g. for --version, so it happens before logging
        # is set up.
        options = self._parse_options(self.sys_module.argv[1:])
        destination = self._log_destination(options)
        if destination is not None:
            add_destinations(destination)
        try:
            status = self.script.main(options, self.sys_module)
        finally:
            if destination is not None:
                remove_destination(destination)
        raise SystemExit(status)
