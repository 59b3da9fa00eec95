# -*- test-case-name: cephblock.common.test.test_process -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Subprocess utilities.
"""
from subprocess import PIPE, CalledProcessError, Popen

from eliot import log_message, start_action
from pyrsistent import PClass, field

from zope.interface import Interface, implementer

from twisted.python.procutils import which


class CommandFailed(CalledProcessError):
    """
    Just like ``CalledProcessError`` except standard error is included in the
    string representation.
    """
    def __str__(self):
        base = super().__str__()
        lines = "\n".join(
            "    |" + line for line in (self.stderr or "").splitlines()
        )
        return base + " and error output:\n" + lines


class _ProcessResult(PClass):
    """
    The return type for ``run_process`` representing the outcome of the process
    that was run.
    """
    command = field(type=list, mandatory=True)
    output = field(type=str, mandatory=True)
    error = field(type=str, mandatory=True)
    status = field(type=int, mandatory=True)


def run_process(command, *args, **kwargs):
    """
    Run a child process, capturing its stdout and stderr separately.

    :param list command: An argument list to use to launch the child process.

    :raise CommandFailed: If the child process has a non-zero exit status.

    :return: A ``_ProcessResult`` instance describing the result of the child
         process.
    """
    kwargs["stdout"] = PIPE
    kwargs["stderr"] = PIPE
    kwargs["universal_newlines"] = True
    action = start_action(
        action_type="run_process", command=command, args=args,
        kwargs=kwargs)
    with action:
        process = Popen(command, *args, **kwargs)
        output, error = process.communicate()
        status = process.wait()
        result = _ProcessResult(
            command=command, output=output, error=error, status=status,
        )
        log_message(
            message_type="cephblock:process:result",
            command=result.command,
            output=result.output,
            error=result.error,
            status=result.status,
        )
        if result.status:
            raise CommandFailed(
                returncode=status, cmd=command, output=output, stderr=error,
            )
    return result


class ICommandRunner(Interface):
    """
    Run host utilities on this node.
    """

    def run(name, args):
        """
        Run the executable ``name`` with ``args`` and wait for it to exit.

        :param str name: The executable to run, either a bare name looked
            up on ``PATH`` or an absolute path.
        :param list args: ``str`` arguments for the executable.

        :raises CommandFailed: If the executable exits with a non-zero status.
        :return: The ``str`` standard output of the executable with
            surrounding whitespace removed.
        """

    def which(name):
        """
        Locate an executable on ``PATH``.

        :param str name: The executable to look for.

        :return: The absolute ``str`` path to the executable or ``None``
            if it cannot be found.
        """


@implementer(ICommandRunner)
class ProcessCommandRunner(PClass):
    """
    Run host utilities as child processes.
    """
    def run(self, name, args):
        command = [name] + list(args)
        try:
            return run_process(command).output.strip()
        except OSError as e:
            # The executable is missing or could not be started.
            raise CommandFailed(
                returncode=127, cmd=command, output="", stderr=str(e),
            )

    def which(self, name):
        found = which(name)
        if found:
            return found[0]
        return None
