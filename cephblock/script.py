# -*- test-case-name: cephblock.test.test_script -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The ``cephblock`` command line tool.
"""

from jsonschema import ValidationError

from pyrsistent import PClass, field

from zope.interface import implementer

from twisted.python.filepath import FilePath
from twisted.python.usage import Options, UsageError

from .common import (
    ProcessCommandRunner, ICommandRunner, interface_field, lazy_proxy,
)
from .common.script import (
    ICommandLineScript, cephblock_standard_options, CommandLineScriptRunner,
)
from .configuration import (
    Configuration, ConfigurationError, DEFAULT_CONFIGURATION_PATH,
)
from .store import IRemoteStore, StoreError
from .discovery import DiscoveryError
from .mapper import UnmapError
from .blockdevice_manager import Device, UnmountError
from .provision import (
    ProvisioningOrchestrator, ProvisionRequest, ProvisioningError,
    TeardownError,
)


# Failures which are reported with a one line message rather than a
# traceback.
_OPERATIONAL_ERRORS = (
    ProvisioningError, TeardownError, StoreError, DiscoveryError,
    UnmountError, UnmapError, ValidationError, ConfigurationError,
    EnvironmentError,
)


def _rados_store():
    """
    :return: A ``RadosRemoteStore``.  The Ceph bindings are only imported when
        a command needs to talk to the cluster.
    """
    from .ceph import RadosRemoteStore
    return RadosRemoteStore()


def _require(options, *names):
    """
    :raise UsageError: If any of the named options was not given.
    """
    for name in names:
        if options[name] is None:
            raise UsageError("--{} is required.".format(name))


class ProvisionOptions(Options):
    """
    Command line options for ``cephblock provision``.
    """
    longdesc = """\
    Create the image unless it exists, map it, format it unless it already
    carries the filesystem and mount it.  An image which is already mapped on
    this node is reported and left alone.
    """

    synopsis = "--image NAME --size MB --mount-point PATH [--filesystem T]"

    optParameters = [
        ["image", "i", None, "The name of the image."],
        ["size", "s", None,
         "The size, in megabytes, to create the image with.", int],
        ["mount-point", "m", None, "The directory to mount the device at."],
        ["filesystem", "f", None,
         "The filesystem type; defaults to the configured filesystem."],
    ]

    def postOptions(self):
        _require(self, "image", "size", "mount-point")
        if self["size"] <= 0:
            raise UsageError("--size must be a positive number of megabytes.")
        self["mount-point"] = FilePath(self["mount-point"])


class TeardownOptions(Options):
    """
    Command line options for ``cephblock teardown``.
    """
    longdesc = """\
    Unmount the device if a mount point is given, then unmap it.
    """

    synopsis = "--device PATH [--mount-point PATH]"

    optParameters = [
        ["device", "d", None, "The mapped device, e.g. /dev/rbd0."],
        ["mount-point", "m", None, "The directory the device is mounted at."],
        ["filesystem", "f", None, "The filesystem type of the device."],
    ]

    def postOptions(self):
        _require(self, "device")
        self["device"] = FilePath(self["device"])
        if self["mount-point"] is not None:
            self["mount-point"] = FilePath(self["mount-point"])


class ListMappedOptions(Options):
    """
    Command line options for ``cephblock list-mapped``.
    """
    longdesc = """\
    List the images mapped on this node and their devices.
    """


class ListImagesOptions(Options):
    """
    Command line options for ``cephblock list-images``.
    """
    longdesc = """\
    List the images in the configured pool.
    """


class DestroyImageOptions(Options):
    """
    Command line options for ``cephblock destroy-image``.
    """
    longdesc = """\
    Remove an image and all of its data from the configured pool.
    """

    synopsis = "--image NAME"

    optParameters = [
        ["image", "i", None, "The name of the image."],
    ]

    def postOptions(self):
        _require(self, "image")


@cephblock_standard_options
class CephBlockOptions(Options):
    """
    Command line options for ``cephblock``.
    """
    longdesc = """\
    Provision Ceph RBD images as mounted local filesystems.
    """

    synopsis = "Usage: cephblock [OPTIONS] COMMAND"

    optParameters = [
        ["config", "c", None,
         "The configuration file. Defaults to {} if it exists.".format(
             DEFAULT_CONFIGURATION_PATH.path)],
    ]

    subCommands = [
        ["provision", None, ProvisionOptions,
         "Provision an image as a mounted filesystem."],
        ["teardown", None, TeardownOptions,
         "Unmount and unmap a device."],
        ["list-mapped", None, ListMappedOptions,
         "List the images mapped on this node."],
        ["list-images", None, ListImagesOptions,
         "List the images in the pool."],
        ["destroy-image", None, DestroyImageOptions,
         "Remove an image from the pool."],
    ]

    def postOptions(self):
        if not self.subCommand:
            raise UsageError('Please supply subcommand name.')
        if self["config"] is not None:
            self["config"] = FilePath(self["config"])


def load_configuration(path):
    """
    Load the configuration for a command.

    :param path: The ``FilePath`` given on the command line, or ``None`` to
        use ``DEFAULT_CONFIGURATION_PATH`` if it exists and the built-in
        defaults otherwise.

    :return: A ``Configuration``.
    """
    if path is None:
        if not DEFAULT_CONFIGURATION_PATH.exists():
            return Configuration()
        path = DEFAULT_CONFIGURATION_PATH
    return Configuration.from_path(path)


def _provision(orchestrator, options, stdout):
    result = orchestrator.provision_image(ProvisionRequest(
        image_name=options["image"],
        size=options["size"],
        mount_point=options["mount-point"],
        filesystem=options["filesystem"],
    ))
    device = result.device
    stdout.write("{} {} {}{}\n".format(
        result.image_name,
        device.path.path,
        device.mount_point.path if device.mounted else "-",
        " (already mapped)" if result.already_mapped else "",
    ))


def _teardown(orchestrator, options, stdout):
    mount_point = options["mount-point"]
    device = Device(
        path=options["device"],
        filesystem=options["filesystem"] or orchestrator.filesystem,
        mounted=mount_point is not None,
        mount_point=mount_point,
    )
    orchestrator.teardown(device)


def _list_mapped(orchestrator, options, stdout):
    for name, path in sorted(orchestrator.list_mapped_devices().items()):
        stdout.write("{} {}\n".format(name, path.path))


def _list_images(orchestrator, options, stdout):
    with orchestrator.connect() as connection:
        for name in orchestrator.list_images(connection):
            stdout.write(name + "\n")


def _destroy_image(orchestrator, options, stdout):
    with orchestrator.connect() as connection:
        orchestrator.destroy_image(connection, options["image"])


@implementer(ICommandLineScript)
class CephBlockScript(PClass):
    """
    Implement top-level logic for ``cephblock``.

    :ivar store_factory: A no-argument callable returning the
        ``IRemoteStore`` to use.  It is called when a command first talks
        to the cluster, so commands which only use the host work without
        the Ceph bindings.
    :ivar ICommandRunner runner: Runs host utilities.
    """
    store_factory = field(initial=(lambda: _rados_store), mandatory=True)
    runner = interface_field(
        (ICommandRunner,), initial=ProcessCommandRunner(), mandatory=True,
    )

    _subcommands = {
        'provision': _provision,
        'teardown': _teardown,
        'list-mapped': _list_mapped,
        'list-images': _list_images,
        'destroy-image': _destroy_image,
    }

    def main(self, options, sys_module):
        try:
            configuration = load_configuration(options["config"])
            orchestrator = ProvisioningOrchestrator.from_configuration(
                configuration, lazy_proxy(IRemoteStore, self.store_factory),
                self.runner,
            )
            self._subcommands[options.subCommand](
                orchestrator, options.subOptions, sys_module.stdout,
            )
        except _OPERATIONAL_ERRORS as e:
            # Schema errors carry the whole schema after the first line.
            sys_module.stderr.write("cephblock: error: {}\n".format(
                str(e).splitlines()[0]))
            return 1
        return 0


def cephblock_main():
    return CommandLineScriptRunner(
        script=CephBlockScript(),
        options=CephBlockOptions(),
    ).main()
