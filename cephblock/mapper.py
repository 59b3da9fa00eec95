# -*- test-case-name: cephblock.test.test_mapper -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Map RBD images to local block devices with ``rbd map`` and release them with
``rbd unmap``.
"""

from pyrsistent import PClass

from zope.interface import Interface, implementer

from twisted.python.filepath import FilePath

from characteristic import attributes

from . import DEFAULT_FILESYSTEM_TYPE
from .common import ICommandRunner, CommandFailed, interface_field
from .blockdevice_manager import Device, IFilesystemManager
from ._logging import MAP_IMAGE, UNMAP_DEVICE


@attributes(["image_name", "pool", "source_message"])
class MappingError(Exception):
    """
    Raised from errors while mapping an image.

    :ivar str image_name: The image that was being mapped.
    :ivar str pool: The pool holding the image.
    :ivar str source_message: The error message describing the error.
    """

    def __str__(self):
        return self.__repr__()


@attributes(["blockdevice", "source_message"])
class UnmapError(Exception):
    """
    Raised from errors while unmapping a device.

    :ivar FilePath blockdevice: The device that was being unmapped.
    :ivar str source_message: The error message describing the error.
    """

    def __str__(self):
        return self.__repr__()


class IDeviceMapper(Interface):
    """
    Attach RBD images to this node as block devices and detach them.
    """

    def map(image, filesystem=None):
        """
        Map ``image`` to a new local block device.

        :param Image image: An open image.
        :param filesystem: The filesystem type the device is expected to
            carry, or ``None`` for the default.

        :raises MappingError: If the image cannot be mapped.
        :returns: An unmounted ``Device``.
        """

    def unmap(device):
        """
        Unmount ``device`` if it is mounted, then unmap it.  Nothing is
        unmapped if unmounting fails.

        :param Device device: The device to release.

        :raises UnmountError: If unmounting fails.
        :raises UnmapError: If unmapping fails.
        :returns: The ``Device`` recorded as unmounted.  It no longer refers
            to a mapping and should be discarded.
        """


@implementer(IDeviceMapper)
class DeviceMapper(PClass):
    """
    ``IDeviceMapper`` using the ``rbd`` utility.

    :ivar ICommandRunner runner: Runs ``rbd``.
    :ivar IFilesystemManager filesystem_manager: Unmounts devices before they
        are unmapped.
    """
    runner = interface_field((ICommandRunner,), mandatory=True)
    filesystem_manager = interface_field(
        (IFilesystemManager,), mandatory=True,
    )

    def map(self, image, filesystem=None):
        if filesystem is None:
            filesystem = DEFAULT_FILESYSTEM_TYPE
        args = ["map"]
        if image.username:
            args.extend(["--id", image.username])
        args.extend(["--pool", image.pool, image.name])

        with MAP_IMAGE(pool=image.pool, image_name=image.name) as action:
            try:
                output = self.runner.run("rbd", args)
            except CommandFailed as e:
                raise MappingError(
                    image_name=image.name, pool=image.pool,
                    source_message=e.stderr,
                )
            if not output.startswith("/dev/"):
                raise MappingError(
                    image_name=image.name, pool=image.pool,
                    source_message="Unexpected rbd map output: {!r}".format(
                        output),
                )
            device_path = FilePath(output)
            action.add_success_fields(device_path=device_path)
        return Device(path=device_path, filesystem=filesystem)

    def unmap(self, device):
        if device.mounted:
            self.filesystem_manager.unmount(device)
            device = device.unmounted()
        with UNMAP_DEVICE(device_path=device.path):
            try:
                self.runner.run("rbd", ["unmap", device.path.path])
            except CommandFailed as e:
                raise UnmapError(
                    blockdevice=device.path, source_message=e.stderr,
                )
        return device
