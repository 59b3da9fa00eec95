# -*- test-case-name: cephblock.test.test_blockdevice_manager -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Interactions between the OS pertaining to block devices.
This controls actions such as formatting and mounting a mapped RBD device.
"""

import psutil

from zope.interface import Interface, implementer

from pyrsistent import PClass, field

from twisted.python.filepath import FilePath

from characteristic import attributes

from . import DEFAULT_FILESYSTEM_TYPE
from .common import ICommandRunner, CommandFailed, interface_field
from ._logging import (
    DETECT_FILESYSTEM, CREATE_FILESYSTEM, MOUNT_DEVICE, UNMOUNT_DEVICE,
)


@attributes(["blockdevice", "filesystem", "source_message"])
class FormatError(Exception):
    """
    Raised from errors while making a filesystem on a blockdevice.

    :ivar FilePath blockdevice: The path to the blockdevice that was
        being formatted when the error occurred.
    :ivar str filesystem: The filesystem type that was requested.
    :ivar str source_message: The error message describing the error.
    """

    def __str__(self):
        return self.__repr__()


@attributes(["blockdevice", "expected", "detected"])
class FilesystemMismatch(Exception):
    """
    Raised instead of reformatting a blockdevice which already carries a
    filesystem other than the expected one.

    :ivar FilePath blockdevice: The path to the blockdevice.
    :ivar str expected: The filesystem type the device should carry.
    :ivar str detected: The filesystem type the device does carry.
    """

    def __str__(self):
        return self.__repr__()


@attributes(["blockdevice", "mountpoint", "source_message"])
class MountError(Exception):
    """
    Raised from errors while mounting a blockdevice.

    :ivar FilePath blockdevice: The path to the blockdevice that was
        being mounted when the error occurred.
    :ivar FilePath mountpoint: The path that the blockdevice was going to be
        mounted at when the error occurred.
    :ivar str source_message: The error message describing the error.
    """

    def __str__(self):
        return self.__repr__()


@attributes(["blockdevice", "mountpoint"])
class AlreadyMountedError(Exception):
    """
    Raised when asked to mount a blockdevice at the mount point it is already
    mounted at.

    :ivar FilePath blockdevice: The path to the blockdevice.
    :ivar FilePath mountpoint: The path it is mounted at.
    """

    def __str__(self):
        return self.__repr__()


@attributes(["blockdevice", "source_message"])
class UnmountError(Exception):
    """
    Raised from errors while unmounting a blockdevice.

    :ivar FilePath blockdevice: The path to the blockdevice that was
        being unmounted when the error occurred.
    :ivar str source_message: The error message describing the error.
    """

    def __str__(self):
        return self.__repr__()


class Device(PClass):
    """
    A local block device an RBD image is mapped to.

    :ivar FilePath path: The device file assigned when the image was mapped.
    :ivar str filesystem: The filesystem type the device is expected to
        carry.
    :ivar bool mounted: Whether the device is mounted.
    :ivar mount_point: The ``FilePath`` the device is mounted at, or ``None``.
    """
    path = field(type=FilePath, mandatory=True)
    filesystem = field(
        type=str, initial=DEFAULT_FILESYSTEM_TYPE, mandatory=True,
    )
    mounted = field(type=bool, initial=False, mandatory=True)
    mount_point = field(
        type=(FilePath, type(None)), initial=None, mandatory=True,
    )

    def __invariant__(self):
        if self.mounted != (self.mount_point is not None):
            return (False, "A device has a mount point iff it is mounted")
        return (True, "")

    def mounted_at(self, mount_point):
        """
        :return: A copy of this device recorded as mounted at
            ``mount_point``.
        """
        return self.set(mounted=True, mount_point=mount_point)

    def unmounted(self):
        """
        :return: A copy of this device recorded as not mounted.
        """
        return self.set(mounted=False, mount_point=None)


class MountInfo(PClass):
    """
    Information about an existing mount on the system.

    :ivar FilePath blockdevice: The device path to the mounted blockdevice.
    :ivar FilePath mountpoint: The file path to the mount point.
    """
    blockdevice = field(type=FilePath, mandatory=True)
    mountpoint = field(type=FilePath, mandatory=True)


def host_mounts():
    """
    :return: An iterable of ``MountInfo``s for the disk device mounts of this
        host.
    """
    return (MountInfo(blockdevice=FilePath(mount.device),
                      mountpoint=FilePath(mount.mountpoint))
            for mount in psutil.disk_partitions())


class IFilesystemManager(Interface):
    """
    An interface for inspecting, formatting and mounting local block devices.
    """

    def detect_filesystem_type(device):
        """
        Probe the filesystem on ``device``.

        :param Device device: The device to inspect.
        :returns: The ``str`` filesystem type or ``""`` if no filesystem
            was recognised or blkid failed.
        """

    def is_formatted(device):
        """
        :param Device device: The device to inspect.
        :returns: ``True`` if the device carries exactly the filesystem type
            it is expected to carry.
        """

    def format(device):
        """
        Make a filesystem of the device's expected type on it.  This destroys
        any existing data.

        :param Device device: The device to format.

        :raises: ``FormatError`` if there is no ``mkfs`` for the filesystem
            type or it fails.
        """

    def ensure_filesystem(device):
        """
        Format ``device`` unless it already carries the expected filesystem.

        :param Device device: The device to check.

        :raises: ``FilesystemMismatch`` if strict filesystem checking is
            enabled and the device carries some other filesystem.
        :raises: ``FormatError`` if formatting fails.
        :returns: ``True`` if the device was formatted.
        """

    def mount(device, mount_point, format_if_needed=True):
        """
        Mount ``device`` at ``mount_point``, formatting it first if needed.

        :param Device device: The device to mount.
        :param FilePath mount_point: The directory to mount it at.
        :param bool format_if_needed: Probe and format the device first.
            Callers which have just done so themselves pass ``False``.

        :raises: ``AlreadyMountedError`` if ``device`` is already recorded as
            mounted at ``mount_point``.
        :raises: ``MountError`` on any failure from the system.
        :returns: The ``Device`` recorded as mounted at ``mount_point``.
        """

    def unmount(device):
        """
        Unmount ``device``.  The caller is responsible for recording the
        device as no longer mounted.

        :param Device device: The device to unmount.

        :raises: ``UnmountError`` on any failure from the system.
        """

    def get_mounts():
        """
        Returns all known disk device mounts on the system.

        :returns: An iterable of ``MountInfo``s of all known mounts.
        """


@implementer(IFilesystemManager)
class FilesystemManager(PClass):
    """
    Real implementation of ``IFilesystemManager``.

    :ivar ICommandRunner runner: Runs ``blkid``, ``mkfs.*``, ``mount`` and
        ``umount``.
    :ivar bool strict_fs_check: Refuse to reformat a device which carries a
        filesystem other than the expected one.
    :ivar mount_table: A no-argument callable returning the host's mounts as
        an iterable of ``MountInfo``.
    """
    runner = interface_field((ICommandRunner,), mandatory=True)
    strict_fs_check = field(type=bool, initial=False, mandatory=True)
    mount_table = field(initial=(lambda: host_mounts), mandatory=True)

    def detect_filesystem_type(self, device):
        with DETECT_FILESYSTEM(device_path=device.path) as action:
            try:
                detected = self.runner.run(
                    "blkid",
                    ["-o", "value", "-s", "TYPE", device.path.path],
                )
            except CommandFailed:
                # blkid exits with status 2 when it recognises nothing.
                detected = ""
            action.add_success_fields(detected_filesystem_type=detected)
        return detected

    def is_formatted(self, device):
        return self.detect_filesystem_type(device) == device.filesystem

    def format(self, device):
        with CREATE_FILESYSTEM(device_path=device.path,
                               filesystem_type=device.filesystem):
            mkfs_name = "mkfs." + device.filesystem
            mkfs = self.runner.which(mkfs_name)
            if mkfs is None:
                raise FormatError(
                    blockdevice=device.path,
                    filesystem=device.filesystem,
                    source_message="{} not found".format(mkfs_name),
                )
            try:
                self.runner.run(mkfs, [device.path.path])
            except CommandFailed as e:
                raise FormatError(
                    blockdevice=device.path,
                    filesystem=device.filesystem,
                    source_message=e.stderr,
                )

    def ensure_filesystem(self, device):
        detected = self.detect_filesystem_type(device)
        if detected == device.filesystem:
            return False
        if detected and self.strict_fs_check:
            raise FilesystemMismatch(
                blockdevice=device.path,
                expected=device.filesystem,
                detected=detected,
            )
        self.format(device)
        return True

    def mount(self, device, mount_point, format_if_needed=True):
        if device.mounted and device.mount_point == mount_point:
            raise AlreadyMountedError(
                blockdevice=device.path, mountpoint=mount_point,
            )
        if format_if_needed:
            self.ensure_filesystem(device)
        with MOUNT_DEVICE(device_path=device.path,
                          filesystem_type=device.filesystem,
                          mountpoint=mount_point):
            try:
                self.runner.run("mount", [
                    "-t", device.filesystem,
                    device.path.path, mount_point.path,
                ])
            except CommandFailed as e:
                raise MountError(
                    blockdevice=device.path, mountpoint=mount_point,
                    source_message=e.stderr,
                )
        return device.mounted_at(mount_point)

    def unmount(self, device):
        with UNMOUNT_DEVICE(device_path=device.path):
            try:
                self.runner.run("umount", [device.path.path])
            except CommandFailed as e:
                raise UnmountError(
                    blockdevice=device.path, source_message=e.stderr,
                )

    def get_mounts(self):
        return list(self.mount_table())
