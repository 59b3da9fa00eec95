# -*- test-case-name: cephblock.test.test_discovery -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Discover which RBD images are already mapped on this node.

The answer is a point-in-time snapshot of ``rbd showmapped``; another process
may map or unmap images at any moment.
"""

from pyrsistent import PClass

from zope.interface import Interface, implementer

from twisted.python.filepath import FilePath

from characteristic import attributes

from .common import ICommandRunner, CommandFailed, interface_field
from ._logging import LIST_MAPPED_DEVICES, SKIPPED_SHOWMAPPED_LINE


@attributes(["source_message"])
class DiscoveryError(Exception):
    """
    Raised when ``rbd showmapped`` cannot be run or fails.

    :ivar str source_message: The error output of the utility.
    """

    def __str__(self):
        return self.__repr__()


def _showmapped_parse(output):
    """
    Parse the table printed by ``rbd showmapped``.

    Depending on the version of ``rbd`` the columns are
    ``id pool image snap device`` or
    ``id pool namespace image snap device``, with the namespace column left
    blank for the default namespace.  In every layout the pool is the second
    field and the image, snapshot and device are the last three.

    :param str output: The output of ``rbd showmapped``.
    :returns: A ``list`` of 3-tuple(pool, image name, FilePath(device_file))
        in the order they were listed.
    """
    mappings = []
    for line in output.splitlines():
        parts = line.split()
        if not parts:
            continue
        if (len(parts) < 5 or not parts[0].isdigit()
                or not parts[-1].startswith("/dev/rbd")):
            SKIPPED_SHOWMAPPED_LINE.log(line=line)
            continue
        mappings.append((parts[1], parts[-3], FilePath(parts[-1])))
    return mappings


class IDeviceDiscovery(Interface):
    """
    Inspect the RBD mappings of this node.
    """

    def list_mapped_devices():
        """
        :raises DiscoveryError: If the mappings cannot be listed.
        :returns: A ``dict`` mapping image names to the ``FilePath`` of the
            device each is mapped to.
        """

    def is_already_mapped(image_name, pool=None):
        """
        :param str image_name: The image to look for.
        :param pool: Only consider mappings of images in this pool, or
            ``None`` to consider every pool.

        :raises DiscoveryError: If the mappings cannot be listed.
        :returns: The ``FilePath`` of the device ``image_name`` is mapped to,
            or ``None`` if it is not mapped.
        """


@implementer(IDeviceDiscovery)
class DeviceDiscovery(PClass):
    """
    ``IDeviceDiscovery`` using ``rbd showmapped``.

    ``list_mapped_devices`` does not tell apart images with the same name in
    different pools; the last one listed wins.
    """
    runner = interface_field((ICommandRunner,), mandatory=True)

    def _mappings(self):
        """
        :return: The ``_showmapped_parse`` triples for this node.
        """
        with LIST_MAPPED_DEVICES() as action:
            try:
                output = self.runner.run("rbd", ["showmapped"])
            except CommandFailed as e:
                raise DiscoveryError(source_message=e.stderr)
            mappings = _showmapped_parse(output)
            action.add_success_fields(mapped_devices={
                image: device for (_, image, device) in mappings
            })
        return mappings

    def list_mapped_devices(self):
        return {image: device for (_, image, device) in self._mappings()}

    def is_already_mapped(self, image_name, pool=None):
        found = None
        for (mapped_pool, image, device) in self._mappings():
            if image == image_name and pool in (None, mapped_pool):
                found = device
        return found
