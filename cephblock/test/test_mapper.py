# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``cephblock.mapper``.
"""

from eliot.testing import capture_logging, assertHasAction

from zope.interface.verify import verifyObject

from twisted.python.filepath import FilePath

from ..store import connect, get_or_create_image
from .._memory import make_memory_store
from ..mapper import DeviceMapper, IDeviceMapper, MappingError, UnmapError
from ..blockdevice_manager import Device, FilesystemManager, UnmountError
from .._logging import MAP_IMAGE
from ..testtools import TestCase, FakeRBDHost, FakeCommandRunner


class DeviceMapperTests(TestCase):
    """
    Tests for ``DeviceMapper``.
    """
    def setUp(self):
        super().setUp()
        self.host = FakeRBDHost()
        self.filesystem_manager = FilesystemManager(
            runner=self.host, mount_table=self.host.mount_table,
        )
        self.mapper = DeviceMapper(
            runner=self.host, filesystem_manager=self.filesystem_manager,
        )

    def image_for_test(self, username=None):
        """
        :return: An open ``Image`` called ``foobar`` in the ``lxd`` pool.
        """
        connection = connect(
            make_memory_store(pools=["lxd"]), username=username,
            pool="lxd",
        )
        self.addCleanup(connection.shutdown)
        image = get_or_create_image(connection, "foobar", 20)
        self.addCleanup(image.close)
        return image

    def test_interface(self):
        """
        ``DeviceMapper`` provides ``IDeviceMapper``.
        """
        self.assertTrue(verifyObject(IDeviceMapper, self.mapper))

    def test_map(self):
        """
        ``map`` runs ``rbd map`` with the user and pool and returns an
        unmounted ``Device`` for the reported path.
        """
        device = self.mapper.map(self.image_for_test(username="lxd"), "ext4")
        self.assertEqual(
            (Device(path=FilePath("/dev/rbd0"), filesystem="ext4"),
             [["rbd", "map", "--id", "lxd", "--pool", "lxd",
               "foobar"]]),
            (device, self.host.calls),
        )

    def test_map_anonymous(self):
        """
        ``--id`` is left out for a connection without a user, and the
        default filesystem is expected.
        """
        device = self.mapper.map(self.image_for_test())
        self.assertEqual(
            ([["rbd", "map", "--pool", "lxd", "foobar"]], "xfs"),
            (self.host.calls, device.filesystem),
        )

    @capture_logging(
        assertHasAction, MAP_IMAGE, True,
        {"pool": "lxd", "image_name": "foobar"},
        {"device_path": FilePath("/dev/rbd0")},
    )
    def test_map_logged(self, logger):
        """
        Mapping is logged as an action with the device path.
        """
        self.mapper.map(self.image_for_test())

    def test_map_failure(self):
        """
        ``map`` raises ``MappingError`` if ``rbd map`` fails.
        """
        self.host.fail("rbd", "rbd: add failed: (2) No such file")
        e = self.assertRaises(
            MappingError, self.mapper.map, self.image_for_test())
        self.assertEqual(
            ("foobar", "lxd", "rbd: add failed: (2) No such file"),
            (e.image_name, e.pool, e.source_message),
        )

    def test_map_empty_output(self):
        """
        ``map`` raises ``MappingError`` if ``rbd map`` reports no device.
        """
        runner = FakeCommandRunner()
        mapper = DeviceMapper(
            runner=runner, filesystem_manager=self.filesystem_manager,
        )
        self.assertRaises(MappingError, mapper.map, self.image_for_test())

    def test_unmap(self):
        """
        ``unmap`` runs ``rbd unmap`` on an unmounted device.
        """
        device = self.mapper.map(self.image_for_test())
        result = self.mapper.unmap(device)
        self.assertEqual(
            (device, [["rbd", "unmap", "/dev/rbd0"]], []),
            (result, self.host.calls[1:], self.host.mappings),
        )

    def test_unmap_unmounts_first(self):
        """
        ``unmap`` unmounts a mounted device before unmapping it.
        """
        device = self.mapper.map(self.image_for_test(), "ext4")
        mounted = self.filesystem_manager.mount(
            device, FilePath("/mnt/foo"))
        result = self.mapper.unmap(mounted)
        self.assertEqual(
            (device, ["umount", "/dev/rbd0"], ["rbd", "unmap", "/dev/rbd0"],
             [], {}),
            (result, self.host.calls[-2], self.host.calls[-1],
             self.host.mappings, self.host.mounts),
        )

    def test_unmap_unmount_failure(self):
        """
        If unmounting fails the error propagates and nothing is unmapped.
        """
        device = self.mapper.map(self.image_for_test(), "ext4")
        mounted = self.filesystem_manager.mount(
            device, FilePath("/mnt/foo"))
        self.host.fail("umount", "umount: /mnt/foo: target is busy")
        self.assertRaises(UnmountError, self.mapper.unmap, mounted)
        self.assertEqual(
            ([], 1),
            (self.host.commands("rbd")[1:], len(self.host.mappings)),
        )

    def test_unmap_failure(self):
        """
        ``unmap`` raises ``UnmapError`` if ``rbd unmap`` fails.
        """
        device = Device(path=FilePath("/dev/rbd7"))
        e = self.assertRaises(UnmapError, self.mapper.unmap, device)
        self.assertEqual(FilePath("/dev/rbd7"), e.blockdevice)
