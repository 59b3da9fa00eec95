# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``cephblock.store``.
"""

from eliot.testing import capture_logging, assertHasAction, assertHasMessage

from zope.interface.verify import verifyObject

from twisted.python.filepath import FilePath

from .. import DEFAULT_POOL_NAME
from ..store import (
    IRemoteStore, ClusterCredentials, ClusterConnectionError, NamespaceError,
    ImageError, ImageNotFound, ImageSizeMismatch, StoreError,
    DEFAULT_CEPH_CONFIG, connect, get_image_by_name, get_or_create_image,
    list_images, destroy_image, megabytes,
)
from .._memory import MemoryRemoteStore, make_memory_store
from .._logging import CONNECT, CREATE_IMAGE, IMAGE_SIZE_MISMATCH
from ..testtools import TestCase, random_name


def make_iremotestore_tests(connection_factory):
    """
    Create a TestCase for ``IRemoteStore`` implementations, exercised through
    the functions of ``cephblock.store``.

    :param connection_factory: A callable taking the test case and returning
        an open ``Connection`` to an existing pool.  The callable is
        responsible for shutting it down when the test finishes.
    """
    class IRemoteStoreTests(TestCase):
        """
        Tests for ``IRemoteStore`` implementations.
        """
        def setUp(self):
            super().setUp()
            self.connection = connection_factory(self)
            self.name = random_name(self)

        def _destroy_if_exists(self):
            if self.name in list_images(self.connection):
                destroy_image(self.connection, self.name)

        def _created(self, size=20):
            image = get_or_create_image(self.connection, self.name, size)
            # Cleanups run in reverse; the image is closed before removal.
            self.addCleanup(self._destroy_if_exists)
            self.addCleanup(image.close)
            return image

        def test_interface(self):
            """
            The store provides ``IRemoteStore``.
            """
            self.assertTrue(verifyObject(IRemoteStore, self.connection.store))

        def test_create(self):
            """
            ``get_or_create_image`` creates a missing image with the requested
            size in megabytes.
            """
            image = self._created(size=20)
            self.assertEqual(
                (self.name, 20 * 1024 * 1024, True),
                (image.name, image.size, image.created),
            )

        def test_get_or_create_idempotent(self):
            """
            A second ``get_or_create_image`` for the same name opens the
            existing image.
            """
            self._created(size=20)
            again = get_or_create_image(self.connection, self.name, 20)
            self.addCleanup(again.close)
            self.assertEqual(
                (False, 20 * 1024 * 1024), (again.created, again.size))

        def test_get_image_by_name(self):
            """
            ``get_image_by_name`` opens an existing image.
            """
            self._created(size=4)
            image = get_image_by_name(self.connection, self.name)
            self.addCleanup(image.close)
            self.assertEqual(
                (self.name, 4 * 1024 * 1024), (image.name, image.size))

        def test_missing_image(self):
            """
            ``get_image_by_name`` raises ``ImageNotFound`` for an image which
            does not exist.
            """
            e = self.assertRaises(
                ImageNotFound, get_image_by_name, self.connection, self.name,
            )
            self.assertEqual(self.name, e.name)

        def test_list_images(self):
            """
            ``list_images`` includes created images.
            """
            self._created()
            self.assertIn(self.name, list_images(self.connection))

        def test_destroy_image(self):
            """
            ``destroy_image`` removes an image.
            """
            self._created().close()
            destroy_image(self.connection, self.name)
            self.assertNotIn(self.name, list_images(self.connection))

        def test_destroy_missing_image(self):
            """
            ``destroy_image`` raises ``ImageNotFound`` for an image which does
            not exist.
            """
            self.assertRaises(
                ImageNotFound, destroy_image, self.connection, self.name,
            )

    return IRemoteStoreTests


class MegabytesTests(TestCase):
    """
    Tests for ``megabytes``.
    """
    def test_megabytes(self):
        """
        A megabyte is 1024 * 1024 bytes.
        """
        self.assertEqual(20971520, megabytes(20))


class ClusterCredentialsTests(TestCase):
    """
    Tests for ``ClusterCredentials.from_arguments``.
    """
    def test_cluster_and_user(self):
        """
        A cluster name is used together with a user.
        """
        self.assertEqual(
            ClusterCredentials(cluster="ceph", username="lxd"),
            ClusterCredentials.from_arguments(
                username="lxd", cluster="ceph"),
        )

    def test_user_only(self):
        """
        A user without a cluster name authenticates against the default
        cluster.
        """
        self.assertEqual(
            ClusterCredentials(username="lxd"),
            ClusterCredentials.from_arguments(username="lxd", cluster=""),
        )

    def test_cluster_without_user(self):
        """
        A cluster name without a user is ignored.
        """
        self.assertEqual(
            ClusterCredentials(),
            ClusterCredentials.from_arguments(username=None, cluster="ceph"),
        )


class ConnectTests(TestCase):
    """
    Tests for ``connect`` and ``Connection``.
    """
    def test_defaults(self):
        """
        Without arguments the default pool, identity and configuration file
        are used.
        """
        store = make_memory_store()
        connection = connect(store)
        self.addCleanup(connection.shutdown)
        [session] = store.sessions
        self.assertEqual(
            (DEFAULT_POOL_NAME, None, None, DEFAULT_CEPH_CONFIG,
             ClusterCredentials(), DEFAULT_CEPH_CONFIG),
            (connection.pool, connection.username, connection.cluster,
             connection.conffile, session.credentials, session.conffile),
        )

    def test_empty_pool_is_default(self):
        """
        An empty pool name selects the default pool.
        """
        connection = connect(make_memory_store(), pool="")
        self.addCleanup(connection.shutdown)
        self.assertEqual(DEFAULT_POOL_NAME, connection.pool)

    def test_explicit(self):
        """
        An explicit user, cluster, pool and configuration file are used.
        """
        store = make_memory_store(pools=["lxd"])
        conffile = FilePath("/srv/ceph/ceph.conf")
        connection = connect(
            store, username="lxd", pool="lxd", cluster="ceph",
            conffile=conffile,
        )
        self.addCleanup(connection.shutdown)
        self.assertEqual(
            ("lxd", "lxd", "ceph", conffile,
             ClusterCredentials(cluster="ceph", username="lxd")),
            (connection.pool, connection.username, connection.cluster,
             connection.conffile, store.sessions[0].credentials),
        )

    @capture_logging(
        assertHasAction, CONNECT, True,
        {"pool": "rbd", "username": None, "cluster": None},
    )
    def test_logged(self, logger):
        """
        Connecting is logged as an action.
        """
        connect(make_memory_store()).shutdown()

    def test_connection_failure(self):
        """
        A failure to establish the session is reported as
        ``ClusterConnectionError`` naming the failed step.
        """
        for step in ("create", "configure", "connect"):
            store = MemoryRemoteStore(pools={"rbd": {}}, failing_step=step)
            e = self.assertRaises(ClusterConnectionError, connect, store)
            self.assertEqual((step, []), (e.step, store.sessions))

    def test_missing_pool(self):
        """
        A pool which cannot be opened is reported as ``NamespaceError`` and
        the session is released.
        """
        store = make_memory_store()
        e = self.assertRaises(NamespaceError, connect, store, pool="lxd")
        self.assertEqual(("lxd", []), (e.pool, store.sessions))

    def test_shutdown(self):
        """
        ``shutdown`` releases the pool context and the session.
        """
        store = make_memory_store()
        connection = connect(store)
        connection.shutdown()
        self.assertEqual(
            (True, [], []),
            (connection.closed, store.pool_contexts, store.sessions),
        )

    def test_close_pool_failure(self):
        """
        If the pool context cannot be released ``shutdown`` raises the
        store's error after still releasing the session.
        """
        store = MemoryRemoteStore(
            pools={"rbd": {}}, failing_releases={"close_pool"})
        connection = connect(store)
        e = self.assertRaises(NamespaceError, connection.shutdown)
        self.assertEqual(
            ("rbd", True, []), (e.pool, connection.closed, store.sessions))

    def test_shutdown_twice(self):
        """
        A second ``shutdown`` does nothing.
        """
        connection = connect(make_memory_store())
        connection.shutdown()
        connection.shutdown()
        self.assertTrue(connection.closed)

    def test_context_manager(self):
        """
        A ``Connection`` is shut down when the ``with`` block it manages
        exits.
        """
        store = make_memory_store()
        with connect(store) as connection:
            self.assertFalse(connection.closed)
        self.assertEqual((True, []), (connection.closed, store.sessions))

    def test_pool_context_after_shutdown(self):
        """
        The pool context of a shut down connection is not available.
        """
        connection = connect(make_memory_store())
        connection.shutdown()
        self.assertRaises(StoreError, lambda: connection.pool_context)


class ImageTests(TestCase):
    """
    Tests for ``Image`` and the functions which open images.
    """
    def setUp(self):
        super().setUp()
        self.store = MemoryRemoteStore(
            pools={"lxd": {"foobar": megabytes(10)}},
            unstattable=["broken"],
        )
        self.connection = connect(self.store, pool="lxd")
        self.addCleanup(self.connection.shutdown)

    def test_existing_image_size_kept(self):
        """
        ``get_or_create_image`` returns an existing image whatever its size.
        """
        image = get_or_create_image(self.connection, "foobar", 20)
        self.addCleanup(image.close)
        self.assertEqual(
            (megabytes(10), False, []),
            (image.size, image.created, self.store.created),
        )

    @capture_logging(
        assertHasMessage, IMAGE_SIZE_MISMATCH,
        {"image_name": "foobar", "image_size": 10485760,
         "requested_size": 20971520},
    )
    def test_size_mismatch_logged(self, logger):
        """
        Reusing an image of a different size is logged.
        """
        get_or_create_image(self.connection, "foobar", 20).close()

    def test_strict_size_check(self):
        """
        With ``strict_size_check`` an existing image of a different size is
        refused with ``ImageSizeMismatch`` and its handle is closed.
        """
        e = self.assertRaises(
            ImageSizeMismatch,
            get_or_create_image, self.connection, "foobar", 20,
            strict_size_check=True,
        )
        self.assertEqual(
            (megabytes(20), megabytes(10), []),
            (e.expected, e.actual, self.store.open_handles),
        )

    def test_strict_size_check_matching(self):
        """
        With ``strict_size_check`` an existing image of the requested size is
        returned.
        """
        image = get_or_create_image(
            self.connection, "foobar", 10, strict_size_check=True,
        )
        self.addCleanup(image.close)
        self.assertEqual(megabytes(10), image.size)

    @capture_logging(
        assertHasAction, CREATE_IMAGE, True,
        {"pool": "lxd", "image_name": "new", "image_size": 1048576},
    )
    def test_create_logged(self, logger):
        """
        Creating an image is logged as an action.
        """
        get_or_create_image(self.connection, "new", 1).close()

    def test_stat_failure_closes_image(self):
        """
        If the image cannot be stat-ed the handle is closed and
        ``ImageError`` raised.
        """
        self.store.pools["lxd"]["broken"] = megabytes(1)
        self.assertRaises(
            ImageError, get_image_by_name, self.connection, "broken",
        )
        self.assertEqual([], self.store.open_handles)

    def test_attributes(self):
        """
        An ``Image`` exposes the pool and user of its connection.
        """
        image = get_image_by_name(self.connection, "foobar")
        self.addCleanup(image.close)
        self.assertEqual(
            ("lxd", None, self.connection),
            (image.pool, image.username, image.connection),
        )

    def test_close(self):
        """
        ``Image.close`` releases the handle and may be called again.
        """
        image = get_image_by_name(self.connection, "foobar")
        image.close()
        image.close()
        self.assertEqual([], self.store.open_handles)
        self.assertRaises(ImageError, lambda: image.handle)

    def test_handle_after_shutdown(self):
        """
        The handle of an image is not usable once its connection is shut
        down.
        """
        image = get_image_by_name(self.connection, "foobar")
        self.connection.shutdown()
        self.assertRaises(ImageError, lambda: image.handle)
