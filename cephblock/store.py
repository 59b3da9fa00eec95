# -*- test-case-name: cephblock.test.test_store -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Sessions against a Ceph cluster and the RBD images stored in one of its pools.

A ``Connection`` owns exactly one open pool context and must be shut down
explicitly.  ``Image`` objects refer back to the ``Connection`` they were
opened through and are only usable while it is open.
"""

from bitmath import MiB

from pyrsistent import PClass, field

from zope.interface import Interface

from twisted.python.filepath import FilePath

from . import DEFAULT_POOL_NAME
from ._logging import (
    CONNECT, SHUTDOWN, OPEN_IMAGE, CREATE_IMAGE, DESTROY_IMAGE,
    IMAGE_SIZE_MISMATCH,
)


# The configuration file read when none is given explicitly.
DEFAULT_CEPH_CONFIG = FilePath("/etc/ceph/ceph.conf")


class StoreError(Exception):
    """
    A base class for failures reported by an ``IRemoteStore``.
    """


class ClusterConnectionError(StoreError):
    """
    A session with the cluster could not be established or released.

    :ivar str step: The step which failed; ``"create"``, ``"configure"``
        or ``"connect"`` while connecting, ``"shutdown"`` while
        disconnecting.
    :ivar reason: A description of the underlying failure.
    """
    def __init__(self, step, reason):
        StoreError.__init__(self, step, reason)
        self.step = step
        self.reason = reason


class NamespaceError(StoreError):
    """
    The requested pool could not be opened.

    :ivar str pool: The name of the pool.
    :ivar reason: A description of the underlying failure.
    """
    def __init__(self, pool, reason):
        StoreError.__init__(self, pool, reason)
        self.pool = pool
        self.reason = reason


class ImageError(StoreError):
    """
    An operation on an RBD image failed.

    :ivar str name: The name of the image.
    :ivar reason: A description of the underlying failure, if known.
    """
    def __init__(self, name, reason=None):
        if reason is None:
            StoreError.__init__(self, name)
        else:
            StoreError.__init__(self, name, reason)
        self.name = name
        self.reason = reason


class ImageNotFound(ImageError):
    """
    There is no image with the requested name in the pool.
    """


class ImageSizeMismatch(ImageError):
    """
    An existing image was found but its size is not the requested size.

    :ivar int expected: The requested size in bytes.
    :ivar int actual: The size of the existing image in bytes.
    """
    def __init__(self, name, expected, actual):
        ImageError.__init__(
            self, name,
            "Image size is {} bytes, {} bytes were requested".format(
                actual, expected),
        )
        self.expected = expected
        self.actual = actual


class ClusterCredentials(PClass):
    """
    The identity a connection authenticates with.

    :ivar cluster: The cluster name or ``None`` for the host default.
    :ivar username: The Ceph user or ``None`` for the default identity.
    """
    cluster = field(type=(str, type(None)), initial=None, mandatory=True)
    username = field(type=(str, type(None)), initial=None, mandatory=True)

    @classmethod
    def from_arguments(cls, username=None, cluster=None):
        """
        Pick the most specific credentials supported by the arguments: a
        cluster and user, a user on the default cluster, or the default
        identity.  A cluster name without a user is ignored.

        :param username: The Ceph user, empty or ``None`` if not given.
        :param cluster: The cluster name, empty or ``None`` if not given.
        :return: A ``ClusterCredentials``.
        """
        if not username:
            return cls()
        if not cluster:
            return cls(username=username)
        return cls(cluster=cluster, username=username)


class IRemoteStore(Interface):
    """
    A driver for the cluster operations the provisioning lifecycle needs.

    Implementations translate their native failures into the exceptions
    defined in this module.
    """

    def connect(credentials, conffile):
        """
        Create a session, read ``conffile`` into it and connect it.

        :param ClusterCredentials credentials: The identity to use.
        :param FilePath conffile: The Ceph configuration file.

        :raises ClusterConnectionError: If any of the steps fails.
        :return: An opaque session object.
        """

    def disconnect(session):
        """
        Release a session created by ``connect``.

        :raises ClusterConnectionError: If the session cannot be released.
        """

    def open_pool(session, pool):
        """
        :param str pool: The name of the pool to open.

        :raises NamespaceError: If the pool cannot be opened.
        :return: An opaque pool context.
        """

    def close_pool(pool_context):
        """
        Release a pool context created by ``open_pool``.

        :raises NamespaceError: If the pool context cannot be released.
        """

    def lookup_image(pool_context, name):
        """
        :raises ImageNotFound: If no image called ``name`` exists.
        :return: An opaque reference to the image.
        """

    def create_image(pool_context, name, size):
        """
        Allocate a new image.

        :param int size: The size of the new image in bytes.

        :raises ImageError: If the image cannot be created.
        :return: An opaque reference to the image.
        """

    def open_image(image_ref):
        """
        :raises ImageError: If the image cannot be opened.
        :return: An opaque handle for the open image.
        """

    def stat_image(handle):
        """
        :raises ImageError: If the image cannot be stat-ed.
        :return: A ``dict`` describing the image; it has at least a
            ``"size"`` key giving the size in bytes.
        """

    def close_image(handle):
        """
        Release a handle created by ``open_image``.

        :raises ImageError: If the handle cannot be released.
        """

    def list_images(pool_context):
        """
        :return: A ``list`` of the ``str`` names of the images in the pool.
        """

    def remove_image(pool_context, name):
        """
        :raises ImageNotFound: If no image called ``name`` exists.
        :raises ImageError: If the image cannot be removed.
        """


class Connection(object):
    """
    An open session with a cluster, bound to one pool.

    :ivar IRemoteStore store: The driver the session was opened with.
    :ivar str pool: The name of the open pool.
    :ivar username: The Ceph user or ``None``.
    :ivar cluster: The cluster name or ``None``.
    :ivar FilePath conffile: The configuration file that was read.
    """
    def __init__(self, store, session, pool_context, pool, username=None,
                 cluster=None, conffile=DEFAULT_CEPH_CONFIG):
        self.store = store
        self.pool = pool
        self.username = username
        self.cluster = cluster
        self.conffile = conffile
        self._session = session
        self._pool_context = pool_context

    def __repr__(self):
        return "<Connection pool={!r} username={!r} cluster={!r}{}>".format(
            self.pool, self.username, self.cluster,
            " closed" if self.closed else "",
        )

    @property
    def closed(self):
        return self._session is None

    @property
    def pool_context(self):
        """
        :raises StoreError: If the connection has been shut down.
        :return: The store's context for the open pool.
        """
        if self.closed:
            raise StoreError(
                "Connection to pool {} has been shut down".format(self.pool))
        return self._pool_context

    def shutdown(self):
        """
        Release the pool context, then the session.  Calling this again
        does nothing.
        """
        if self.closed:
            return
        session, self._session = self._session, None
        pool_context, self._pool_context = self._pool_context, None
        with SHUTDOWN(pool=self.pool):
            try:
                self.store.close_pool(pool_context)
            finally:
                self.store.disconnect(session)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()


class Image(object):
    """
    An RBD image which has been opened and stat-ed.

    :ivar str name: The name of the image.
    :ivar int size: The size of the image in bytes, as reported when it was
        opened.
    :ivar bool created: ``True`` if the image was created by the call which
        returned it, ``False`` if it already existed.
    :ivar Connection connection: The connection the image was opened through.
        It is not owned by the image.
    """
    def __init__(self, connection, name, handle, size, created=False):
        self.connection = connection
        self.name = name
        self.size = size
        self.created = created
        self._handle = handle

    def __repr__(self):
        return "<Image {!r} pool={!r} size={!r}>".format(
            self.name, self.connection.pool, self.size)

    @property
    def pool(self):
        return self.connection.pool

    @property
    def username(self):
        return self.connection.username

    @property
    def handle(self):
        """
        :raises ImageError: If the image or its connection has been closed.
        :return: The store's handle for the open image.
        """
        if self._handle is None or self.connection.closed:
            raise ImageError(self.name, "Image is no longer open")
        return self._handle

    def close(self):
        """
        Release the image handle.  Calling this again does nothing.
        """
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        if not self.connection.closed:
            self.connection.store.close_image(handle)


def connect(store, username=None, pool=DEFAULT_POOL_NAME, cluster=None,
            conffile=None):
    """
    Connect to a cluster and open a pool.

    :param IRemoteStore store: The driver to use.
    :param username: The Ceph user or ``None``.
    :param str pool: The pool to open.
    :param cluster: The cluster name or ``None``.  Only used together with
        ``username``.
    :param FilePath conffile: The configuration file to read, or ``None``
        for ``DEFAULT_CEPH_CONFIG``.

    :raises ClusterConnectionError: If the session cannot be established.
    :raises NamespaceError: If the pool cannot be opened.
    :return: A ``Connection``; the caller must call its ``shutdown`` method.
    """
    if not pool:
        pool = DEFAULT_POOL_NAME
    if conffile is None:
        conffile = DEFAULT_CEPH_CONFIG
    credentials = ClusterCredentials.from_arguments(
        username=username, cluster=cluster,
    )
    with CONNECT(cluster=credentials.cluster, username=credentials.username,
                 pool=pool, conffile=conffile):
        session = store.connect(credentials, conffile)
        try:
            pool_context = store.open_pool(session, pool)
        except Exception:
            store.disconnect(session)
            raise
    return Connection(
        store=store, session=session, pool_context=pool_context, pool=pool,
        username=credentials.username, cluster=credentials.cluster,
        conffile=conffile,
    )


def _open_image(connection, name, image_ref, created):
    """
    Open and stat an image.  If the stat fails the image is closed again.

    :return: An ``Image``.
    """
    store = connection.store
    with OPEN_IMAGE(pool=connection.pool, image_name=name) as action:
        handle = store.open_image(image_ref)
        try:
            stat = store.stat_image(handle)
        except Exception:
            store.close_image(handle)
            raise
        action.add_success_fields(image_size=stat["size"])
    return Image(
        connection=connection, name=name, handle=handle, size=stat["size"],
        created=created,
    )


def get_image_by_name(connection, name):
    """
    Open an existing image.

    :param Connection connection: An open connection.
    :param str name: The name of the image.

    :raises ImageNotFound: If there is no such image.
    :return: An ``Image``.
    """
    image_ref = connection.store.lookup_image(connection.pool_context, name)
    return _open_image(connection, name, image_ref, created=False)


def megabytes(size):
    """
    :param int size: A size in megabytes.
    :return: The ``int`` number of bytes in ``size`` megabytes.
    """
    return int(MiB(size).to_Byte().value)


def get_or_create_image(connection, name, size, strict_size_check=False):
    """
    Open the named image, creating it first if it does not exist.

    An existing image is returned whatever its size, unless
    ``strict_size_check`` is set.

    :param Connection connection: An open connection.
    :param str name: The name of the image.
    :param int size: The size, in megabytes, to create the image with.
    :param bool strict_size_check: Refuse an existing image whose size is not
        ``size``.

    :raises ImageSizeMismatch: If ``strict_size_check`` is set and the
        existing image has a different size.
    :raises ImageError: If the image cannot be created or opened.
    :return: An ``Image``.
    """
    size_bytes = megabytes(size)
    try:
        image = get_image_by_name(connection, name)
    except ImageNotFound:
        pass
    else:
        if image.size != size_bytes:
            if strict_size_check:
                image.close()
                raise ImageSizeMismatch(name, size_bytes, image.size)
            IMAGE_SIZE_MISMATCH.log(
                image_name=name, image_size=image.size,
                requested_size=size_bytes,
            )
        return image

    with CREATE_IMAGE(pool=connection.pool, image_name=name,
                      image_size=size_bytes):
        image_ref = connection.store.create_image(
            connection.pool_context, name, size_bytes)
    return _open_image(connection, name, image_ref, created=True)


def list_images(connection):
    """
    :param Connection connection: An open connection.
    :return: A sorted ``list`` of the names of the images in the pool.
    """
    return sorted(connection.store.list_images(connection.pool_context))


def destroy_image(connection, name):
    """
    Remove an image and its data from the pool.

    :param Connection connection: An open connection.
    :param str name: The name of the image.

    :raises ImageNotFound: If there is no such image.
    """
    with DESTROY_IMAGE(pool=connection.pool, image_name=name):
        connection.store.remove_image(connection.pool_context, name)
