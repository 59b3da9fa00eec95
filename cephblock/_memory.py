# -*- test-case-name: cephblock.test.test_memory -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
An in-memory implementation of ``IRemoteStore``.
"""

from pyrsistent import PClass, field

from zope.interface import implementer

from .store import (
    IRemoteStore, ClusterConnectionError, NamespaceError, ImageError,
    ImageNotFound,
)


class _MemorySession(PClass):
    credentials = field(mandatory=True)
    conffile = field(mandatory=True)


class _MemoryPoolContext(PClass):
    session = field(mandatory=True)
    pool = field(type=str, mandatory=True)


class _MemoryImageRef(PClass):
    pool = field(type=str, mandatory=True)
    name = field(type=str, mandatory=True)


@implementer(IRemoteStore)
class MemoryRemoteStore(object):
    """
    An isolated, in-memory-only implementation of ``IRemoteStore``.

    :ivar dict pools: Maps pool names to ``dict``s mapping image names to
        image sizes in bytes.
    :ivar list sessions: The sessions which are currently connected.
    :ivar list pool_contexts: The pool contexts which are currently open.
    :ivar list open_handles: The image handles which are currently open.
    :ivar list created: The names of the images created through this store,
        in creation order.
    :ivar failing_step: The name of the ``connect`` step which fails, one of
        ``"create"``, ``"configure"`` or ``"connect"``, or ``None``.
    :ivar set unstattable: Names of images whose stat fails.
    :ivar set failing_releases: Which of ``"disconnect"``, ``"close_pool"``
        and ``"close_image"`` fail.  The resource is released anyway.
    """
    def __init__(self, pools=None, failing_step=None, unstattable=(),
                 failing_releases=()):
        if pools is None:
            pools = {}
        self.pools = pools
        self.failing_step = failing_step
        self.unstattable = set(unstattable)
        self.failing_releases = set(failing_releases)
        self.sessions = []
        self.pool_contexts = []
        self.open_handles = []
        self.created = []

    def connect(self, credentials, conffile):
        for step in ("create", "configure", "connect"):
            if step == self.failing_step:
                raise ClusterConnectionError(
                    step, "Simulated failure to {}".format(step))
        session = _MemorySession(credentials=credentials, conffile=conffile)
        self.sessions.append(session)
        return session

    def disconnect(self, session):
        self.sessions.remove(session)
        if "disconnect" in self.failing_releases:
            raise ClusterConnectionError(
                "shutdown", "Simulated failure to shut down")

    def open_pool(self, session, pool):
        if pool not in self.pools:
            raise NamespaceError(pool, "No such pool")
        pool_context = _MemoryPoolContext(session=session, pool=pool)
        self.pool_contexts.append(pool_context)
        return pool_context

    def close_pool(self, pool_context):
        self.pool_contexts.remove(pool_context)
        if "close_pool" in self.failing_releases:
            raise NamespaceError(
                pool_context.pool, "Simulated failure to close")

    def lookup_image(self, pool_context, name):
        if name not in self.pools[pool_context.pool]:
            raise ImageNotFound(name)
        return _MemoryImageRef(pool=pool_context.pool, name=name)

    def create_image(self, pool_context, name, size):
        images = self.pools[pool_context.pool]
        if name in images:
            raise ImageError(name, "Image already exists")
        images[name] = size
        self.created.append(name)
        return _MemoryImageRef(pool=pool_context.pool, name=name)

    def open_image(self, image_ref):
        if image_ref.name not in self.pools[image_ref.pool]:
            raise ImageNotFound(image_ref.name)
        # A fresh object per open so that handles can be told apart.
        handle = [image_ref]
        self.open_handles.append(handle)
        return handle

    def stat_image(self, handle):
        image_ref = handle[0]
        if image_ref.name in self.unstattable:
            raise ImageError(image_ref.name, "Simulated stat failure")
        return {
            "size": self.pools[image_ref.pool][image_ref.name],
            "name": image_ref.name,
        }

    def close_image(self, handle):
        self.open_handles.remove(handle)
        if "close_image" in self.failing_releases:
            raise ImageError(handle[0].name, "Simulated failure to close")

    def list_images(self, pool_context):
        return list(self.pools[pool_context.pool])

    def remove_image(self, pool_context, name):
        images = self.pools[pool_context.pool]
        if name not in images:
            raise ImageNotFound(name)
        del images[name]


def make_memory_store(pools=("rbd",)):
    """
    Create a new, isolated, in-memory-only provider of ``IRemoteStore``.

    :param pools: The names of the (empty) pools the store starts with.
    """
    return MemoryRemoteStore(pools={pool: {} for pool in pools})
