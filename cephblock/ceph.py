# -*- test-case-name: cephblock.functional.test_ceph -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
An ``IRemoteStore`` backed by the Ceph ``rados`` and ``rbd`` Python bindings.

The bindings are built with Ceph and installed from the distribution
(``python3-rados`` and ``python3-rbd``), not from the package index.

Ceph RBD creates "images" in a pool.  An image is addressed by name and has
a fixed size; it is mapped onto an OS block device with ``rbd map``, which is
the business of ``cephblock.mapper``, not of this module.
"""

import rados
import rbd

from pyrsistent import PClass, field

from zope.interface import implementer

from .store import (
    IRemoteStore, ClusterConnectionError, NamespaceError, ImageError,
    ImageNotFound,
)


class _RBDImageRef(PClass):
    pool_context = field(mandatory=True)
    name = field(type=str, mandatory=True)


@implementer(IRemoteStore)
class RadosRemoteStore(PClass):
    """
    Talk to a Ceph cluster through ``librados`` and ``librbd``.
    """
    def connect(self, credentials, conffile):
        kwargs = {}
        if credentials.username is not None:
            kwargs["rados_id"] = credentials.username
        if credentials.cluster is not None:
            kwargs["clustername"] = credentials.cluster
        try:
            cluster = rados.Rados(**kwargs)
        except rados.Error as e:
            raise ClusterConnectionError("create", str(e))
        try:
            try:
                cluster.conf_read_file(conffile.path)
            except rados.Error as e:
                raise ClusterConnectionError("configure", str(e))
            try:
                cluster.connect()
            except rados.Error as e:
                raise ClusterConnectionError("connect", str(e))
        except ClusterConnectionError:
            cluster.shutdown()
            raise
        return cluster

    def disconnect(self, session):
        try:
            session.shutdown()
        except rados.Error as e:
            raise ClusterConnectionError("shutdown", str(e))

    def open_pool(self, session, pool):
        try:
            return session.open_ioctx(pool)
        except rados.Error as e:
            raise NamespaceError(pool, str(e))

    def close_pool(self, pool_context):
        try:
            pool_context.close()
        except rados.Error as e:
            raise NamespaceError(pool_context.name, str(e))

    def lookup_image(self, pool_context, name):
        if name not in self.list_images(pool_context):
            raise ImageNotFound(name)
        return _RBDImageRef(pool_context=pool_context, name=name)

    def create_image(self, pool_context, name, size):
        try:
            rbd.RBD().create(pool_context, name, size)
        except rbd.Error as e:
            raise ImageError(name, str(e))
        return _RBDImageRef(pool_context=pool_context, name=name)

    def open_image(self, image_ref):
        try:
            return rbd.Image(image_ref.pool_context, image_ref.name)
        except rbd.ImageNotFound:
            raise ImageNotFound(image_ref.name)
        except rbd.Error as e:
            raise ImageError(image_ref.name, str(e))

    def stat_image(self, handle):
        try:
            return handle.stat()
        except rbd.Error as e:
            raise ImageError(handle.get_name(), str(e))

    def close_image(self, handle):
        try:
            handle.close()
        except rbd.Error as e:
            raise ImageError(handle.get_name(), str(e))

    def list_images(self, pool_context):
        try:
            return rbd.RBD().list(pool_context)
        except rbd.Error as e:
            raise NamespaceError(pool_context.name, str(e))

    def remove_image(self, pool_context, name):
        try:
            rbd.RBD().remove(pool_context, name)
        except rbd.ImageNotFound:
            raise ImageNotFound(name)
        except rbd.Error as e:
            raise ImageError(name, str(e))
