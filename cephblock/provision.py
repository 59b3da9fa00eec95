# -*- test-case-name: cephblock.test.test_provision -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
The provisioning lifecycle: turn an image name, a size and a mount point into
a mounted local filesystem, and take it apart again.

Provisioning is idempotent.  An image which already exists is reused and an
image which is already mapped on this node is described rather than mapped
a second time.
"""

from constantly import Names, NamedConstant

from pyrsistent import PClass, field

from zope.interface import implementer, Interface

from twisted.python.filepath import FilePath

from . import DEFAULT_FILESYSTEM_TYPE
from .common import interface_field
from .store import (
    IRemoteStore, StoreError, connect, get_or_create_image, megabytes,
    destroy_image, list_images,
)
from .configuration import ClusterSettings, ProvisioningPolicy
from .discovery import IDeviceDiscovery, DeviceDiscovery
from .mapper import IDeviceMapper, DeviceMapper, UnmapError
from .blockdevice_manager import (
    Device, IFilesystemManager, FilesystemManager, UnmountError,
)
from ._logging import PROVISION, TEARDOWN, STATE_CHANGED, ALREADY_MAPPED


class ProvisioningStates(Names):
    """
    The states a provisioning run passes through, in order.
    """
    DISCONNECTED = NamedConstant()
    CONNECTED = NamedConstant()
    # The image exists and is open.
    IMAGE_RESOLVED = NamedConstant()
    # The node's mappings have been inspected.
    MAPPING_KNOWN = NamedConstant()
    MAPPED = NamedConstant()
    FORMATTED_OR_SKIPPED = NamedConstant()
    MOUNTED = NamedConstant()


class ProvisioningError(Exception):
    """
    A provisioning run failed.

    :ivar NamedConstant stage: The ``ProvisioningStates`` constant for the
        state that was being entered.
    :ivar Exception reason: The underlying failure.
    """
    def __init__(self, stage, reason):
        Exception.__init__(self, stage, reason)
        self.stage = stage
        self.reason = reason

    def __str__(self):
        return "Failed to reach {}: {}".format(self.stage.name, self.reason)


class TeardownError(Exception):
    """
    One or more steps of a best-effort teardown failed.

    :ivar list errors: The exceptions raised by the failed steps, in the
        order the steps were attempted.
    """
    def __init__(self, errors):
        Exception.__init__(self, errors)
        self.errors = errors

    def __str__(self):
        return "Teardown failed: " + "; ".join(
            str(error) for error in self.errors)


class ProvisionRequest(PClass):
    """
    What to provision.

    :ivar str image_name: The name of the image.
    :ivar int size: The size, in megabytes, to create the image with if it
        does not exist.
    :ivar FilePath mount_point: Where to mount the device.
    :ivar filesystem: The filesystem type the device must carry, or ``None``
        for the orchestrator's default.
    """
    image_name = field(type=str, mandatory=True)
    size = field(type=int, mandatory=True)
    mount_point = field(type=FilePath, mandatory=True)
    filesystem = field(type=(str, type(None)), initial=None, mandatory=True)

    def __invariant__(self):
        if not self.image_name:
            return (False, "image_name must not be empty")
        if self.size <= 0:
            return (False, "size must be positive")
        return (True, "")


class ProvisionResult(PClass):
    """
    The outcome of a provisioning run.

    :ivar str image_name: The name of the image.
    :ivar int image_size: The size of the image in bytes.
    :ivar Device device: The local device the image is mapped to.
    :ivar bool already_mapped: ``True`` if the image was found mapped and
        nothing was mapped, formatted or mounted.
    """
    image_name = field(type=str, mandatory=True)
    image_size = field(type=int, mandatory=True)
    device = field(type=Device, mandatory=True)
    already_mapped = field(type=bool, initial=False, mandatory=True)


class _Lifecycle(object):
    """
    Track the state of one provisioning run.

    :ivar state: The ``ProvisioningStates`` constant most recently entered.
    """
    def __init__(self, state=ProvisioningStates.DISCONNECTED):
        self.state = state

    def enter(self, state, operation, *args, **kwargs):
        """
        Run ``operation`` and, if it succeeds, enter ``state``.

        :raises ProvisioningError: If ``operation`` raises.
        :return: The result of ``operation``.
        """
        try:
            result = operation(*args, **kwargs)
        except Exception as e:
            raise ProvisioningError(state, e)
        self.state = state
        STATE_CHANGED.log(state=state)
        return result


class IProvisioningOrchestrator(Interface):
    """
    Drive the provisioning lifecycle.
    """

    def connect():
        """
        Open a connection with the orchestrator's cluster settings.

        :raises ProvisioningError: With stage ``CONNECTED`` if the connection
            fails.
        :return: A ``Connection``; the caller must shut it down.
        """

    def provision(connection, request):
        """
        Get or create the requested image, then map, format and mount it
        unless it is already mapped on this node.

        :param Connection connection: An open connection.
        :param ProvisionRequest request: What to provision.

        :raises ProvisioningError: If any step fails.
        :return: A ``ProvisionResult``.
        """

    def provision_image(request):
        """
        Connect, provision and shut the connection down again.

        :param ProvisionRequest request: What to provision.

        :raises ProvisioningError: If any step fails.
        :return: A ``ProvisionResult``.
        """

    def teardown(device, connection=None):
        """
        Unmount ``device`` if it is mounted, then unmap it.

        :param Device device: The device to release.
        :param connection: A ``Connection`` to shut down afterwards, or
            ``None``.

        :raises UnmountError: If unmounting fails and teardown aborts on the
            first failure.
        :raises UnmapError: If unmapping fails and teardown aborts on the
            first failure.
        :raises TeardownError: If any step fails and teardown is best-effort.
        :return: The ``Device`` recorded as unmounted.
        """

    def destroy_image(connection, name):
        """
        Remove an image from the pool.

        :raises ImageNotFound: If there is no such image.
        """

    def list_images(connection):
        """
        :return: A sorted ``list`` of the names of the images in the pool.
        """

    def list_mapped_devices():
        """
        :return: A ``dict`` mapping image names to the ``FilePath`` of the
            device each is mapped to on this node.
        """


@implementer(IProvisioningOrchestrator)
class ProvisioningOrchestrator(PClass):
    """
    ``IProvisioningOrchestrator`` built from a store driver and the node
    components.

    :ivar IRemoteStore store: The cluster driver.
    :ivar ClusterSettings cluster: Where and as whom to connect.
    :ivar str filesystem: The filesystem used when a request names none.
    :ivar ProvisioningPolicy policy: Behaviour toggles.
    :ivar IDeviceDiscovery discovery: Inspects this node's mappings.
    :ivar IDeviceMapper mapper: Maps and unmaps images.
    :ivar IFilesystemManager filesystem_manager: Formats and mounts devices.
    """
    store = interface_field((IRemoteStore,), mandatory=True)
    cluster = field(type=ClusterSettings, initial=ClusterSettings(),
                    mandatory=True)
    filesystem = field(type=str, initial=DEFAULT_FILESYSTEM_TYPE,
                       mandatory=True)
    policy = field(type=ProvisioningPolicy, initial=ProvisioningPolicy(),
                   mandatory=True)
    discovery = interface_field((IDeviceDiscovery,), mandatory=True)
    mapper = interface_field((IDeviceMapper,), mandatory=True)
    filesystem_manager = interface_field(
        (IFilesystemManager,), mandatory=True,
    )

    @classmethod
    def from_runner(cls, store, runner, cluster=ClusterSettings(),
                    filesystem=DEFAULT_FILESYSTEM_TYPE,
                    policy=ProvisioningPolicy()):
        """
        Create an orchestrator whose node components all run host utilities
        through ``runner``.

        :param IRemoteStore store: The cluster driver.
        :param ICommandRunner runner: Runs ``rbd``, ``blkid``, ``mkfs``,
            ``mount`` and ``umount``.

        :return: A new ``ProvisioningOrchestrator``.
        """
        filesystem_manager = FilesystemManager(
            runner=runner, strict_fs_check=policy.strict_fs_check,
        )
        return cls(
            store=store,
            cluster=cluster,
            filesystem=filesystem,
            policy=policy,
            discovery=DeviceDiscovery(runner=runner),
            mapper=DeviceMapper(
                runner=runner, filesystem_manager=filesystem_manager,
            ),
            filesystem_manager=filesystem_manager,
        )

    @classmethod
    def from_configuration(cls, configuration, store, runner):
        """
        :param Configuration configuration: A loaded configuration.
        :param IRemoteStore store: The cluster driver.
        :param ICommandRunner runner: Runs host utilities.

        :return: A new ``ProvisioningOrchestrator``.
        """
        return cls.from_runner(
            store, runner,
            cluster=configuration.cluster,
            filesystem=configuration.filesystem,
            policy=configuration.policy,
        )

    def connect(self):
        return _Lifecycle().enter(
            ProvisioningStates.CONNECTED,
            connect, self.store,
            username=self.cluster.username,
            pool=self.cluster.pool,
            cluster=self.cluster.cluster,
            conffile=self.cluster.conffile,
        )

    def _describe_mapped(self, device_path, filesystem):
        """
        Describe a device found already mapped, including where it is mounted
        according to the host mount table.

        :return: A ``Device``.
        """
        device = Device(path=device_path, filesystem=filesystem)
        for mount in self.filesystem_manager.get_mounts():
            if mount.blockdevice == device_path:
                return device.mounted_at(mount.mountpoint)
        return device

    def _discover(self, pool, image_name, filesystem):
        """
        :return: A ``Device`` describing the mapping of ``image_name`` from
            ``pool`` or ``None`` if it is not mapped.
        """
        device_path = self.discovery.is_already_mapped(image_name, pool=pool)
        if device_path is None:
            return None
        return self._describe_mapped(device_path, filesystem)

    def provision(self, connection, request):
        filesystem = request.filesystem or self.filesystem
        lifecycle = _Lifecycle(ProvisioningStates.CONNECTED)
        with PROVISION(pool=connection.pool, image_name=request.image_name,
                       requested_size=megabytes(request.size),
                       filesystem_type=filesystem,
                       mountpoint=request.mount_point):
            image = lifecycle.enter(
                ProvisioningStates.IMAGE_RESOLVED,
                get_or_create_image, connection, request.image_name,
                request.size,
                strict_size_check=self.policy.strict_size_check,
            )
            try:
                device = lifecycle.enter(
                    ProvisioningStates.MAPPING_KNOWN,
                    self._discover, connection.pool, request.image_name,
                    filesystem,
                )
                if device is not None:
                    ALREADY_MAPPED.log(
                        image_name=image.name, device_path=device.path,
                        mountpoint=device.mount_point,
                    )
                    return ProvisionResult(
                        image_name=image.name, image_size=image.size,
                        device=device, already_mapped=True,
                    )

                device = lifecycle.enter(
                    ProvisioningStates.MAPPED,
                    self.mapper.map, image, filesystem,
                )
                lifecycle.enter(
                    ProvisioningStates.FORMATTED_OR_SKIPPED,
                    self.filesystem_manager.ensure_filesystem, device,
                )
                device = lifecycle.enter(
                    ProvisioningStates.MOUNTED,
                    self.filesystem_manager.mount, device,
                    request.mount_point, format_if_needed=False,
                )
                return ProvisionResult(
                    image_name=image.name, image_size=image.size,
                    device=device,
                )
            finally:
                image.close()

    def provision_image(self, request):
        with self.connect() as connection:
            return self.provision(connection, request)

    def teardown(self, device, connection=None):
        with TEARDOWN(device_path=device.path,
                      mountpoint=device.mount_point):
            if self.policy.best_effort_teardown:
                return self._teardown_best_effort(device, connection)
            try:
                if device.mounted:
                    self.filesystem_manager.unmount(device)
                    device = device.unmounted()
                return self.mapper.unmap(device)
            finally:
                if connection is not None:
                    connection.shutdown()

    def _teardown_best_effort(self, device, connection):
        """
        Attempt every teardown step, collecting failures.  The device is never
        unmapped while it may still be mounted.
        """
        errors = []
        if device.mounted:
            try:
                self.filesystem_manager.unmount(device)
            except UnmountError as e:
                errors.append(e)
            else:
                device = device.unmounted()
        if not device.mounted:
            try:
                self.mapper.unmap(device)
            except UnmapError as e:
                errors.append(e)
        if connection is not None:
            try:
                connection.shutdown()
            except StoreError as e:
                errors.append(e)
        if errors:
            raise TeardownError(errors)
        return device

    def destroy_image(self, connection, name):
        destroy_image(connection, name)

    def list_images(self, connection):
        return list_images(connection)

    def list_mapped_devices(self):
        return self.discovery.list_mapped_devices()
