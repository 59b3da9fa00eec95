# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Eliot log types for the provisioning lifecycle and the storage and host
operations it drives.
"""

from eliot import Field, ActionType, MessageType
from eliot.serializers import identity


def _path(value):
    """
    Serialize a ``FilePath`` (or ``None``) for a log field.
    """
    if value is None:
        return None
    return value.path


POOL = Field.for_types(
    "pool", [str],
    "The name of the Ceph pool holding the image.")

USERNAME = Field.for_types(
    "username", [str, type(None)],
    "The Ceph user the connection authenticates as.")

CLUSTER = Field.for_types(
    "cluster", [str, type(None)],
    "The name of the Ceph cluster, if not the host default.")

CONFFILE = Field(
    "conffile", _path,
    "The Ceph configuration file the connection was configured from.")

IMAGE_NAME = Field.for_types(
    "image_name", [str],
    "The name of an RBD image.")

IMAGE_SIZE = Field(
    "image_size", identity,
    "The size, in bytes, of an RBD image.")

REQUESTED_SIZE = Field(
    "requested_size", identity,
    "The size, in bytes, the caller asked for.")

DEVICE_PATH = Field(
    "device_path", _path,
    "The system device file for a mapped image.")

FILESYSTEM_TYPE = Field.for_types(
    "filesystem_type", [str],
    "The name of a filesystem.")

DETECTED_FILESYSTEM_TYPE = Field.for_types(
    "detected_filesystem_type", [str],
    "The filesystem type blkid reports for a device, empty if none.")

MOUNTPOINT = Field(
    "mountpoint", _path,
    "The absolute path to the location on the node where the device is "
    "mounted.")

STATE = Field(
    "state", lambda state: state.name,
    "A provisioning lifecycle state.")

LINE = Field.for_types(
    "line", [str],
    "A line of ``rbd showmapped`` output.")

MAPPED_DEVICES = Field(
    "mapped_devices",
    lambda devices: {name: path.path for name, path in devices.items()},
    "The images currently mapped on this node and their device files.")

CONNECT = ActionType(
    "cephblock:store:connect",
    [CLUSTER, USERNAME, POOL, CONFFILE],
    [],
    "A connection to a Ceph cluster and pool is being established.")

SHUTDOWN = ActionType(
    "cephblock:store:shutdown",
    [POOL],
    [],
    "A connection's pool context and session are being released.")

OPEN_IMAGE = ActionType(
    "cephblock:store:open_image",
    [POOL, IMAGE_NAME],
    [IMAGE_SIZE],
    "An RBD image is being opened and stat-ed.")

CREATE_IMAGE = ActionType(
    "cephblock:store:create_image",
    [POOL, IMAGE_NAME, IMAGE_SIZE],
    [],
    "A new RBD image is being created.")

DESTROY_IMAGE = ActionType(
    "cephblock:store:destroy_image",
    [POOL, IMAGE_NAME],
    [],
    "An RBD image is being removed from its pool.")

IMAGE_SIZE_MISMATCH = MessageType(
    "cephblock:store:image_size_mismatch",
    [IMAGE_NAME, IMAGE_SIZE, REQUESTED_SIZE],
    "An existing image was reused although its size differs from the "
    "requested size.")

LIST_MAPPED_DEVICES = ActionType(
    "cephblock:discovery:list_mapped_devices",
    [],
    [MAPPED_DEVICES],
    "The images mapped on this node are being discovered.")

SKIPPED_SHOWMAPPED_LINE = MessageType(
    "cephblock:discovery:skipped_line",
    [LINE],
    "A line of ``rbd showmapped`` output did not describe a mapping.")

MAP_IMAGE = ActionType(
    "cephblock:mapper:map",
    [POOL, IMAGE_NAME],
    [DEVICE_PATH],
    "An RBD image is being mapped to a local block device.")

UNMAP_DEVICE = ActionType(
    "cephblock:mapper:unmap",
    [DEVICE_PATH],
    [],
    "A local block device is being unmapped.")

DETECT_FILESYSTEM = ActionType(
    "cephblock:filesystem:detect",
    [DEVICE_PATH],
    [DETECTED_FILESYSTEM_TYPE],
    "The filesystem on a block device is being inspected.")

CREATE_FILESYSTEM = ActionType(
    "cephblock:filesystem:create",
    [DEVICE_PATH, FILESYSTEM_TYPE],
    [],
    "A block device is being initialized with a filesystem.")

MOUNT_DEVICE = ActionType(
    "cephblock:filesystem:mount",
    [DEVICE_PATH, FILESYSTEM_TYPE, MOUNTPOINT],
    [],
    "A block device is being mounted.")

UNMOUNT_DEVICE = ActionType(
    "cephblock:filesystem:unmount",
    [DEVICE_PATH],
    [],
    "A block device is being unmounted.")

PROVISION = ActionType(
    "cephblock:provision",
    [POOL, IMAGE_NAME, REQUESTED_SIZE, FILESYSTEM_TYPE, MOUNTPOINT],
    [],
    "An image is being provisioned as a mounted local filesystem.")

STATE_CHANGED = MessageType(
    "cephblock:provision:state_changed",
    [STATE],
    "The provisioning lifecycle entered a new state.")

ALREADY_MAPPED = MessageType(
    "cephblock:provision:already_mapped",
    [IMAGE_NAME, DEVICE_PATH, MOUNTPOINT],
    "The image is already mapped on this node; mapping, formatting and "
    "mounting are skipped.")

TEARDOWN = ActionType(
    "cephblock:teardown",
    [DEVICE_PATH, MOUNTPOINT],
    [],
    "A provisioned device is being unmounted and unmapped.")
