# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
cephblock provisions Ceph RADOS block device images as mounted local
filesystems.
"""

__version__ = "0.1.0"

# The pool images are created in when none is configured.
DEFAULT_POOL_NAME = "rbd"

# The filesystem a mapped device is expected to carry when none is given.
DEFAULT_FILESYSTEM_TYPE = "xfs"


def _redirect_eliot_logs_for_trial():
    """
    Enable Eliot logging to the ``_trial/test.log`` file.
    """
    import os
    import sys
    if os.path.basename(sys.argv[0]) == "trial":
        from eliot.twisted import redirectLogsForTrial
        redirectLogsForTrial()
_redirect_eliot_logs_for_trial()
del _redirect_eliot_logs_for_trial
