# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Shared cephblock components.
"""

__all__ = [
    'ICommandRunner', 'ProcessCommandRunner', 'CommandFailed', 'run_process',
    'interface_field', 'lazy_proxy',
]

from .process import (
    ICommandRunner, ProcessCommandRunner, CommandFailed, run_process,
)
from ._interface import interface_field, lazy_proxy
