# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Functional tests for ``cephblock`` which talk to a real Ceph cluster.
"""
