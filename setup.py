# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Generate a cephblock package that can be installed onto Ceph client nodes.
"""

from setuptools import setup, find_packages

# The ``rados`` and ``rbd`` bindings are built with Ceph and installed from
# the distribution (``python3-rados``, ``python3-rbd``), so they are not
# listed here.
install_requires = [
    "bitmath",
    "characteristic",
    "constantly",
    "eliot>=1.11",
    "jsonschema",
    "psutil",
    "pyrsistent",
    "PyYAML",
    "Twisted",
    "zope.interface",
]

dev_requires = [
    "fixtures",
    "hypothesis",
    "pytest",
    "testtools",
]

setup(
    # This is the human-targetted name of the software being packaged.
    name="cephblock",
    # This is a string giving the version of the software being packaged.  For
    # simplicity it should be something boring like X.Y.Z.
    version="0.1.0",
    # This identifies the creators of this software.  This is left symbolic for
    # ease of maintenance.
    author="ClusterHQ Team",
    # This is contact information for the authors.
    author_email="support@clusterhq.com",
    # Here is a website where more information about the software is available.
    url="https://clusterhq.com/",

    # A short identifier for the license under which the project is released.
    license="Apache License, Version 2.0",

    description=(
        "Provision Ceph RBD images as mounted local filesystems."
    ),

    python_requires=">=3.6",

    # This setuptools helper will find everything that looks like a *Python*
    # package (in other words, things that can be imported) which are part of
    # the cephblock package.
    packages=find_packages(),

    entry_points={
        # These are the command-line programs we want setuptools to install.
        'console_scripts': [
            'cephblock = cephblock.script:cephblock_main',
        ],
    },

    install_requires=install_requires,

    extras_require={
        # This extra is for developers who need to work on cephblock itself.
        "dev": dev_requires,
    },

    # Some "trove classifiers" which are relevant.
    classifiers=[
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        ],
    )
