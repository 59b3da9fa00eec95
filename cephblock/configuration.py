# -*- test-case-name: cephblock.test.test_configuration -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Load the ``cephblock`` configuration file.
"""

import yaml

from jsonschema import FormatChecker, Draft4Validator

from pyrsistent import PClass, field

from twisted.python.filepath import FilePath

from . import DEFAULT_POOL_NAME, DEFAULT_FILESYSTEM_TYPE
from .store import DEFAULT_CEPH_CONFIG


DEFAULT_CONFIGURATION_PATH = FilePath("/etc/cephblock/cephblock.yml")

TEARDOWN_ABORT = "abort"
TEARDOWN_BEST_EFFORT = "best-effort"

_CONFIGURATION_SCHEMA = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "type": "object",
    "required": ["version"],
    "additionalProperties": False,
    "properties": {
        "version": {
            "type": "number",
            "maximum": 1,
            "minimum": 1,
        },
        "cluster": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "pool": {"type": "string", "minLength": 1},
                "user": {"type": "string", "minLength": 1},
                "name": {"type": "string", "minLength": 1},
                "conffile": {"type": "string", "minLength": 1},
            },
        },
        "filesystem": {
            "type": "string",
            "pattern": "^[a-z0-9]+$",
        },
        "policy": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "strict-size-check": {"type": "boolean"},
                "strict-fs-check": {"type": "boolean"},
                "teardown": {
                    "type": "string",
                    "enum": [TEARDOWN_ABORT, TEARDOWN_BEST_EFFORT],
                },
            },
        },
        "logging": {
            # Format described at https://www.python.org/dev/peps/pep-0391/
            "type": "object",
        },
    },
}


class ConfigurationError(Exception):
    """
    A configuration file could not be parsed.

    :ivar FilePath path: The file.
    :ivar yaml.YAMLError reason: The parser's complaint.
    """
    def __init__(self, path, reason):
        Exception.__init__(self, path, reason)
        self.path = path
        self.reason = reason

    def __str__(self):
        mark = getattr(self.reason, "problem_mark", None)
        problem = getattr(self.reason, "problem", None)
        if problem is None:
            problem = str(self.reason).splitlines()[0]
        if mark is None:
            return "{}: {}".format(self.path.path, problem)
        return "{}: line {}, column {}: {}".format(
            self.path.path, mark.line + 1, mark.column + 1, problem)


def validate_configuration(configuration):
    """
    Validate a provided configuration.

    :param dict configuration: A configuration as loaded from the
        configuration file.

    :raises: jsonschema.ValidationError if the configuration is invalid.
    """
    v = Draft4Validator(_CONFIGURATION_SCHEMA, format_checker=FormatChecker())
    v.validate(configuration)


class ClusterSettings(PClass):
    """
    Where and as whom to connect.

    :ivar str pool: The pool images live in.
    :ivar username: The Ceph user or ``None`` for the default identity.
    :ivar cluster: The cluster name or ``None`` for the host default.
    :ivar FilePath conffile: The Ceph configuration file.
    """
    pool = field(type=str, initial=DEFAULT_POOL_NAME, mandatory=True)
    username = field(type=(str, type(None)), initial=None, mandatory=True)
    cluster = field(type=(str, type(None)), initial=None, mandatory=True)
    conffile = field(type=FilePath, initial=DEFAULT_CEPH_CONFIG,
                     mandatory=True)


class ProvisioningPolicy(PClass):
    """
    Knobs for the stricter behaviours of the provisioning lifecycle.  All of
    them are off by default.

    :ivar bool strict_size_check: Refuse to reuse an existing image whose
        size differs from the requested size.
    :ivar bool strict_fs_check: Refuse to reformat a device which carries a
        filesystem other than the requested one.
    :ivar bool best_effort_teardown: Attempt every teardown step and report
        all failures together instead of stopping at the first one.
    """
    strict_size_check = field(type=bool, initial=False, mandatory=True)
    strict_fs_check = field(type=bool, initial=False, mandatory=True)
    best_effort_teardown = field(type=bool, initial=False, mandatory=True)


class Configuration(PClass):
    """
    A loaded and validated configuration.

    :ivar ClusterSettings cluster: Connection settings.
    :ivar str filesystem: The filesystem devices are formatted with.
    :ivar ProvisioningPolicy policy: Provisioning behaviour toggles.
    """
    cluster = field(type=ClusterSettings, initial=ClusterSettings(),
                    mandatory=True)
    filesystem = field(type=str, initial=DEFAULT_FILESYSTEM_TYPE,
                       mandatory=True)
    policy = field(type=ProvisioningPolicy, initial=ProvisioningPolicy(),
                   mandatory=True)

    @classmethod
    def from_dict(cls, configuration):
        """
        Build a ``Configuration`` from a data structure loaded from the
        configuration file.  If it has a ``logging`` section the standard
        library ``logging`` module is configured with it.

        :param dict configuration: The loaded configuration.

        :raises: jsonschema.ValidationError if the configuration is invalid.
        :return: A new ``Configuration``.
        """
        validate_configuration(configuration=configuration)

        if 'logging' in configuration:
            from logging.config import dictConfig
            dictConfig(configuration['logging'])

        cluster = configuration.get('cluster', {})
        conffile = cluster.get('conffile')
        settings = ClusterSettings(
            pool=cluster.get('pool', DEFAULT_POOL_NAME),
            username=cluster.get('user'),
            cluster=cluster.get('name'),
            conffile=(
                DEFAULT_CEPH_CONFIG if conffile is None
                else FilePath(conffile)
            ),
        )

        policy = configuration.get('policy', {})
        return cls(
            cluster=settings,
            filesystem=configuration.get(
                'filesystem', DEFAULT_FILESYSTEM_TYPE),
            policy=ProvisioningPolicy(
                strict_size_check=policy.get('strict-size-check', False),
                strict_fs_check=policy.get('strict-fs-check', False),
                best_effort_teardown=(
                    policy.get('teardown', TEARDOWN_ABORT) ==
                    TEARDOWN_BEST_EFFORT
                ),
            ),
        )

    @classmethod
    def from_path(cls, path):
        """
        Load and validate the configuration file at ``path``.

        :param FilePath path: The YAML configuration file.

        :raises: jsonschema.ValidationError if the configuration is invalid.
        :raises ConfigurationError: If the file is not valid YAML.
        :return: A new ``Configuration``.
        """
        try:
            configuration = yaml.safe_load(path.getContent())
        except yaml.YAMLError as e:
            raise ConfigurationError(path, e)
        return cls.from_dict(configuration)
