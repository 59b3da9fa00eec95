# -*- test-case-name: cephblock.common.test.test_interface -*-
# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Collaborators known only by their interfaces: pyrsistent fields holding
them and proxies which build them on first use.
"""

from pyrsistent import field

from twisted.python.components import proxyForInterface


def _provides_all(interfaces, extra_invariant=None):
    """
    :return: A pyrsistent invariant accepting values which provide every one
        of ``interfaces`` and pass ``extra_invariant``, if given.
    """
    def invariant(value):
        problems = []
        if extra_invariant is not None:
            valid, message = extra_invariant(value)
            if not valid:
                problems.append(message)
        missing = [
            interface.getName() for interface in interfaces
            if not interface.providedBy(value)
        ]
        if missing:
            problems.append("{!r} does not provide {}".format(
                value, ", ".join(missing)))
        return (not problems, "\n".join(problems))
    return invariant


def interface_field(interfaces, **field_kwargs):
    """
    A ``PClass`` field whose value must provide all of ``interfaces``.

    :param tuple interfaces: ``Interface``s the value must provide.
    :param field_kwargs: Passed on to ``pyrsistent.field``.  An ``invariant``
        among them is checked in addition to the interfaces.
    """
    if not isinstance(interfaces, tuple):
        raise TypeError(
            "interfaces must be a tuple, got {!r}".format(interfaces))
    field_kwargs["invariant"] = _provides_all(
        interfaces, field_kwargs.pop("invariant", None))
    return field(**field_kwargs)


def lazy_proxy(interface, loader):
    """
    Stand in for a provider of ``interface`` which is only built, by calling
    ``loader``, when one of its methods is first used.

    :param Interface interface: The methods and attributes to proxy.
    :param loader: A no-argument callable returning the real provider.
    :return: The proxy, providing ``interface``.
    """
    class LazyProxy(proxyForInterface(interface, "_original")):
        _loaded = None

        def __init__(self):
            # The generated initializer wants the original up front.
            pass

        @property
        def _original(self):
            if self._loaded is None:
                self._loaded = loader()
            return self._loaded
    return LazyProxy()
