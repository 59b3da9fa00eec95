# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Tests for ``cephblock.common._interface``.
"""

from pyrsistent import PClass, InvariantException

from zope.interface import Interface, implementer
from zope.interface.verify import verifyObject

from .. import interface_field, lazy_proxy
from ...testtools import TestCase


class IDummy(Interface):
    """
    Dummy interface.
    """


@implementer(IDummy)
class Dummy(object):
    """
    A provider of ``IDummy``.
    """


class Holder(PClass):
    dummy = interface_field((IDummy,), mandatory=True)


class InterfaceFieldTests(TestCase):
    """
    Tests for ``interface_field``.
    """
    def test_provider_accepted(self):
        """
        A value which provides the interface is accepted.
        """
        dummy = Dummy()
        self.assertIs(dummy, Holder(dummy=dummy).dummy)

    def test_non_provider_rejected(self):
        """
        A value which does not provide the interface is rejected, naming the
        missing interface.
        """
        e = self.assertRaises(InvariantException, Holder, dummy=object())
        self.assertIn("IDummy", str(e))

    def test_interfaces_must_be_tuple(self):
        """
        ``interface_field`` raises ``TypeError`` unless given a tuple.
        """
        self.assertRaises(TypeError, interface_field, IDummy)

    def test_original_invariant(self):
        """
        An ``invariant`` passed to ``interface_field`` is checked as well.
        """
        class Checked(PClass):
            dummy = interface_field(
                (IDummy,), mandatory=True,
                invariant=lambda value: (False, "always wrong"),
            )
        e = self.assertRaises(InvariantException, Checked, dummy=Dummy())
        self.assertIn("always wrong", str(e))


class IGreeter(Interface):
    def greet(name):
        """
        :return: A greeting for ``name``.
        """


@implementer(IGreeter)
class Greeter(object):
    def greet(self, name):
        return "hello " + name


class LazyProxyTests(TestCase):
    """
    Tests for ``lazy_proxy``.
    """
    def setUp(self):
        super().setUp()
        self.loads = []

    def loader(self):
        self.loads.append(None)
        return Greeter()

    def test_interface(self):
        """
        The proxy provides the interface without building the original.
        """
        proxy = lazy_proxy(IGreeter, self.loader)
        self.assertEqual(
            (True, []), (verifyObject(IGreeter, proxy), self.loads))

    def test_loaded_on_first_use(self):
        """
        Calling a method builds the original once and delegates to it.
        """
        proxy = lazy_proxy(IGreeter, self.loader)
        results = [proxy.greet("a"), proxy.greet("b")]
        self.assertEqual(
            (["hello a", "hello b"], 1), (results, len(self.loads)))

    def test_loader_failure(self):
        """
        An exception raised by the loader propagates from the first method
        call and the next call tries to load again.
        """
        attempts = []

        def loader():
            attempts.append(None)
            raise RuntimeError("no bindings")
        proxy = lazy_proxy(IGreeter, loader)
        self.assertRaises(RuntimeError, proxy.greet, "a")
        self.assertRaises(RuntimeError, proxy.greet, "a")
        self.assertEqual(2, len(attempts))
