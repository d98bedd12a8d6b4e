"""
irflow.hierarchy
================

Classes, methods and the class hierarchy they form.

A :class:`ClassHierarchy` is a store of :class:`JClass` declarations that
answers the structural queries CHA needs: the superclass of a class and
its *direct* subclasses, implementors and subinterfaces.  Transitive
closure is left to the caller (see :mod:`irflow.callgraph`).

A :class:`Program` bundles a hierarchy with the method analysis starts
from.  It is passed explicitly to everything that needs whole-program
context; there is no global world object.

Public API
----------
    MethodRef       - static (class, subsignature) reference at a call site
    JMethod         - a method declaration, optionally with an IR body
    JClass          - a class or interface declaration
    ClassHierarchy  - the declaration store
    Program         - hierarchy + main method
    make_subsignature
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence

from .errors import HierarchyError
from .ir import IR, VOID, Type

__all__ = [
    "make_subsignature",
    "MethodRef",
    "JMethod",
    "JClass",
    "ClassHierarchy",
    "Program",
]

logger = logging.getLogger(__name__)


def make_subsignature(name: str, param_types: Sequence[Type], return_type: Type = VOID) -> str:
    """Return ``"<ret> name(<params>)"``, the dispatch key of a method."""
    params = ",".join(str(t) for t in param_types)
    return f"{return_type} {name}({params})"


@dataclass(frozen=True)
class MethodRef:
    """The method a call site names statically.

    ``declaring_class`` is the class name the reference is written against,
    which may differ from the class that declares the eventual target.
    """

    declaring_class: str
    subsignature: str

    @property
    def name(self) -> str:
        head = self.subsignature.split("(", 1)[0]
        return head.rsplit(" ", 1)[-1]

    def __str__(self) -> str:
        return f"<{self.declaring_class}: {self.subsignature}>"


class JMethod:
    """A method declaration.

    Abstract methods (and interface methods without a body) have no IR.
    Concrete library methods may also lack an IR; they are still valid
    dispatch targets.
    """

    def __init__(
        self,
        declaring_class: "JClass",
        name: str,
        param_types: Sequence[Type] = (),
        return_type: Type = VOID,
        is_static: bool = False,
        is_abstract: bool = False,
        ir: Optional[IR] = None,
    ) -> None:
        self.declaring_class = declaring_class
        self.name = name
        self.param_types: List[Type] = list(param_types)
        self.return_type = return_type
        self.is_static = is_static
        self.is_abstract = is_abstract
        self.subsignature = make_subsignature(name, self.param_types, return_type)
        self._ir: Optional[IR] = None
        if ir is not None:
            self.set_ir(ir)

    @property
    def ir(self) -> Optional[IR]:
        return self._ir

    def set_ir(self, ir: IR) -> None:
        if self.is_abstract:
            raise HierarchyError(f"abstract method {self} cannot have a body")
        ir.method = self
        for invoke in ir.invokes():
            invoke.container = self
        self._ir = ir

    def has_ir(self) -> bool:
        return self._ir is not None

    @property
    def signature(self) -> str:
        return f"<{self.declaring_class.name}: {self.subsignature}>"

    def ref(self) -> MethodRef:
        """A reference to this method as a call site would write it."""
        return MethodRef(self.declaring_class.name, self.subsignature)

    def __repr__(self) -> str:
        return self.signature

    __str__ = __repr__


class JClass:
    """A class or interface declaration."""

    def __init__(
        self,
        name: str,
        super_class: Optional[str] = None,
        interfaces: Sequence[str] = (),
        is_interface: bool = False,
        is_abstract: bool = False,
    ) -> None:
        self.name = name
        self.super_class = super_class
        self.interfaces: List[str] = list(interfaces)
        self.is_interface = is_interface
        self.is_abstract = is_abstract or is_interface
        self._methods: Dict[str, JMethod] = OrderedDict()

    def add_method(
        self,
        name: str,
        param_types: Sequence[Type] = (),
        return_type: Type = VOID,
        is_static: bool = False,
        is_abstract: bool = False,
        ir: Optional[IR] = None,
    ) -> JMethod:
        """Declare a method on this class and return it."""
        method = JMethod(self, name, param_types, return_type,
                         is_static=is_static, is_abstract=is_abstract, ir=ir)
        if method.subsignature in self._methods:
            raise HierarchyError(
                f"duplicate method {method.subsignature} in {self.name}",
            )
        self._methods[method.subsignature] = method
        return method

    def get_declared_method(self, subsignature: str) -> Optional[JMethod]:
        return self._methods.get(subsignature)

    def declared_methods(self) -> List[JMethod]:
        return list(self._methods.values())

    def __repr__(self) -> str:
        kind = "interface" if self.is_interface else "class"
        return f"<{kind} {self.name}>"


class ClassHierarchy:
    """Store of class declarations with direct-relation queries.

    Super types may be added after the classes that name them; the
    relation indices are derived lazily and invalidated on every
    :meth:`add_class`.
    """

    def __init__(self, classes: Sequence[JClass] = ()) -> None:
        self._classes: Dict[str, JClass] = OrderedDict()
        self._subclasses: Optional[Dict[str, List[JClass]]] = None
        self._implementors: Optional[Dict[str, List[JClass]]] = None
        self._subinterfaces: Optional[Dict[str, List[JClass]]] = None
        for jclass in classes:
            self.add_class(jclass)

    # ----- population -------------------------------------------------------

    def add_class(self, jclass: JClass) -> JClass:
        if jclass.name in self._classes:
            raise HierarchyError(f"duplicate class '{jclass.name}'")
        self._classes[jclass.name] = jclass
        self._subclasses = self._implementors = self._subinterfaces = None
        return jclass

    def _build_indices(self) -> None:
        subclasses: Dict[str, List[JClass]] = {n: [] for n in self._classes}
        implementors: Dict[str, List[JClass]] = {n: [] for n in self._classes}
        subinterfaces: Dict[str, List[JClass]] = {n: [] for n in self._classes}
        for jclass in self._classes.values():
            if jclass.super_class is not None:
                self._require(jclass.super_class, referrer=jclass.name)
                subclasses[jclass.super_class].append(jclass)
            for iface in jclass.interfaces:
                target = self._require(iface, referrer=jclass.name)
                if not target.is_interface:
                    raise HierarchyError(
                        f"'{jclass.name}' lists non-interface '{iface}' as an interface",
                    )
                if jclass.is_interface:
                    subinterfaces[iface].append(jclass)
                else:
                    implementors[iface].append(jclass)
        self._subclasses = subclasses
        self._implementors = implementors
        self._subinterfaces = subinterfaces

    def _require(self, name: str, referrer: Optional[str] = None) -> JClass:
        jclass = self._classes.get(name)
        if jclass is None:
            details = {"referrer": referrer} if referrer is not None else None
            raise HierarchyError(f"unknown class '{name}'", details=details)
        return jclass

    # ----- queries ----------------------------------------------------------

    def get_class(self, name: str) -> Optional[JClass]:
        return self._classes.get(name)

    def classes(self) -> Iterator[JClass]:
        return iter(self._classes.values())

    def declared_method(self, jclass: JClass, subsignature: str) -> Optional[JMethod]:
        return jclass.get_declared_method(subsignature)

    def super_class_of(self, jclass: JClass) -> Optional[JClass]:
        if jclass.super_class is None:
            return None
        return self._require(jclass.super_class, referrer=jclass.name)

    def direct_subclasses_of(self, jclass: JClass) -> List[JClass]:
        if self._subclasses is None:
            self._build_indices()
        return list(self._subclasses.get(jclass.name, ()))  # type: ignore[union-attr]

    def direct_implementors_of(self, jclass: JClass) -> List[JClass]:
        if self._implementors is None:
            self._build_indices()
        return list(self._implementors.get(jclass.name, ()))  # type: ignore[union-attr]

    def direct_subinterfaces_of(self, jclass: JClass) -> List[JClass]:
        if self._subinterfaces is None:
            self._build_indices()
        return list(self._subinterfaces.get(jclass.name, ()))  # type: ignore[union-attr]

    def __contains__(self, name: str) -> bool:
        return name in self._classes

    def __len__(self) -> int:
        return len(self._classes)


class Program:
    """Whole-program context: a class hierarchy and its main method."""

    def __init__(self, hierarchy: ClassHierarchy, main_method: JMethod) -> None:
        if hierarchy.get_class(main_method.declaring_class.name) is not main_method.declaring_class:
            raise HierarchyError(
                f"main method {main_method} is not declared in the hierarchy",
            )
        self.hierarchy = hierarchy
        self.main_method = main_method
        logger.debug("program with %d classes, main %s", len(hierarchy), main_method)

    def __repr__(self) -> str:
        return f"Program(main={self.main_method}, classes={len(self.hierarchy)})"
