"""
Loaded-plugin identity.

A component is referenced by a string ref. A loader turns the ref into
live code, and `code_digest` fingerprints that code: the marshalled code
objects of a function, or of every function defined on a class (walking
the MRO, so an instance is fingerprinted by its class). Replacing the
object behind a ref, patching a method in place, or removing the object
all change or break the digest.
"""

import hashlib
import importlib
import inspect
import marshal
import threading
from abc import ABC, abstractmethod
from types import FunctionType, MethodType, ModuleType
from typing import Any, Dict, Iterator, Optional, Tuple

from .util import DIGEST_PREFIX


class LoadError(Exception):
    """A ref could not be turned into executable code."""


def _code_of(member: Any):
    if isinstance(member, (staticmethod, classmethod)):
        member = member.__func__
    if isinstance(member, property):
        return [_code_of(f) for f in (member.fget, member.fset, member.fdel) if f is not None]
    if isinstance(member, MethodType):
        member = member.__func__
    code = getattr(member, "__code__", None)
    return code


def _iter_members(target: type) -> Iterator[Tuple[str, Any]]:
    for klass in inspect.getmro(target):
        if klass is object:
            continue
        for name in sorted(vars(klass)):
            yield f"{klass.__module__}.{klass.__qualname__}.{name}", vars(klass)[name]


def _feed(h, label: str, code: Any) -> None:
    if code is None:
        return
    h.update(label.encode("utf-8"))
    if isinstance(code, list):
        for item in code:
            _feed(h, label, item)
        return
    h.update(marshal.dumps(code))


def is_executable(obj: Any) -> bool:
    """True if obj carries code we can fingerprint."""
    if isinstance(obj, (FunctionType, MethodType)):
        return True
    if isinstance(obj, ModuleType):
        return False
    target = obj if isinstance(obj, type) else type(obj)
    if target.__module__ == "builtins":
        return False
    return any(_code_of(member) for _, member in _iter_members(target))


def code_digest(obj: Any) -> str:
    """
    Deterministic fingerprint of an object's loaded code.

    Raises:
        LoadError: obj has no Python code (builtins, plain data)
    """
    if not is_executable(obj):
        raise LoadError(f"{type(obj).__name__} object carries no executable code")

    h = hashlib.sha256()
    if isinstance(obj, (FunctionType, MethodType)):
        func = obj.__func__ if isinstance(obj, MethodType) else obj
        h.update(f"{func.__module__}.{func.__qualname__}".encode("utf-8"))
        _feed(h, "__code__", func.__code__)
    else:
        target = obj if isinstance(obj, type) else type(obj)
        h.update(f"{target.__module__}.{target.__qualname__}".encode("utf-8"))
        for label, member in _iter_members(target):
            _feed(h, label, _code_of(member))
        if not isinstance(obj, type):
            # functions patched onto the instance itself
            for name, member in sorted(getattr(obj, "__dict__", {}).items()):
                if isinstance(member, (FunctionType, MethodType)):
                    _feed(h, f"instance.{name}", _code_of(member))
    return DIGEST_PREFIX + h.hexdigest()


class ComponentLoader(ABC):
    """Turns component refs into live objects."""

    @abstractmethod
    def load(self, ref: str) -> Any:
        """
        Load the object behind ref.

        Raises:
            LoadError: ref does not resolve to executable code
        """
        pass

    def digest(self, ref: str) -> Optional[str]:
        """Live identity digest of ref, or None if it no longer loads."""
        try:
            return code_digest(self.load(ref))
        except LoadError:
            return None


class ImportLoader(ComponentLoader):
    """
    Loads "package.module:attribute" refs through importlib.

    Attribute paths may be dotted ("pkg.mod:Class.factory"). Lookups always
    go through the live module object, so rebinding the attribute is seen
    on the next load.
    """

    def load(self, ref: str) -> Any:
        if not isinstance(ref, str) or ":" not in ref:
            raise LoadError(f"ref must look like 'package.module:attribute', got {ref!r}")
        module_name, _, attr_path = ref.partition(":")
        if not module_name or module_name.startswith(".") or not attr_path:
            raise LoadError(f"ref must name an absolute module and an attribute, got {ref!r}")
        try:
            obj = importlib.import_module(module_name)
        except Exception as e:
            # import-time failures of any kind mean the ref is not loadable
            raise LoadError(f"cannot import {module_name}: {e}") from e
        for part in attr_path.split("."):
            try:
                obj = getattr(obj, part)
            except Exception as e:
                raise LoadError(f"{module_name} has no attribute path {attr_path}") from e
        if not is_executable(obj):
            raise LoadError(f"{ref} is not executable code")
        return obj


class MappingLoader(ComponentLoader):
    """
    In-process plugin table: refs are keys bound to objects.

    `bind` deploys (or redeploys) an object under a ref; `unbind` destroys
    it. Unknown refs fall through to an optional fallback loader.
    """

    def __init__(self, fallback: Optional[ComponentLoader] = None):
        self._objects: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._fallback = fallback

    def bind(self, ref: str, obj: Any) -> None:
        with self._lock:
            self._objects[ref] = obj

    def unbind(self, ref: str) -> None:
        with self._lock:
            self._objects.pop(ref, None)

    def load(self, ref: str) -> Any:
        with self._lock:
            obj = self._objects.get(ref)
        if obj is None:
            if self._fallback is not None:
                return self._fallback.load(ref)
            raise LoadError(f"nothing bound at {ref!r}")
        if not is_executable(obj):
            raise LoadError(f"{ref} is not executable code")
        return obj
