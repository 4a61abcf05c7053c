from __future__ import annotations

import dataclasses
import logging
import threading
from functools import cached_property
from inspect import Parameter, get_annotations, isclass, signature
from typing import (
    AbstractSet,
    Any,
    Callable,
    ClassVar,
    Dict,
    FrozenSet,
    Hashable,
    Iterable,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Self,
    Tuple,
    Type,
    TypeVar,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel

from .typeinfo import MISSING

logger = logging.getLogger(__name__)

T = TypeVar("T")

_VARIADIC = (Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD)


@dataclasses.dataclass(frozen=True)
class Member:
    """A named, typed attribute of a class."""

    name: str
    type: Any = Any
    kind: str = "field"  # "field", "slot" or "property"

    def get(self, obj: Any) -> Any:
        try:
            return getattr(obj, self.name)
        except AttributeError:
            return MISSING

    def set(self, obj: Any, value: Any) -> None:
        setattr(obj, self.name, value)

    def current(self, obj: Any) -> Any:
        """Value held by ``obj`` itself, ignoring class level defaults."""
        if self.kind == "field":
            instance_dict = getattr(obj, "__dict__", None)
            if instance_dict is not None:
                return instance_dict.get(self.name)
        try:
            return getattr(obj, self.name)
        except AttributeError:
            return None


class MemberPair(NamedTuple):
    source: Member
    destination: Member


PropertyMap = Tuple[MemberPair, ...]


class ConstructorParameter(NamedTuple):
    name: str
    type: Any
    kind: Any
    required: bool


class Constructor(NamedTuple):
    name: str
    factory: Callable[..., Any]
    parameters: Tuple[ConstructorParameter, ...]

    @property
    def is_parameterless(self) -> bool:
        return not any(p.required for p in self.parameters)


class _Discovered(NamedTuple):
    member: Member
    readable: bool
    writable: bool


class PopoAdapter:
    """Member discovery for plain classes, dataclasses and named tuples."""

    def readable_members(self, cls: Type) -> List[Member]:
        return [d.member for d in self.discover(cls).values() if d.readable]

    def writable_members(self, cls: Type) -> List[Member]:
        if self.is_frozen(cls):
            return []
        return [d.member for d in self.discover(cls).values() if d.writable]

    def discover(self, cls: Type) -> Dict[str, _Discovered]:
        hints = self.get_type_hints(cls)
        properties = dict(self.get_properties(cls))
        init_params = self.get_init_params(cls)

        candidates: List[Tuple[str, Any, str]] = [
            (name, hint, "field")
            for name, hint in hints.items()
            if not self._is_class_var(hint)
        ]
        candidates += [(name, hints.get(name, Any), "slot") for name in self.get_slots(cls)]
        candidates += [(p.name, p.type, "field") for p in init_params]
        candidates += [(name, Any, "property") for name in properties]

        found: Dict[str, _Discovered] = {}
        for name, hint, kind in candidates:
            if name.startswith("_") or name in found:
                continue
            prop = properties.get(name)
            if prop is None:
                found[name] = _Discovered(Member(name, hint, kind), True, True)
            else:
                found[name] = self._describe_property(cls, name, prop)
        return found

    def instance_members(self, obj: Any, declared: AbstractSet[str]) -> List[Member]:
        """Public attributes set on ``obj`` itself that its class doesn't declare.

        Plain objects usually assign their attributes in ``__init__`` without
        annotating them. Such members are typed after their current value, so
        a destination attribute initialised to ``0`` still receives an ``int``.
        """
        attrs = getattr(obj, "__dict__", None)
        if not isinstance(attrs, dict):
            return []
        return _value_members(attrs, declared)

    def get_init_params(self, cls: Type) -> List[ConstructorParameter]:
        return self._get_parameters(cls, cls)

    def get_constructors(self, cls: Type) -> List[Constructor]:
        """Ways to build ``cls``: the class itself, then alternative constructors.

        Alternative constructors are public classmethods annotated to return
        the class, in declaration order.
        """
        constructors = [Constructor("__init__", cls, tuple(self.get_init_params(cls)))]
        seen = set()
        for base in cls.__mro__:
            if self._is_library_base(base):
                continue
            for name, attr in vars(base).items():
                if name in seen or name.startswith("_") or not isinstance(attr, classmethod):
                    continue
                seen.add(name)
                if self._returns_instance_of(attr.__func__, cls, base):
                    factory = getattr(cls, name)
                    constructors.append(
                        Constructor(name, factory, tuple(self._get_parameters(factory, cls)))
                    )
        return constructors

    def is_frozen(self, cls: Type) -> bool:
        if issubclass(cls, tuple):
            return True
        params = getattr(cls, "__dataclass_params__", None)
        return bool(params is not None and params.frozen)

    def get_properties(self, cls: Type) -> Iterator[Tuple[str, Any]]:
        found: Dict[str, Any] = {}
        for base in reversed(cls.__mro__):
            if self._is_library_base(base):
                continue
            for name, attr in vars(base).items():
                if isinstance(attr, (property, cached_property)):
                    found[name] = attr
                elif name in found:
                    del found[name]
        return iter(found.items())

    def get_slots(self, cls: Type) -> List[str]:
        names: List[str] = []
        for base in reversed(cls.__mro__):
            slots = vars(base).get("__slots__", ())
            if isinstance(slots, str):
                slots = (slots,)
            names += [s for s in slots if s not in ("__dict__", "__weakref__")]
        return names

    def get_type_hints(self, obj: Any, owner: Optional[Type] = None) -> Dict[str, Any]:
        """Resolved annotations of a class or function.

        Forward references to the owning class resolve even for classes that
        are defined inside functions; anything still unresolvable is ``Any``.
        """
        owner = owner or (obj if isclass(obj) else None)
        try:
            return get_type_hints(obj)
        except (NameError, TypeError, AttributeError):
            pass
        if owner is not None:
            try:
                return get_type_hints(obj, localns={owner.__name__: owner})
            except (NameError, TypeError, AttributeError):
                pass
        logger.debug("Unresolvable annotations on %r, treating them as Any", obj)
        return {name: Any for name in self._raw_annotations(obj)}

    # region Private methods

    def _get_parameters(self, func: Callable, owner: Type) -> List[ConstructorParameter]:
        try:
            sig = signature(func)
        except (TypeError, ValueError):
            return []
        hints = self._get_callable_hints(func, owner)
        return [
            ConstructorParameter(
                name,
                self._parameter_type(param, hints.get(name)),
                param.kind,
                param.default is Parameter.empty,
            )
            for name, param in sig.parameters.items()
            if param.kind not in _VARIADIC and name not in ("self", "cls")
        ]

    def _get_callable_hints(self, func: Callable, owner: Type) -> Dict[str, Any]:
        if isclass(func):
            init = vars(func).get("__init__")
            if init is None:
                for base in func.__mro__[1:]:
                    init = vars(base).get("__init__")
                    if init is not None:
                        break
            if init is None or init is object.__init__:
                return self.get_type_hints(func)
            return {**self.get_type_hints(func), **self.get_type_hints(init, owner)}
        return self.get_type_hints(getattr(func, "__func__", func), owner)

    @staticmethod
    def _parameter_type(param: Parameter, hint: Any) -> Any:
        if param.annotation is not Parameter.empty and not isinstance(param.annotation, str):
            return param.annotation
        return Any if hint is None else hint

    def _describe_property(self, cls: Type, name: str, prop: Any) -> _Discovered:
        if isinstance(prop, cached_property):
            hint = self.get_type_hints(prop.func, cls).get("return", Any)
            return _Discovered(Member(name, hint, "property"), True, False)
        hint = Any
        if prop.fget is not None:
            hint = self.get_type_hints(prop.fget, cls).get("return", Any)
        if hint is Any and prop.fset is not None:
            setter_hints = self.get_type_hints(prop.fset, cls)
            setter_hints.pop("return", None)
            hint = next(iter(setter_hints.values()), Any)
        return _Discovered(
            Member(name, hint, "property"), prop.fget is not None, prop.fset is not None
        )

    def _returns_instance_of(self, func: Callable, cls: Type, owner: Type) -> bool:
        returned = self.get_type_hints(func, owner).get("return")
        if returned is Self:
            return True
        return isclass(returned) and returned is not object and issubclass(cls, returned)

    @staticmethod
    def _is_library_base(base: Type) -> bool:
        return base is object or base.__module__.split(".")[0] in ("pydantic", "builtins")

    @staticmethod
    def _is_class_var(hint: Any) -> bool:
        return hint is ClassVar or get_origin(hint) is ClassVar

    @staticmethod
    def _raw_annotations(obj: Any) -> List[str]:
        if not isclass(obj):
            return list(getattr(obj, "__annotations__", {}))
        names: List[str] = []
        for base in reversed(obj.__mro__):
            try:
                own = get_annotations(base)
            except NameError:
                continue
            names += [n for n in own if n not in names]
        return names

    # endregion


class PydanticModelAdapter(PopoAdapter):
    """Member discovery for pydantic models, driven by ``model_fields``."""

    def discover(self, cls: Type[BaseModel]) -> Dict[str, _Discovered]:
        frozen = bool(cls.model_config.get("frozen", False))
        found: Dict[str, _Discovered] = {}
        for name, field in cls.model_fields.items():
            writable = not frozen and not field.frozen
            found[name] = _Discovered(Member(name, field.annotation, "field"), True, writable)
        for name, computed in cls.model_computed_fields.items():
            found[name] = _Discovered(Member(name, computed.return_type, "property"), True, False)
        for name, prop in self.get_properties(cls):
            if name not in found and not name.startswith("_"):
                found[name] = self._describe_property(cls, name, prop)
        return found

    def instance_members(self, obj: BaseModel, declared: AbstractSet[str]) -> List[Member]:
        # only models with extra="allow" carry undeclared values
        return _value_members(obj.model_extra or {}, declared)

    def is_frozen(self, cls: Type[BaseModel]) -> bool:
        return bool(cls.model_config.get("frozen", False))


def _value_members(values: Dict[str, Any], declared: AbstractSet[str]) -> List[Member]:
    return [
        Member(name, Any if value is None else type(value), "field")
        for name, value in values.items()
        if not name.startswith("_") and name not in declared
    ]


_popo_adapter = PopoAdapter()
_pydantic_adapter = PydanticModelAdapter()


def get_adapter(cls: Type) -> PopoAdapter:
    if isclass(cls) and issubclass(cls, BaseModel):
        return _pydantic_adapter
    return _popo_adapter


def build_property_map(
    source_members: Iterable[Member],
    destination_members: Iterable[Member],
    case_sensitive: bool,
) -> PropertyMap:
    """Pair source and destination members by name.

    Every destination member appears at most once; the first source member
    whose name matches claims it.
    """
    key: Callable[[str], str] = (lambda name: name) if case_sensitive else str.casefold
    by_name: Dict[str, Member] = {}
    for member in destination_members:
        by_name.setdefault(key(member.name), member)

    pairs: List[MemberPair] = []
    claimed = set()
    for source in source_members:
        destination = by_name.get(key(source.name))
        if destination is None or destination.name in claimed:
            continue
        claimed.add(destination.name)
        pairs.append(MemberPair(source, destination))
    return tuple(pairs)


class TypeMapCache:
    """Process-lifetime cache of member discovery results.

    Safe to share between threads: lookups are plain dict reads and inserts
    happen under a lock. Two threads racing on the same key may both compute
    the value; the first insert wins and both results are identical.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    def get_property_map(
        self, source_type: Type, destination_type: Type, case_sensitive: bool
    ) -> PropertyMap:
        return self._get_or_add(
            ("property_map", source_type, destination_type, case_sensitive),
            lambda: self._build_property_map(source_type, destination_type, case_sensitive),
        )

    def get_readable_members(self, cls: Type) -> Tuple[Member, ...]:
        return self._get_or_add(
            ("readable", cls), lambda: tuple(get_adapter(cls).readable_members(cls))
        )

    def get_writable_members(self, cls: Type) -> Tuple[Member, ...]:
        return self._get_or_add(
            ("writable", cls), lambda: tuple(get_adapter(cls).writable_members(cls))
        )

    def get_constructors(self, cls: Type) -> Tuple[Constructor, ...]:
        return self._get_or_add(
            ("constructors", cls), lambda: tuple(get_adapter(cls).get_constructors(cls))
        )

    def get_declared_names(self, cls: Type) -> FrozenSet[str]:
        return self._get_or_add(
            ("declared", cls), lambda: frozenset(get_adapter(cls).discover(cls))
        )

    def get_instance_members(self, obj: Any, writable: bool = False) -> Tuple[Member, ...]:
        """Members held by ``obj`` itself on top of the ones its class declares.

        Never cached, instances of one class may carry different attributes.
        Frozen objects have no writable instance members.
        """
        cls = type(obj)
        adapter = get_adapter(cls)
        if writable and adapter.is_frozen(cls):
            return ()
        return tuple(adapter.instance_members(obj, self.get_declared_names(cls)))

    def __len__(self) -> int:
        return len(self._entries)

    def _build_property_map(
        self, source_type: Type, destination_type: Type, case_sensitive: bool
    ) -> PropertyMap:
        property_map = build_property_map(
            self.get_readable_members(source_type),
            self.get_writable_members(destination_type),
            case_sensitive,
        )
        logger.debug(
            "Computed property map %s -> %s (case_sensitive=%s): %s",
            source_type.__name__,
            destination_type.__name__,
            case_sensitive,
            ", ".join(pair.destination.name for pair in property_map) or "<empty>",
        )
        return property_map

    def _get_or_add(self, key: Hashable, factory: Callable[[], T]) -> T:
        try:
            return self._entries[key]
        except KeyError:
            pass
        value = factory()
        with self._lock:
            return self._entries.setdefault(key, value)
