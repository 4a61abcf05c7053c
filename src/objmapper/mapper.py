from __future__ import annotations

import logging
from collections import abc
from inspect import Parameter, isclass
from typing import (
    Any,
    Dict,
    FrozenSet,
    List,
    NoReturn,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    overload,
)

from .context import MappingContext
from .errors import ConstructionError, ConversionError, MappingError
from .introspection import (
    Constructor,
    ConstructorParameter,
    Member,
    MemberPair,
    PropertyMap,
    TypeMapCache,
    build_property_map,
)
from .options import ConversionFailure, MappingOptions
from .scalars import try_convert
from .sequences import SequenceAdapter
from .typeinfo import (
    MISSING,
    is_assignable,
    is_simple_type,
    sequence_shape,
    type_name,
    unwrap_optional,
    zero_value,
)

logger = logging.getLogger(__name__)

TT = TypeVar("TT")

Resolution = Tuple[bool, Any]


class Mapper:
    """Maps arbitrary objects onto destination types by member name.

    The mapper itself is stateless apart from its ``TypeMapCache``, so a
    single instance can serve any number of concurrent ``map`` calls.

    Example::

        mapper = Mapper()
        dto = mapper.map(user, UserDto)
        mapper.map_into(form, existing_user, MappingOptions(ignore_null_values=True))
    """

    def __init__(self, cache: Optional[TypeMapCache] = None) -> None:
        self.cache = cache if cache is not None else TypeMapCache()
        self.sequences = SequenceAdapter(self._map, self._element_failed)

    @overload
    def map(
        self, source: Any, target: Type[TT], options: Optional[MappingOptions] = None
    ) -> Optional[TT]: ...

    @overload
    def map(
        self, source: Any, target: Any, options: Optional[MappingOptions] = None
    ) -> Any: ...

    def map(
        self, source: Any, target: Any, options: Optional[MappingOptions] = None
    ) -> Any:
        """Map ``source`` to a new value of type ``target``.

        Args:
            source: Object (or sequence of objects) to map from.
            target: Destination class or type hint, e.g. ``UserDto`` or
                ``list[UserDto]``.
            options: Mapping configuration, defaults to ``MappingOptions()``.

        The result may be ``source`` itself when it already is a ``target``.
        """
        if target is None:
            raise TypeError("Target type can't be None.")
        context = MappingContext(options or MappingOptions())
        return self._run(source, target, None, context)

    def map_into(
        self, source: Any, destination: TT, options: Optional[MappingOptions] = None
    ) -> TT:
        """Map ``source`` onto the caller owned ``destination`` and return it."""
        if destination is None:
            raise ValueError("Destination instance can't be None.")
        context = MappingContext(options or MappingOptions())
        self._run(source, type(destination), destination, context)
        return destination

    # region Private methods
    # These methods are not intended to be used outside of this class.

    def _run(
        self, source: Any, target: Any, existing: Optional[Any], context: MappingContext
    ) -> Any:
        try:
            return self._map(source, target, existing, context)
        except Exception as e:
            if not context.mark_reported(e):
                raise
            self._report(context, e, type(source), target, None)
            if isinstance(e, ConstructionError) or self._should_raise(e, context.options):
                raise
            logger.debug(
                "Mapping %s onto %s failed: %s", type(source).__name__, type_name(target), e
            )
            return existing if existing is not None else zero_value(target)

    def _map(
        self,
        source: Any,
        destination_type: Any,
        existing: Optional[Any],
        context: MappingContext,
    ) -> Any:
        if source is None:
            return existing if existing is not None else zero_value(destination_type)

        if existing is None and is_assignable(source, destination_type):
            return source

        options = context.options
        _, target = unwrap_optional(destination_type)

        found, converted = self._try_custom(source, destination_type, target, options)
        if found:
            return converted

        if is_simple_type(type(source)) and is_simple_type(target):
            ok, converted = try_convert(source, target, options)
            if ok:
                return converted
            return self._conversion_failed(source, target, existing, options)

        ok, mapped = self.sequences.try_map(source, target, existing, context)
        if ok:
            return mapped

        return self._map_object(source, target, existing, context)

    def _map_object(
        self, source: Any, target: Any, existing: Optional[Any], context: MappingContext
    ) -> Any:
        cls = type(existing) if existing is not None else target
        self._guard_mappable_object_type(source, cls)
        key = target if isclass(target) else cls

        already = context.references.get(source, key)
        if already is not MISSING:
            return already
        if context.is_constructing(source, key):
            raise ConstructionError(
                f"Cyclic reference: {type_name(key)} for source object "
                f"{type(source).__name__} is still being constructed."
            )

        consumed: FrozenSet[str] = frozenset()
        if existing is None:
            with context.constructing(source, key):
                destination, consumed = self._construct(source, cls, context)
        else:
            destination = existing

        context.references.register(source, key, destination)
        self._populate(source, destination, consumed, context)
        return destination

    def _populate(
        self,
        source: Any,
        destination: Any,
        consumed: FrozenSet[str],
        context: MappingContext,
    ) -> None:
        options = context.options
        for pair in self._property_map(source, destination, options):
            name = pair.destination.name
            if name in consumed or options.is_ignored(name):
                continue
            try:
                self._map_member(source, destination, pair, context)
            except Exception as e:
                if not context.mark_reported(e):
                    raise
                self._report(context, e, type(source), type(destination), name)
                if self._should_raise(e, options):
                    raise
                logger.debug(
                    "Skipped member %s.%s after error: %s",
                    type(destination).__name__,
                    name,
                    e,
                )

    def _property_map(
        self, source: Any, destination: Any, options: MappingOptions
    ) -> PropertyMap:
        cache = self.cache
        source_type, destination_type = type(source), type(destination)
        property_map = cache.get_property_map(
            source_type, destination_type, options.case_sensitive
        )
        source_extra = cache.get_instance_members(source)
        destination_extra = cache.get_instance_members(destination, writable=True)
        if not source_extra and not destination_extra:
            return property_map
        return build_property_map(
            cache.get_readable_members(source_type) + source_extra,
            cache.get_writable_members(destination_type) + destination_extra,
            options.case_sensitive,
        )

    def _map_member(
        self, source: Any, destination: Any, pair: MemberPair, context: MappingContext
    ) -> None:
        options = context.options
        value = pair.source.get(source)
        if value is MISSING:
            return
        if value is None and options.ignore_null_values:
            return

        member = pair.destination
        existing = member.current(destination)
        ok, converted = self._resolve_value(value, member.type, existing, context)
        if not ok:
            policy = options.conversion_failure
            if policy is ConversionFailure.THROW:
                raise ConversionError(
                    f"Cannot convert value of type {type(value).__name__} to "
                    f"{type_name(member.type)} for member '{member.name}'."
                )
            if policy is ConversionFailure.SKIP:
                return
            converted = zero_value(member.type)
        member.set(destination, converted)

    def _resolve_value(
        self,
        value: Any,
        destination_type: Any,
        existing: Optional[Any],
        context: MappingContext,
    ) -> Resolution:
        """Produce the value to store in a member of ``destination_type``.

        Answers ``(False, None)`` only for a scalar that can't be coerced to a
        scalar destination; everything else either converts or recurses.
        """
        if value is None:
            return True, zero_value(destination_type)
        if is_assignable(value, destination_type):
            return True, value

        options = context.options
        _, target = unwrap_optional(destination_type)
        found, converted = self._try_custom(value, destination_type, target, options)
        if found:
            return True, converted

        ok, converted = try_convert(value, destination_type, options)
        if ok:
            return True, converted

        ok, converted = self.sequences.try_map(value, target, existing, context)
        if ok:
            return True, converted

        if is_simple_type(type(value)) and is_simple_type(target):
            return False, None
        return True, self._map(value, target, existing, context)

    def _try_custom(
        self, value: Any, destination_type: Any, target: Any, options: MappingOptions
    ) -> Resolution:
        converters = options.converters
        if not len(converters):
            return False, None
        found, converted = converters.try_resolve(value, destination_type)
        if not found and target is not destination_type:
            found, converted = converters.try_resolve(value, target)
        return found, converted

    def _conversion_failed(
        self, value: Any, target: Any, existing: Optional[Any], options: MappingOptions
    ) -> Any:
        policy = options.conversion_failure
        if policy is ConversionFailure.THROW:
            raise ConversionError(
                f"Cannot convert value of type {type(value).__name__} to {type_name(target)}."
            )
        if policy is ConversionFailure.SKIP and existing is not None:
            return existing
        return zero_value(target)

    def _element_failed(
        self,
        error: Exception,
        item: Any,
        element_type: Any,
        index: int,
        context: MappingContext,
    ) -> Any:
        _, target = unwrap_optional(element_type)
        if isinstance(error, ConstructionError) and context.is_constructing(item, target):
            # cycle back into a pending constructor, the argument stays unsatisfied
            raise error
        if not context.mark_reported(error):
            raise error
        self._report(context, error, type(item), element_type, f"[{index}]")
        if self._should_raise(error, context.options):
            raise error
        logger.debug("Element [%d] set to its zero value after error: %s", index, error)
        return zero_value(element_type)

    @staticmethod
    def _should_raise(error: Exception, options: MappingOptions) -> bool:
        if options.strict_mode:
            return True
        return (
            isinstance(error, ConversionError)
            and options.conversion_failure is ConversionFailure.THROW
        )

    @staticmethod
    def _report(
        context: MappingContext,
        error: Exception,
        source_type: Any,
        destination_type: Any,
        member: Optional[str],
    ) -> None:
        handler = context.options.error_handler
        if handler is None:
            return
        try:
            handler(MappingError(source_type, destination_type, member, error))
        except Exception as handler_error:
            # the handler's own failure must not be reported again by outer members
            context.mark_reported(handler_error)
            raise

    # region Construction

    def _construct(
        self, source: Any, cls: Type[TT], context: MappingContext
    ) -> Tuple[TT, FrozenSet[str]]:
        constructors = self.cache.get_constructors(cls)
        if constructors[0].is_parameterless:
            return self._call_constructor(source, cls, constructors[0], {})

        selected = self._select_constructor(source, cls, constructors, context)
        if selected is None:
            self._raise_unsatisfied_constructor_error(source, cls, constructors[0], context)
        constructor, arguments = selected
        logger.debug(
            "Constructing %s via %s(%s)",
            cls.__name__,
            constructor.name,
            ", ".join(arguments),
        )
        return self._call_constructor(source, cls, constructor, arguments)

    def _select_constructor(
        self,
        source: Any,
        cls: Type,
        constructors: Sequence[Constructor],
        context: MappingContext,
    ) -> Optional[Tuple[Constructor, Dict[str, Any]]]:
        """Pick the constructor satisfying the most parameters.

        Ties go to the constructor with fewer parameters, then to the one
        declared first.
        """
        resolved: Dict[Tuple[str, int], Resolution] = {}
        best: Optional[Tuple[Constructor, Dict[str, Any]]] = None
        best_rank: Optional[Tuple[int, int, int]] = None

        for index, constructor in enumerate(constructors):
            arguments = self._satisfy(source, constructor, resolved, context)
            if arguments is None:
                continue
            rank = (-len(arguments), len(constructor.parameters), index)
            if best_rank is None or rank < best_rank:
                best, best_rank = (constructor, arguments), rank
        return best

    def _satisfy(
        self,
        source: Any,
        constructor: Constructor,
        resolved: Dict[Tuple[str, int], Resolution],
        context: MappingContext,
    ) -> Optional[Dict[str, Any]]:
        members = self._source_members_by_name(source, context)
        arguments: Dict[str, Any] = {}
        for param in constructor.parameters:
            member = None
            if not context.options.is_ignored(param.name):
                member = members.get(self._name_key(param.name, context))
            ok, value = (False, None)
            if member is not None:
                ok, value = self._resolve_argument(source, member, param, resolved, context)
            if ok:
                arguments[param.name] = value
            elif param.required:
                return None
        return arguments

    def _resolve_argument(
        self,
        source: Any,
        member: Member,
        param: ConstructorParameter,
        resolved: Dict[Tuple[str, int], Resolution],
        context: MappingContext,
    ) -> Resolution:
        key = (member.name, id(param.type))
        if key in resolved:
            return resolved[key]

        value = member.get(source)
        if value is MISSING or (value is None and context.options.ignore_null_values):
            result: Resolution = (False, None)
        else:
            try:
                result = self._resolve_value(value, param.type, None, context)
            except Exception as e:
                logger.debug(
                    "Parameter %s can't be satisfied from %s.%s: %s",
                    param.name,
                    type(source).__name__,
                    member.name,
                    e,
                )
                result = (False, None)
        resolved[key] = result
        return result

    def _call_constructor(
        self,
        source: Any,
        cls: Type[TT],
        constructor: Constructor,
        arguments: Dict[str, Any],
    ) -> Tuple[TT, FrozenSet[str]]:
        args: List[Any] = []
        kwargs = dict(arguments)
        for param in constructor.parameters:
            if param.kind is not Parameter.POSITIONAL_ONLY:
                break
            if param.name not in kwargs:
                break
            args.append(kwargs.pop(param.name))
        # positional-only values after a gap can't be passed
        for param in constructor.parameters:
            if param.kind is Parameter.POSITIONAL_ONLY:
                kwargs.pop(param.name, None)

        try:
            instance = constructor.factory(*args, **kwargs)
        except Exception as e:
            raise ConstructionError(
                f"Failed to construct target object {cls.__name__} from source "
                f"object {type(source).__name__}: {e}"
            ) from e
        if not isinstance(instance, cls):
            raise ConstructionError(
                f"{cls.__name__}.{constructor.name} returned "
                f"{type(instance).__name__}, expected {cls.__name__}."
            )
        passed = [p.name for p in constructor.parameters[: len(args)]]
        return instance, frozenset(passed) | frozenset(kwargs)

    def _source_members_by_name(
        self, source: Any, context: MappingContext
    ) -> Dict[str, Member]:
        readable = self.cache.get_readable_members(type(source))
        members: Dict[str, Member] = {}
        for member in readable + self.cache.get_instance_members(source):
            members.setdefault(self._name_key(member.name, context), member)
        return members

    @staticmethod
    def _name_key(name: str, context: MappingContext) -> str:
        return name if context.options.case_sensitive else name.casefold()

    def _raise_unsatisfied_constructor_error(
        self,
        source: Any,
        cls: Type,
        constructor: Constructor,
        context: MappingContext,
    ) -> NoReturn:
        members = self._source_members_by_name(source, context)
        missing = sorted(
            p.name
            for p in constructor.parameters
            if p.required and self._name_key(p.name, context) not in members
        )
        if not missing:
            raise ConstructionError(
                f"Source object {type(source).__name__} can't satisfy any constructor "
                f"of target object {cls.__name__}."
            )
        if len(missing) == 1:
            attributes_string = f"attribute {missing[0]}"
        else:
            attributes_string = f"attributes {', '.join(missing[:-1])} and {missing[-1]}"
        raise ConstructionError(
            f"Source object {type(source).__name__} is missing required "
            f"{attributes_string} for target object {cls.__name__}."
        )

    # endregion

    def _guard_mappable_object_type(self, source: Any, cls: Any) -> None:
        if (
            isclass(cls)
            and not is_simple_type(cls)
            and not issubclass(cls, (abc.Mapping, abc.Set))
            and sequence_shape(cls) is None
        ):
            return
        raise ConstructionError(
            f"Can't map source object {type(source).__name__} onto {type_name(cls)}."
        )

    # endregion


_default_mapper = Mapper()


def adapt(
    source: Any, target: Any, options: Optional[MappingOptions] = None
) -> Any:
    """``Mapper.map`` on the process-wide default mapper."""
    return _default_mapper.map(source, target, options)


def adapt_into(
    source: Any, destination: TT, options: Optional[MappingOptions] = None
) -> TT:
    """``Mapper.map_into`` on the process-wide default mapper."""
    return _default_mapper.map_into(source, destination, options)
