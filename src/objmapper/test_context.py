from dataclasses import dataclass

import pytest

from objmapper import MappingOptions
from objmapper.context import MappingContext, ReferenceTracker
from objmapper.typeinfo import MISSING


@dataclass
class Point:
    x: int = 0


class Target:
    pass


class Other:
    pass


@pytest.fixture
def tracker():
    return ReferenceTracker()


class TestReferenceTracker:
    """Sources are tracked by identity, per destination type."""

    def test_absent_source(self, tracker):
        assert tracker.get(Point(), Target) is MISSING

    def test_registered_source(self, tracker):
        source, destination = Point(), Target()

        tracker.register(source, Target, destination)

        assert tracker.get(source, Target) is destination
        assert len(tracker) == 1

    def test_equal_sources_are_distinct(self, tracker):
        first, second = Point(1), Point(1)

        tracker.register(first, Target, Target())

        assert first == second
        assert tracker.get(second, Target) is MISSING

    def test_destination_type_is_part_of_the_key(self, tracker):
        source = Point()

        tracker.register(source, Target, Target())

        assert tracker.get(source, Other) is MISSING


class TestMappingContext:
    def test_constructing_scope(self):
        context = MappingContext(MappingOptions())
        source = Point()

        with context.constructing(source, Target):
            assert context.is_constructing(source, Target)
            assert not context.is_constructing(source, Other)
        assert not context.is_constructing(source, Target)

    def test_constructing_scope_is_left_on_error(self):
        context = MappingContext(MappingOptions())
        source = Point()

        with pytest.raises(RuntimeError):
            with context.constructing(source, Target):
                raise RuntimeError("boom")

        assert not context.is_constructing(source, Target)

    def test_errors_are_reported_once(self):
        context = MappingContext(MappingOptions())
        error = ValueError("bad")

        assert context.mark_reported(error)
        assert not context.mark_reported(error)
        assert context.mark_reported(ValueError("bad"))

    def test_each_context_is_fresh(self):
        options = MappingOptions()

        first = MappingContext(options)
        first.references.register(Point(), Target, Target())

        assert len(MappingContext(options).references) == 0
