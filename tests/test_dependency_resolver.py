"""
Tests for dependency and conflict classification.
"""

from dependency_resolver import DependencyResolver
from tests.conftest import make_descriptor


def make_resolver(descriptors, installed=(), enabled=None):
    enabled = installed if enabled is None else enabled
    return DependencyResolver(
        {d.id: d for d in descriptors},
        lambda: set(installed),
        lambda: set(enabled),
    )


# ── dependencies ────────────────────────────────────────────────────────────

def test_missing_requirement_is_reported():
    descriptors = [
        make_descriptor("x", Requirements=["a", "b"]),
        make_descriptor("a"),
        make_descriptor("b"),
    ]
    result = make_resolver(descriptors, installed={"a"}).check_dependencies("x")

    assert not result.all_satisfied
    assert result.missing_ids == ["b"]


def test_all_requirements_satisfied():
    descriptors = [make_descriptor("x", Requirements=["a", "b"]), make_descriptor("a"), make_descriptor("b")]
    result = make_resolver(descriptors, installed={"a", "b"}).check_dependencies("x")

    assert result.all_satisfied
    assert result.missing_ids == []


def test_disabled_requirement_counts_as_missing():
    descriptors = [make_descriptor("x", Requirements=["a"]), make_descriptor("a")]
    result = make_resolver(descriptors, installed={"a"}, enabled=set()).check_dependencies("x")

    assert result.missing_ids == ["a"]


def test_missing_ids_are_sorted():
    descriptors = [make_descriptor("x", Requirements=["zeta", "alpha", "mid"])]
    assert make_resolver(descriptors).check_dependencies("x").missing_ids == ["alpha", "mid", "zeta"]


def test_unknown_mod_has_no_requirements():
    assert make_resolver([]).check_dependencies("ghost").all_satisfied


# ── conflicts ───────────────────────────────────────────────────────────────

def test_conflict_declared_by_either_side_is_reported_once():
    for declarer, other in (("x", "y"), ("y", "x")):
        descriptors = [make_descriptor(declarer, Conflicts=[other]), make_descriptor(other)]
        result = make_resolver(descriptors, installed={"x", "y"}).check_all_enabled_conflicts()

        assert result.has_conflicts
        assert result.conflicting_pairs == [("x", "y")]


def test_mutual_declaration_reports_single_pair():
    descriptors = [make_descriptor("x", Conflicts=["y"]), make_descriptor("y", Conflicts=["x"])]
    result = make_resolver(descriptors, installed={"x", "y"}).check_all_enabled_conflicts()

    assert result.conflicting_pairs == [("x", "y")]
    assert result.conflicting_ids == ["x", "y"]


def test_disabled_mod_does_not_conflict():
    descriptors = [make_descriptor("x", Conflicts=["y"]), make_descriptor("y")]
    result = make_resolver(descriptors, installed={"x", "y"}, enabled={"x"}).check_all_enabled_conflicts()

    assert not result.has_conflicts
    assert result.conflicting_pairs == []


def test_install_conflicts_cover_both_directions():
    descriptors = [
        make_descriptor("new", Conflicts=["a"]),
        make_descriptor("a"),
        make_descriptor("b", Conflicts=["new"]),
        make_descriptor("c"),
    ]
    result = make_resolver(descriptors, installed={"a", "b", "c"}).check_install_conflicts("new")

    assert result.conflicting_pairs == [("a", "new"), ("b", "new")]


def test_resolver_reads_state_on_every_call():
    enabled = {"a"}
    resolver = DependencyResolver(
        {"x": make_descriptor("x", Requirements=["a"])}, lambda: set(enabled), lambda: set(enabled)
    )
    assert resolver.check_dependencies("x").all_satisfied

    enabled.clear()
    assert not resolver.check_dependencies("x").all_satisfied
