"""Tests for the progress rollup propagator."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from wbs_tracker.core.exceptions import NotFoundError, StructuralIntegrityError
from wbs_tracker.models import db
from wbs_tracker.services.progress_rollup import (
    derive_status,
    recompute_ancestors,
    recompute_node,
    recompute_project,
    round_half_up,
    weighted_progress,
)
from wbs_tracker.services.wbs_store import WbsItemStore

from wbs_helpers import build_package, load


def _child(progress, weight=1.0):
    return SimpleNamespace(progress=progress, weight=weight)


class TestDeriveStatus:
    @pytest.mark.parametrize(
        "progress, status",
        [(0, "PENDING"), (1, "IN_PROGRESS"), (99, "IN_PROGRESS"), (100, "COMPLETED")],
    )
    def test_thresholds(self, progress, status):
        assert derive_status(progress) == status


class TestWeightedProgress:
    def test_equal_weights(self):
        assert weighted_progress([_child(50), _child(100)]) == 75

    def test_weighted(self):
        assert weighted_progress([_child(100, 3), _child(0, 1)]) == 75

    def test_half_rounds_up(self):
        assert weighted_progress([_child(2), _child(3)]) == 3
        assert round_half_up(74.5) == 75
        assert round_half_up(0.5) == 1

    def test_single_rounding_path(self):
        with patch(
            "wbs_tracker.services.progress_rollup.round_half_up", wraps=round_half_up,
        ) as rounding:
            assert weighted_progress([_child(0), _child(1)]) == 1
        rounding.assert_called_once_with(Decimal("0.5"))
        assert round_half_up(Decimal("2.5")) == 3

    def test_unset_weight_counts_as_one(self):
        assert weighted_progress([_child(100, None), _child(0, 1)]) == 50

    def test_zero_total_weight(self):
        assert weighted_progress([_child(80, 0)]) == 0
        assert weighted_progress([]) == 0


class TestRecompute:
    def test_leaf_is_left_alone(self, project):
        tree = build_package(project.id)
        store = WbsItemStore()
        leaf = load(tree["task_a1"])
        leaf.progress = 30
        db.session.commit()

        assert recompute_node(store, load(tree["task_a1"])) is False
        assert load(tree["task_a1"]).progress == 30

    def test_walk_updates_every_ancestor(self, project):
        tree = build_package(project.id)
        store = WbsItemStore()
        task = load(tree["task_a1"])
        task.progress = 100
        task.status = "COMPLETED"
        db.session.commit()

        with store.transaction():
            count = recompute_ancestors(store, tree["pkg_a"]["id"])

        assert count == 3
        assert load(tree["pkg_a"]).progress == 50
        assert load(tree["group"]).progress == 25
        assert load(tree["phase"]).progress == 25

    def test_walk_skips_leaf_start_and_continues(self, project):
        tree = build_package(project.id)
        store = WbsItemStore()
        pkg_b = load(tree["pkg_b"])
        pkg_b.progress = 100
        pkg_b.status = "COMPLETED"
        db.session.commit()

        with store.transaction():
            count = recompute_ancestors(store, tree["pkg_b"]["id"])

        assert count == 2
        assert load(tree["group"]).progress == 50

    def test_cycle_is_detected(self, project):
        tree = build_package(project.id)
        phase = load(tree["phase"])
        phase.parent_id = tree["task_a1"]["id"]
        db.session.commit()

        store = WbsItemStore()
        with pytest.raises(StructuralIntegrityError):
            with store.transaction():
                recompute_ancestors(store, tree["pkg_a"]["id"])

    def test_missing_start_node(self, project):
        with pytest.raises(NotFoundError):
            recompute_ancestors(WbsItemStore(), "missing")

    def test_recompute_project_bottom_up(self, project):
        tree = build_package(project.id)
        for key in ("task_a1", "task_a2", "pkg_b"):
            row = load(tree[key])
            row.progress = 100
            row.status = "COMPLETED"
        db.session.commit()

        store = WbsItemStore()
        with store.transaction():
            assert recompute_project(store, project.id) == 3

        assert load(tree["phase"]).progress == 100
        assert load(tree["phase"]).status == "COMPLETED"
