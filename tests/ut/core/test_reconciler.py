"""锁文件协调器测试"""

from __future__ import annotations

from lockinstall.core.lockfile import parse_lockfile
from lockinstall.core.manifest import Manifest
from lockinstall.core.models import DependencyGraph, GraphNode, Resolution
from lockinstall.core.reconciler import ShrinkwrapReconciler

REG = "http://localhost:4873/"


def _previous():
    return parse_lockfile({
        "version": 2,
        "registry": REG,
        "specifiers": {"is-negative": "^2.0.0", "is-positive": "^1.0.0", "dev-tool": "^1.0.0"},
        "packages": {
            "/": {"dependencies": {
                "is-negative": "2.1.0", "is-positive": "1.0.0", "dev-tool": "1.0.0",
            }},
            "/is-negative/2.1.0": {"resolution": {"integrity": "sha512-neg"}},
            "/is-positive/1.0.0": {"resolution": {"integrity": "sha512-pos"}},
            "/dev-tool/1.0.0": {
                "dependencies": {"helper": "1.0.0"},
                "resolution": {"integrity": "sha512-dev"},
            },
            "/helper/1.0.0": {"resolution": {"integrity": "sha512-help"}},
            "/orphan/1.0.0": {"resolution": {"integrity": "sha512-orphan"}},
        },
    })


class TestPlan:
    def test_unchanged_roots_are_reused(self) -> None:
        manifest = Manifest(
            dependencies={"is-negative": "^2.0.0", "is-positive": "^1.0.0"},
            dev_dependencies={"dev-tool": "^1.0.0"},
        )
        plan = ShrinkwrapReconciler(REG).plan(manifest, _previous())
        assert plan.reused == ["dev-tool", "is-negative", "is-positive"]
        assert {r.name: r.locked_path for r in plan.roots} == {
            "dev-tool": "/dev-tool/1.0.0",
            "is-negative": "/is-negative/2.1.0",
            "is-positive": "/is-positive/1.0.0",
        }
        assert [r.name for r in plan.roots if r.dev] == ["dev-tool"]

    def test_changed_added_removed(self) -> None:
        manifest = Manifest(dependencies={"is-negative": "^2.1.0", "new-pkg": "^1.0.0"})
        plan = ShrinkwrapReconciler(REG).plan(manifest, _previous())
        assert plan.reused == []
        assert plan.changed == ["is-negative"]
        assert plan.added == ["new-pkg"]
        assert plan.removed == ["dev-tool", "is-positive"]

    def test_changed_specifier_re_resolves(self) -> None:
        manifest = Manifest(dependencies={"is-negative": "^3.0.0"})
        plan = ShrinkwrapReconciler(REG).plan(manifest, _previous())
        assert plan.changed == ["is-negative"]
        assert plan.roots[0].locked_path is None

    def test_record_not_satisfying_is_re_resolved(self) -> None:
        previous = _previous()
        previous.specifiers["is-negative"] = "^3.0.0"
        plan = ShrinkwrapReconciler(REG).plan(Manifest(dependencies={"is-negative": "^3.0.0"}), previous)
        assert plan.changed == ["is-negative"]

    def test_no_dependencies_signals_removal(self) -> None:
        plan = ShrinkwrapReconciler(REG).plan(Manifest(), _previous())
        assert plan.remove_lockfile
        assert plan.roots == []

    def test_no_previous_lockfile(self) -> None:
        plan = ShrinkwrapReconciler(REG).plan(Manifest(dependencies={"a": "^1.0.0"}), None)
        assert plan.added == ["a"]
        assert plan.roots[0].locked_path is None

    def test_skip_dev_carries_recorded_subtree(self) -> None:
        manifest = Manifest(
            dependencies={"is-negative": "^2.0.0"},
            dev_dependencies={"dev-tool": "^1.0.0", "other-dev": "^1.0.0"},
        )
        plan = ShrinkwrapReconciler(REG).plan(manifest, _previous(), skip_dev=True)
        assert [r.name for r in plan.roots] == ["is-negative"]
        assert plan.carried == {"dev-tool": "/dev-tool/1.0.0"}
        assert "other-dev" not in plan.specifiers


class TestToLockfile:
    def _graph(self) -> DependencyGraph:
        graph = DependencyGraph(roots={"is-negative": "/is-negative/2.1.0"})
        graph.nodes["/is-negative/2.1.0"] = GraphNode(
            dep_path="/is-negative/2.1.0",
            name="is-negative",
            version="2.1.0",
            resolution=_previous().packages["/is-negative/2.1.0"].resolution,
            declared={},
            locked=True,
        )
        return graph

    def test_orphans_dropped(self) -> None:
        previous = _previous()
        rec = ShrinkwrapReconciler(REG)
        plan = rec.plan(Manifest(dependencies={"is-negative": "^2.0.0"}), previous)
        lockfile = rec.to_lockfile(self._graph(), plan, previous)
        assert sorted(lockfile.packages) == ["/", "/is-negative/2.1.0"]
        assert lockfile.specifiers == {"is-negative": "^2.0.0"}

    def test_unchanged_snapshot_copied_by_reference(self) -> None:
        previous = _previous()
        rec = ShrinkwrapReconciler(REG)
        plan = rec.plan(Manifest(dependencies={"is-negative": "^2.0.0"}), previous)
        lockfile = rec.to_lockfile(self._graph(), plan, previous)
        assert lockfile.packages["/is-negative/2.1.0"] is previous.packages["/is-negative/2.1.0"]

    def test_fresh_node_gets_new_snapshot(self) -> None:
        graph = self._graph()
        graph.nodes["/is-negative/2.1.0"].locked = False
        graph.nodes["/is-negative/2.1.0"].resolution = Resolution(integrity="sha512-new")
        rec = ShrinkwrapReconciler(REG)
        plan = rec.plan(Manifest(dependencies={"is-negative": "^2.0.0"}), None)
        lockfile = rec.to_lockfile(graph, plan, None)
        assert lockfile.packages["/is-negative/2.1.0"].resolution == Resolution(integrity="sha512-new")
        assert lockfile.registry == REG
        assert lockfile.version == 2

    def test_carried_dev_subtree_kept(self) -> None:
        previous = _previous()
        rec = ShrinkwrapReconciler(REG)
        manifest = Manifest(
            dependencies={"is-negative": "^2.0.0"}, dev_dependencies={"dev-tool": "^1.0.0"},
        )
        plan = rec.plan(manifest, previous, skip_dev=True)
        lockfile = rec.to_lockfile(self._graph(), plan, previous)
        assert lockfile.root.dependencies["dev-tool"] == "/dev-tool/1.0.0"
        assert "/helper/1.0.0" in lockfile.packages
        assert "/orphan/1.0.0" not in lockfile.packages
        assert lockfile.specifiers == {"dev-tool": "^1.0.0", "is-negative": "^2.0.0"}
