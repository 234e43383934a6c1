"""依赖图构建测试：去重、隔离、锁定复用、循环保护"""

from __future__ import annotations

from pathlib import Path

import pytest

from lockinstall.core.dep.resolver import SpecifierResolver
from lockinstall.core.exceptions import CyclicDependencyError, NoMatchingVersionError
from lockinstall.core.graph import DependencyGraphBuilder
from lockinstall.core.lockfile import parse_lockfile
from lockinstall.core.models import RootRequest
from lockinstall.core.store import ContentStore, compute_digests

REG = "http://localhost:4873/"


def _builder(registry, store: ContentStore, **kwargs) -> DependencyGraphBuilder:
    return DependencyGraphBuilder(
        SpecifierResolver(registry, REG), store, registry.fetch, **kwargs,
    )


def _shape(graph) -> dict:
    return {
        "roots": dict(graph.roots),
        "nodes": {p: dict(n.dependencies) for p, n in sorted(graph.nodes.items())},
    }


class TestResolution:
    def test_single_dependency(self, registry, store) -> None:
        graph = _builder(registry, store).build([RootRequest("pkg-with-1-dep", "^100.0.0")])
        assert graph.roots == {"pkg-with-1-dep": "/pkg-with-1-dep/100.0.0"}
        node = graph.nodes["/pkg-with-1-dep/100.0.0"]
        assert node.dependencies == {"dep-of-pkg-with-1-dep": "/dep-of-pkg-with-1-dep/100.0.0"}
        assert node.parent == "/"

    def test_scoped_root(self, registry, store) -> None:
        graph = _builder(registry, store).build([RootRequest("@scope/name", "5.3.31")])
        assert graph.roots == {"@scope/name": "/@scope/name/5.3.31"}

    def test_missing_subdependency_fails_whole_build(self, registry, store) -> None:
        registry.publish("broken", "1.0.0", {"does-not-exist": "^1.0.0"})
        with pytest.raises(NoMatchingVersionError):
            _builder(registry, store).build([
                RootRequest("is-positive", "^1.0.0"),
                RootRequest("broken", "1.0.0"),
            ])


class TestDedupAndIsolation:
    def test_shared_compatible_version_has_one_path(self, registry, store) -> None:
        graph = _builder(registry, store).build([
            RootRequest("is-negative", "^2.0.0"),
            RootRequest("needs-negative-2", "1.0.0"),
        ])
        paths = [p for p in graph.nodes if p.startswith("/is-negative/")]
        assert paths == ["/is-negative/2.1.0"]
        assert graph.nodes["/needs-negative-2/1.0.0"].dependencies["is-negative"] == graph.roots["is-negative"]

    def test_reuse_wins_over_newer_upstream(self, registry, store) -> None:
        graph = _builder(registry, store).build([
            RootRequest("is-negative", "2.0.0"),
            RootRequest("needs-negative-2", "1.0.0"),
        ])
        assert graph.nodes["/needs-negative-2/1.0.0"].dependencies["is-negative"] == "/is-negative/2.0.0"
        assert "/is-negative/2.1.0" not in graph.nodes

    def test_incompatible_ranges_are_isolated(self, registry, store) -> None:
        graph = _builder(registry, store).build([
            RootRequest("needs-negative-1", "1.0.0"),
            RootRequest("needs-negative-2", "1.0.0"),
        ])
        assert graph.nodes["/needs-negative-1/1.0.0"].dependencies == {"is-negative": "/is-negative/1.0.0"}
        assert graph.nodes["/needs-negative-2/1.0.0"].dependencies == {"is-negative": "/is-negative/2.1.0"}

    def test_metadata_requested_once_per_name(self, registry, store) -> None:
        _builder(registry, store).build([
            RootRequest("needs-negative-1", "1.0.0"),
            RootRequest("needs-negative-2", "1.0.0"),
        ])
        assert registry.metadata_calls["is-negative"] == 1

    def test_deterministic_across_concurrency(self, registry, tmp_path: Path) -> None:
        roots = [
            RootRequest("needs-negative-2", "1.0.0"),
            RootRequest("needs-negative-1", "1.0.0"),
            RootRequest("pkg-with-1-dep", "^100.0.0"),
            RootRequest("is-negative", "*"),
        ]
        serial = _builder(registry, ContentStore(tmp_path / "s1"), concurrency=1).build(roots)
        parallel = _builder(registry, ContentStore(tmp_path / "s2"), concurrency=8).build(roots)
        assert _shape(serial) == _shape(parallel)


class TestCycles:
    def test_real_cycle_is_deduplicated(self, registry, store) -> None:
        registry.publish("cyc-a", "1.0.0", {"cyc-b": "^1.0.0"})
        registry.publish("cyc-b", "1.0.0", {"cyc-a": "^1.0.0"})
        graph = _builder(registry, store).build([RootRequest("cyc-a", "^1.0.0")])
        assert graph.nodes["/cyc-b/1.0.0"].dependencies == {"cyc-a": "/cyc-a/1.0.0"}

    def test_depth_guard_reports_chain(self, registry, store) -> None:
        registry.publish("chain-1", "1.0.0", {"chain-2": "^1.0.0"})
        registry.publish("chain-2", "1.0.0", {"chain-3": "^1.0.0"})
        registry.publish("chain-3", "1.0.0")
        with pytest.raises(CyclicDependencyError) as exc:
            _builder(registry, store, max_depth=2).build([RootRequest("chain-1", "^1.0.0")])
        assert exc.value.cycle == ["/", "/chain-1/1.0.0", "/chain-2/1.0.0", "chain-3@^1.0.0"]
        assert "chain" in exc.value.context


class TestLockedSubtrees:
    def _previous(self, registry, dep_ref: str, dep_version: str):
        dep_data = registry.tarball("dep-of-pkg-with-1-dep", dep_version)
        pkg_data = registry.tarball("pkg-with-1-dep", "100.0.0")
        return parse_lockfile({
            "version": 2,
            "registry": REG,
            "specifiers": {"pkg-with-1-dep": "^100.0.0"},
            "packages": {
                "/": {"dependencies": {"pkg-with-1-dep": "100.0.0"}},
                "/pkg-with-1-dep/100.0.0": {
                    "dependencies": {"dep-of-pkg-with-1-dep": dep_ref},
                    "resolution": {"integrity": compute_digests(pkg_data)[0]},
                },
                f"/dep-of-pkg-with-1-dep/{dep_version}": {
                    "resolution": {"integrity": compute_digests(dep_data)[0]},
                },
            },
        })

    def test_locked_path_skips_registry(self, registry, store) -> None:
        previous = self._previous(registry, "100.1.0", "100.1.0")
        graph = _builder(registry, store, previous=previous).build([
            RootRequest("pkg-with-1-dep", "^100.0.0", locked_path="/pkg-with-1-dep/100.0.0"),
        ])
        assert graph.nodes["/pkg-with-1-dep/100.0.0"].locked
        assert graph.nodes["/pkg-with-1-dep/100.0.0"].dependencies == {
            "dep-of-pkg-with-1-dep": "/dep-of-pkg-with-1-dep/100.1.0",
        }
        assert registry.metadata_calls == {}

    def test_out_of_range_record_is_re_resolved(self, registry, store) -> None:
        registry.publish("dep-of-pkg-with-1-dep", "99.0.0", tag_latest=False)
        previous = self._previous(registry, "99.0.0", "99.0.0")
        graph = _builder(registry, store, previous=previous).build([
            RootRequest("pkg-with-1-dep", "^100.0.0", locked_path="/pkg-with-1-dep/100.0.0"),
        ])
        assert graph.nodes["/pkg-with-1-dep/100.0.0"].dependencies == {
            "dep-of-pkg-with-1-dep": "/dep-of-pkg-with-1-dep/100.0.0",
        }
        assert "/dep-of-pkg-with-1-dep/99.0.0" not in graph.nodes

    def test_dangling_record_is_re_resolved(self, registry, store) -> None:
        previous = self._previous(registry, "100.0.0", "100.0.0")
        del previous.packages["/dep-of-pkg-with-1-dep/100.0.0"]
        graph = _builder(registry, store, previous=previous).build([
            RootRequest("pkg-with-1-dep", "^100.0.0", locked_path="/pkg-with-1-dep/100.0.0"),
        ])
        assert not graph.nodes["/dep-of-pkg-with-1-dep/100.0.0"].locked
        assert registry.metadata_calls["dep-of-pkg-with-1-dep"] == 1

    def test_fresh_edge_prefers_recorded_compatible_version(self, registry, store) -> None:
        previous = self._previous(registry, "100.0.0", "100.0.0")
        registry.tag("dep-of-pkg-with-1-dep", "latest", "100.1.0")
        graph = _builder(registry, store, previous=previous).build([
            RootRequest("dep-of-pkg-with-1-dep", "^100.0.0"),
            RootRequest("pkg-with-1-dep", "^100.0.0", locked_path="/pkg-with-1-dep/100.0.0"),
        ])
        assert graph.roots["dep-of-pkg-with-1-dep"] == "/dep-of-pkg-with-1-dep/100.0.0"
        assert "/dep-of-pkg-with-1-dep/100.1.0" not in graph.nodes
        assert registry.metadata_calls["dep-of-pkg-with-1-dep"] == 0


class TestNonRegistrySources:
    def test_tarball_dependencies_read_from_content(self, registry, store, tarball_factory) -> None:
        url = "https://example.com/pkgs/local-pkg-1.2.0.tgz"
        registry.serve(url, tarball_factory("local-pkg", "1.2.0", {"is-positive": "^3.0.0"}))
        graph = _builder(registry, store).build([RootRequest("local-pkg", url)])
        node = graph.nodes["example.com/pkgs/local-pkg-1.2.0.tgz"]
        assert node.version == "1.2.0"
        assert node.resolution.integrity.startswith("sha512-")
        assert node.dependencies == {"is-positive": "/is-positive/3.1.0"}
