"""Tests for phase-scoped context profiles and token budgeting."""

import logging

from agent_engine.engine.profiler import (
	PHASE_PROFILES,
	estimate_tokens,
	filter_for_phase,
)
from agent_engine.models import ContextBundle, RelevantFile, ToolDescriptor

from .helpers import make_bundle


class TestEstimateTokens:
	def test_empty_bundle(self):
		"""Test that an empty bundle estimates to zero tokens."""
		# manifest renders as "{}"
		assert estimate_tokens(ContextBundle()) == 1

	def test_counts_every_field(self):
		"""Test that each textual field contributes at four chars per token."""
		bundle = ContextBundle(
			tree="a" * 40,
			files=[RelevantFile(path="p" * 4, content="c" * 36)],
			memory=["m" * 40],
			docs=["d" * 40],
			tools=[ToolDescriptor(name="n" * 20, description="x" * 20)],
		)
		# 40 + 40 + 40 + 40 + 40 chars plus "{}"
		assert estimate_tokens(bundle) == 51


class TestFilterForPhase:
	def test_confidence_keeps_tree_and_manifest(self):
		"""Test that the confidence view carries only the rendered tree and manifest."""
		scoped = filter_for_phase(make_bundle(), "confidence")
		assert scoped.tree
		assert scoped.tree_list == []
		assert scoped.manifest
		assert scoped.files == []
		assert scoped.memory == []
		assert scoped.docs == []

	def test_planning_keeps_everything(self):
		bundle = make_bundle()
		assert filter_for_phase(bundle, "planning") == bundle

	def test_building_drops_tree_and_memory(self):
		scoped = filter_for_phase(make_bundle(), "building")
		assert scoped.tree == ""
		assert scoped.memory == []
		assert scoped.files
		assert scoped.docs

	def test_reviewing_fields(self):
		scoped = filter_for_phase(make_bundle(), "reviewing")
		assert scoped.files == []
		assert scoped.tree == ""
		assert scoped.memory
		assert scoped.docs

	def test_completing_is_empty(self):
		scoped = filter_for_phase(make_bundle(), "completing")
		assert scoped == ContextBundle()

	def test_unknown_phase_returns_bundle_unchanged(self, caplog):
		"""Test that an unknown phase passes the full bundle through with a warning."""
		bundle = make_bundle()
		with caplog.at_level(logging.WARNING):
			assert filter_for_phase(bundle, "deploying") is bundle
		assert "deploying" in caplog.text

	def test_input_bundle_not_mutated(self):
		bundle = make_bundle(docs=["x" * 100_000])
		filter_for_phase(bundle, "planning")
		assert bundle.docs == ["x" * 100_000]

	def test_within_budget_after_filtering(self):
		"""Test that every known phase fits its budget for oversized inputs."""
		bundle = make_bundle(
			tree="t" * 200_000,
			files=[RelevantFile(path=f"f{i}.py", content="c" * 10_000) for i in range(3)],
			memory=["m" * 20_000, "m" * 20_000],
			docs=["d" * 50_000],
		)
		for phase, profile in PHASE_PROFILES.items():
			assert estimate_tokens(filter_for_phase(bundle, phase)) <= profile.max_tokens, phase


class TestTrimOrder:
	def test_docs_dropped_first(self):
		"""Test that docs go before memory or files."""
		bundle = make_bundle(docs=["d" * 60_000])
		scoped = filter_for_phase(bundle, "planning")
		assert scoped.docs == []
		assert scoped.memory == bundle.memory
		assert scoped.files == bundle.files

	def test_memory_dropped_from_end(self):
		bundle = make_bundle(docs=[], memory=["keep me", "m" * 60_000])
		scoped = filter_for_phase(bundle, "planning")
		assert scoped.memory == ["keep me"]
		assert scoped.files == bundle.files

	def test_at_least_one_file_kept(self):
		"""Test that trailing files are dropped but the first one survives."""
		files = [RelevantFile(path=f"f{i}.py", content="c" * 50_000) for i in range(3)]
		bundle = make_bundle(docs=[], memory=[], files=files)
		scoped = filter_for_phase(bundle, "building")
		assert [f.path for f in scoped.files] == ["f0.py"]

	def test_tree_truncated_last(self):
		bundle = make_bundle(tree="t" * 100_000, docs=[], memory=[])
		scoped = filter_for_phase(bundle, "confidence")
		assert 0 < len(scoped.tree) < 100_000
		assert scoped.tree_list == []

	def test_large_repository_fits_confidence_budget(self):
		"""Test that thousands of paths still leave a non-empty tree within budget."""
		paths = [f"src/pkg_{i // 100}/module_{i}.py" for i in range(5000)]
		bundle = make_bundle(tree="\n".join(paths), tree_list=paths)
		scoped = filter_for_phase(bundle, "confidence")
		assert estimate_tokens(scoped) <= PHASE_PROFILES["confidence"].max_tokens
		assert scoped.tree != ""
		assert scoped.tree_list == []
