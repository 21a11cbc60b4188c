"""
Context Profiler - phase-scoped, token-budgeted views of a context bundle.

Each phase only sees the fields it needs. When the scoped view is still
larger than the phase budget it is trimmed in a fixed order: docs, then
memory (from the end), then trailing files (keeping at least one), then
the rendered tree is hard-truncated.
"""

import json
import logging
import math
from dataclasses import dataclass

from ..models import ContextBundle

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4  # Rough estimate

ALL_FIELDS = frozenset({"tree", "tree_list", "files", "memory", "docs", "tools", "manifest"})

# Empty values used when a field is not needed by a phase
_EMPTY = {
	"tree": "",
	"tree_list": [],
	"files": [],
	"memory": [],
	"docs": [],
	"tools": [],
	"manifest": {},
}


@dataclass(frozen=True)
class PhaseProfile:
	"""Fields a phase needs and its hard token budget."""
	fields: frozenset[str]
	max_tokens: int


PHASE_PROFILES: dict[str, PhaseProfile] = {
	"confidence": PhaseProfile(frozenset({"tree", "manifest"}), 3_000),
	"planning": PhaseProfile(ALL_FIELDS, 12_000),
	"building": PhaseProfile(frozenset({"files", "docs", "tools", "manifest"}), 20_000),
	"reviewing": PhaseProfile(frozenset({"memory", "docs", "manifest"}), 8_000),
	"completing": PhaseProfile(frozenset(), 1_000),
}


def _char_count(bundle: ContextBundle) -> int:
	chars = len(bundle.tree)
	chars += len("\n".join(bundle.tree_list))
	chars += len(json.dumps(bundle.manifest, separators=(",", ":")))
	chars += sum(len(f.path) + len(f.content) for f in bundle.files)
	chars += sum(len(m) for m in bundle.memory)
	chars += sum(len(d) for d in bundle.docs)
	chars += sum(len(t.name) + len(t.description) for t in bundle.tools)
	return chars


def estimate_tokens(bundle: ContextBundle) -> int:
	"""Estimate the token size of every textual field in the bundle."""
	return math.ceil(_char_count(bundle) / CHARS_PER_TOKEN)


def _trim_to_budget(bundle: ContextBundle, max_tokens: int) -> ContextBundle:
	if estimate_tokens(bundle) <= max_tokens:
		return bundle

	# 1. Drop docs entirely
	if bundle.docs:
		bundle = bundle.model_copy(update={"docs": []})
		if estimate_tokens(bundle) <= max_tokens:
			return bundle

	# 2. Drop memory entries from the end
	memory = list(bundle.memory)
	while memory and estimate_tokens(bundle) > max_tokens:
		memory.pop()
		bundle = bundle.model_copy(update={"memory": list(memory)})
	if estimate_tokens(bundle) <= max_tokens:
		return bundle

	# 3. Drop trailing (lowest relevance) files, keep at least one
	files = list(bundle.files)
	while len(files) > 1 and estimate_tokens(bundle) > max_tokens:
		files.pop()
		bundle = bundle.model_copy(update={"files": list(files)})
	if estimate_tokens(bundle) <= max_tokens:
		return bundle

	# 4. Hard-truncate the rendered tree
	other_chars = _char_count(bundle) - len(bundle.tree)
	allowed = max(0, max_tokens * CHARS_PER_TOKEN - other_chars)
	if len(bundle.tree) > allowed:
		logger.debug(f"Truncating project tree from {len(bundle.tree)} to {allowed} chars")
		bundle = bundle.model_copy(update={"tree": bundle.tree[:allowed]})

	return bundle


def filter_for_phase(bundle: ContextBundle, phase: str) -> ContextBundle:
	"""
	Return the phase-scoped view of a bundle.

	Args:
		bundle: Full context bundle
		phase: Phase name (confidence, planning, building, reviewing, completing)

	Returns:
		New bundle restricted to the phase profile and trimmed to its budget.
		Unknown phases get the bundle back unchanged.
	"""
	profile = PHASE_PROFILES.get(phase)
	if profile is None:
		logger.warning(f"No context profile for phase '{phase}', passing full context")
		return bundle

	dropped = {name: _EMPTY[name] for name in ALL_FIELDS - profile.fields}
	scoped = bundle.model_copy(update=dropped) if dropped else bundle

	before = estimate_tokens(scoped)
	scoped = _trim_to_budget(scoped, profile.max_tokens)
	after = estimate_tokens(scoped)
	if after < before:
		logger.info(f"Context for phase '{phase}' trimmed from {before} to {after} tokens (budget {profile.max_tokens})")

	return scoped
