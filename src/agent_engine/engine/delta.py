"""
Delta context for retries.

Instead of resending every file on each retry, the next planning call only
sees what changed since the previous attempt, the latest error, and the
diagnosis. Pure functions, no I/O.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from ..models import Diagnosis

MAX_DIFF_CHANGES = 20
MAX_DIFF_CHARS = 500
MAX_TASK_SUMMARY_CHARS = 200
MAX_ERROR_CHARS = 1000
MAX_NEW_FILE_PREVIEW = 500
CHARS_PER_TOKEN = 4

NO_CHANGES = "[no changes detected]"
NEW_FILE_MARKER = "[NEW FILE]"


class HasPathContent(Protocol):
	path: str
	content: str


@dataclass
class ChangedFile:
	path: str
	diff: str


@dataclass
class RetryContext:
	"""Minimal payload handed to the next planning call after a failed attempt."""
	task_summary: str
	plan_summary: str
	latest_error: str
	diagnosis: Optional[Diagnosis]
	attempt_number: int
	changed_files: list[ChangedFile] = field(default_factory=list)
	estimated_tokens: int = 0


def truncate(text: str, limit: int) -> str:
	"""Cut text to `limit` characters, ending in '...' when shortened."""
	if len(text) <= limit:
		return text
	return text[: limit - 3] + "..."


def compute_simple_diff(old_content: str, new_content: str) -> str:
	"""
	Line-indexed comparison of two file versions.

	Emits `+N: line` for added lines, `-N: line` for removed lines and
	`~N: line` for changed lines (1-based), at most 20 entries.
	"""
	old_lines = old_content.split("\n")
	new_lines = new_content.split("\n")
	changes: list[str] = []

	for i in range(max(len(old_lines), len(new_lines))):
		if len(changes) >= MAX_DIFF_CHANGES:
			break
		old_line = old_lines[i] if i < len(old_lines) else None
		new_line = new_lines[i] if i < len(new_lines) else None

		if old_line is None:
			changes.append(f"+{i + 1}: {new_line}")
		elif new_line is None:
			changes.append(f"-{i + 1}: {old_line}")
		elif old_line != new_line:
			changes.append(f"~{i + 1}: {new_line}")

	if not changes:
		return NO_CHANGES

	return truncate("\n".join(changes), MAX_DIFF_CHARS)


def serialize_diagnosis(diagnosis: Optional[Diagnosis]) -> str:
	if diagnosis is None:
		return "null"
	payload = {"root_cause": diagnosis.root_cause}
	if diagnosis.reason is not None:
		payload["reason"] = diagnosis.reason
	if diagnosis.suggested_action is not None:
		payload["suggested_action"] = diagnosis.suggested_action
	return json.dumps(payload, separators=(",", ":"))


def compute_retry_context(
	ctx,
	current_files: Iterable[HasPathContent],
	previous_files: Iterable[HasPathContent],
	plan_summary: str,
	validation_output: str,
	diagnosis: Optional[Diagnosis],
) -> RetryContext:
	"""Build the delta payload for the next attempt.

	Args:
		ctx: Task context (task description and attempt counter are read)
		current_files: Files produced so far
		previous_files: Baseline snapshot from the previous attempt
		plan_summary: Numbered plan rendering
		validation_output: Raw output of the failed validation
		diagnosis: Diagnosis of the failure

	Returns:
		RetryContext with unchanged files omitted
	"""
	task_summary = truncate(ctx.task_description, MAX_TASK_SUMMARY_CHARS)
	previous = {f.path: f.content for f in previous_files}

	changed_files: list[ChangedFile] = []
	for f in current_files:
		prev = previous.get(f.path)
		if prev is None:
			preview = f.content[:MAX_NEW_FILE_PREVIEW]
			if len(f.content) > MAX_NEW_FILE_PREVIEW:
				preview += "..."
			changed_files.append(ChangedFile(path=f.path, diff=f"{NEW_FILE_MARKER} {preview}"))
		elif prev != f.content:
			changed_files.append(ChangedFile(path=f.path, diff=compute_simple_diff(prev, f.content)))

	latest_error = truncate(validation_output, MAX_ERROR_CHARS)

	total_chars = (
		len(task_summary)
		+ len(plan_summary)
		+ len(latest_error)
		+ sum(len(c.path) + len(c.diff) for c in changed_files)
		+ len(serialize_diagnosis(diagnosis))
	)

	return RetryContext(
		task_summary=task_summary,
		plan_summary=plan_summary,
		latest_error=latest_error,
		diagnosis=diagnosis,
		attempt_number=ctx.total_attempts,
		changed_files=changed_files,
		estimated_tokens=math.ceil(total_chars / CHARS_PER_TOKEN),
	)
