"""
Tests for the plan/build/validate/diagnose retry loop.

Tests:
- Strategy selection per root cause
- Each retry strategy's effect on planning and accumulated files
- Attempt exhaustion and cancellation
- Strategy hints and sub-agent dispatch
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_engine.engine.execution import PlanExecutor, RetryStrategy, estimate_complexity, select_strategy
from agent_engine.errors import ValidationExhaustedError
from agent_engine.models import MemoryHit

from .helpers import (
	diagnosis,
	failed,
	make_ai,
	make_build,
	make_bundle,
	make_config,
	make_context,
	make_plan,
	make_services,
	make_tracker,
	passed,
)


@pytest.fixture
def config(tmp_path):
	return make_config(tmp_path)


def make_memory(*hits: MemoryHit) -> MagicMock:
	memory = MagicMock()
	memory.search = AsyncMock(return_value=list(hits))
	return memory


class TestSelectStrategy:
	@pytest.mark.parametrize("root_cause,expected", [
		("bad_plan", RetryStrategy.REVISE_PLAN),
		("implementation_error", RetryStrategy.DELTA_REPLAN),
		("missing_context", RetryStrategy.WIDEN_CONTEXT),
		("impossible_task", RetryStrategy.ABORT_IMPOSSIBLE),
		("environment_error", RetryStrategy.BACKOFF),
		("cosmic_rays", RetryStrategy.DELTA_REPLAN),
	])
	def test_root_cause_mapping(self, root_cause, expected):
		assert select_strategy(diagnosis(root_cause), make_context()) == expected

	def test_bad_plan_past_revision_budget(self):
		"""Test that bad_plan falls back to delta replanning once revisions run out."""
		ctx = make_context()
		ctx.plan_revisions = ctx.max_plan_revisions
		assert select_strategy(diagnosis("bad_plan"), ctx) == RetryStrategy.DELTA_REPLAN

	def test_fix_code_suggestion_wins_over_missing_context(self):
		d = diagnosis("missing_context", suggested_action="fix_code")
		assert select_strategy(d, make_context()) == RetryStrategy.DELTA_REPLAN

	def test_estimate_complexity(self):
		assert estimate_complexity(0) == 1
		assert estimate_complexity(3) == 6
		assert estimate_complexity(9) == 10


class TestHappyPath:
	@pytest.mark.asyncio
	async def test_first_attempt_passes(self, config):
		"""Test that a passing validation returns the built files and sandbox."""
		services = make_services(validations=[passed()])
		ctx = make_context()
		on_building = MagicMock()

		result = await PlanExecutor(services, config).execute(ctx, make_bundle(), on_building=on_building)

		assert result.success
		assert result.early_return is None
		assert result.sandbox_id == "sbx-1"
		assert [f.path for f in result.files_changed] == ["src/routes.py"]
		assert result.plan_summary == "1. Add /health route\n2. Add test for /health"
		assert ctx.total_attempts == 1
		assert ctx.sandbox_id == "sbx-1"
		on_building.assert_called_once()
		services.sandbox.create.assert_awaited_once_with("acme", "widgets", "main")
		services.ai.diagnose_failure.assert_not_awaited()

	@pytest.mark.asyncio
	async def test_existing_sandbox_reused(self, config):
		services = make_services()
		result = await PlanExecutor(services, config).execute(make_context(), make_bundle(), sandbox_id="sbx-9")
		assert result.sandbox_id == "sbx-9"
		services.sandbox.create.assert_not_awaited()
		services.builder.build.assert_awaited_once()
		assert services.builder.build.await_args.args[2] == "sbx-9"

	@pytest.mark.asyncio
	async def test_usage_accumulates(self, config):
		services = make_services()
		ctx = make_context()
		await PlanExecutor(services, config).execute(ctx, make_bundle())
		# plan 100 + build 500
		assert ctx.total_tokens_used == 600
		assert ctx.total_cost_usd == pytest.approx(0.03)

	@pytest.mark.asyncio
	async def test_user_message_in_plan_request(self, config):
		services = make_services()
		ctx = make_context(user_message="Use /healthz")
		await PlanExecutor(services, config).execute(ctx, make_bundle())
		request = services.ai.plan_task.await_args.args[0]
		assert "User context: Use /healthz" in request.task
		assert request.project_structure == make_bundle().tree


class TestRetryStrategies:
	@pytest.mark.asyncio
	async def test_implementation_error_replans_from_delta(self, config):
		"""Test that an implementation error replans with diffs instead of the full context."""
		ai = make_ai()
		ai.diagnose_failure.return_value = diagnosis("implementation_error", reason="typo", suggested_action="fix import")
		services = make_services(ai=ai, validations=[failed(), passed()])
		ctx = make_context()

		result = await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert result.success
		assert ctx.total_attempts == 2
		assert ai.plan_task.await_count == 2
		retry_request = ai.plan_task.await_args_list[1].args[0]
		assert retry_request.project_structure == ""
		assert retry_request.relevant_files == []
		assert [c.path for c in retry_request.changed_files] == ["src/routes.py"]
		assert retry_request.changed_files[0].diff.startswith("[NEW FILE]")
		assert "[RETRY 1] Diagnosis: implementation_error - typo. Suggestion: fix import" in retry_request.task
		assert retry_request.previous_attempt == make_plan().summary()
		assert retry_request.error_message == "AssertionError: expected 200"

	@pytest.mark.asyncio
	async def test_bad_plan_revises_and_clears_files(self, config):
		"""Test that a bad plan is revised once and earlier output is discarded."""
		ai = make_ai()
		ai.diagnose_failure.return_value = diagnosis("bad_plan")
		services = make_services(ai=ai, validations=[failed(), passed()])
		services.builder.build.side_effect = [
			make_build(("src/old.py", "x")),
			make_build(("src/new.py", "y")),
		]
		ctx = make_context()

		result = await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert result.success
		ai.revise_plan.assert_awaited_once()
		assert ai.plan_task.await_count == 1
		assert ctx.plan_revisions == 1
		assert [f.path for f in result.files_changed] == ["src/new.py"]
		assert result.plan_summary == "1. Revised step"
		args = ai.revise_plan.await_args.args
		assert args[3] == ["avoid_previous_approach", "simpler_solution"]

	@pytest.mark.asyncio
	async def test_files_accumulate_by_path(self, config):
		"""Test that later builds replace earlier versions of the same file."""
		services = make_services(validations=[failed(), passed()])
		services.builder.build.side_effect = [
			make_build(("a.py", "v1"), ("b.py", "b")),
			make_build(("a.py", "v2")),
		]
		result = await PlanExecutor(services, config).execute(make_context(), make_bundle())
		files = {f.path: f.content for f in result.files_changed}
		assert files == {"a.py": "v2", "b.py": "b"}

	@pytest.mark.asyncio
	async def test_missing_context_widens_memory(self, config):
		ai = make_ai()
		ai.diagnose_failure.return_value = diagnosis("missing_context")
		memory = make_memory(MemoryHit(content="Health checks use /status", similarity=0.2))
		services = make_services(ai=ai, validations=[failed(), passed()], memory=memory)

		await PlanExecutor(services, config).execute(make_context(), make_bundle())

		retry_request = ai.plan_task.await_args_list[1].args[0]
		assert retry_request.memory == ["Routes live in src/routes.py", "Health checks use /status"]
		assert retry_request.project_structure == make_bundle().tree
		assert retry_request.error_message == "AssertionError: expected 200"

	@pytest.mark.asyncio
	async def test_environment_error_backs_off(self, tmp_path):
		"""Test that an environment error sleeps and retries without replanning."""
		config = make_config(tmp_path, environment_backoff_seconds=12.5)
		ai = make_ai()
		ai.diagnose_failure.return_value = diagnosis("environment_error")
		services = make_services(ai=ai, validations=[failed("npm ERR! network"), passed()])
		sleep = AsyncMock()

		result = await PlanExecutor(services, config, sleep=sleep).execute(make_context(), make_bundle())

		assert result.success
		sleep.assert_awaited_once_with(12.5)
		assert ai.plan_task.await_count == 1
		assert services.builder.build.await_count == 2

	@pytest.mark.asyncio
	async def test_impossible_task_returns_early(self, config):
		"""Test that an impossible task stops without raising and notifies the tracker."""
		ai = make_ai()
		ai.diagnose_failure.return_value = diagnosis("impossible_task", reason="needs hardware access")
		tracker = make_tracker()
		services = make_services(ai=ai, validations=[failed()], tracker=tracker)
		ctx = make_context(tracker_task_id="TRK-1")

		result = await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert not result.success
		assert result.early_return.error_message == "impossible_task"
		assert ctx.total_attempts == 1
		tracker.update_status.assert_awaited_once_with("TRK-1", "blocked", "needs hardware access")


class TestExhaustion:
	@pytest.mark.asyncio
	async def test_all_attempts_fail(self, config):
		"""Test that running out of attempts raises with the last validation output."""
		services = make_services(validations=[failed("e1"), failed("e2"), failed("e3")])
		ctx = make_context(max_attempts=3)

		with pytest.raises(ValidationExhaustedError) as exc_info:
			await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert exc_info.value.attempts == 3
		assert exc_info.value.last_output == "e3"
		assert ctx.total_attempts == 3
		# no diagnosis after the final attempt
		assert services.ai.diagnose_failure.await_count == 2

	@pytest.mark.asyncio
	async def test_exhaustion_message_names_attempts(self, config):
		services = make_services(validations=[failed("e1"), failed("e2")])
		ctx = make_context(max_attempts=2)

		with pytest.raises(ValidationExhaustedError) as exc_info:
			await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert "Validation failed after" in str(exc_info.value)
		assert exc_info.value.attempts == 2
		assert services.ai.diagnose_failure.await_count == 1
	@pytest.mark.asyncio
	async def test_builder_error_consumes_an_attempt(self, config):
		"""Test that a raising builder is recorded and retried."""
		services = make_services()
		services.builder.build.side_effect = [RuntimeError("builder crashed"), make_build()]
		ctx = make_context()

		result = await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert result.success
		assert ctx.total_attempts == 2
		assert ctx.attempt_history[0].result == "failure"
		assert ctx.attempt_history[0].error == "builder crashed"

	@pytest.mark.asyncio
	async def test_builder_error_on_last_attempt_propagates(self, config):
		services = make_services()
		services.builder.build.side_effect = RuntimeError("builder crashed")
		ctx = make_context(max_attempts=2)

		with pytest.raises(RuntimeError, match="builder crashed"):
			await PlanExecutor(services, config).execute(ctx, make_bundle())
		assert ctx.total_attempts == 2


class TestCancellation:
	@pytest.mark.asyncio
	async def test_cancelled_before_sandbox(self, config):
		services = make_services(tracker=make_tracker(cancelled=True))
		result = await PlanExecutor(services, config).execute(make_context(), make_bundle())

		assert result.early_return.error_message == "stopped"
		services.sandbox.create.assert_not_awaited()

	@pytest.mark.asyncio
	async def test_cancelled_before_build_destroys_sandbox(self, config):
		"""Test that a cancellation after sandbox creation tears the sandbox down."""
		tracker = make_tracker()
		tracker.is_cancelled.side_effect = [False, True]
		services = make_services(tracker=tracker)

		result = await PlanExecutor(services, config).execute(make_context(), make_bundle())

		assert result.early_return.error_message == "stopped"
		services.sandbox.destroy.assert_awaited_once_with("sbx-1")
		services.builder.build.assert_not_awaited()

	@pytest.mark.asyncio
	async def test_tracker_error_counts_as_not_cancelled(self, config):
		tracker = make_tracker()
		tracker.is_cancelled.side_effect = RuntimeError("tracker down")
		services = make_services(tracker=tracker)
		result = await PlanExecutor(services, config).execute(make_context(), make_bundle())
		assert result.success


class TestEnrichment:
	@pytest.mark.asyncio
	async def test_strategy_hint_added(self, config):
		"""Test that a similar solved task is injected into the planning request."""
		memory = make_memory(MemoryHit(content="Used a blueprint for /health", similarity=0.8))
		services = make_services(memory=memory)

		await PlanExecutor(services, config).execute(make_context(), make_bundle())

		request = services.ai.plan_task.await_args.args[0]
		assert "[STRATEGY HINT]" in request.task
		assert "(80% match)" in request.task
		assert "Used a blueprint for /health" in request.task

	@pytest.mark.asyncio
	async def test_weak_hint_ignored(self, config):
		memory = make_memory(MemoryHit(content="unrelated", similarity=0.3))
		services = make_services(memory=memory)
		await PlanExecutor(services, config).execute(make_context(), make_bundle())
		assert "[STRATEGY HINT]" not in services.ai.plan_task.await_args.args[0].task

	@pytest.mark.asyncio
	async def test_error_patterns_loaded(self, config):
		memory = make_memory(MemoryHit(content="ImportError in routes", similarity=0.5))
		services = make_services(memory=memory)
		ctx = make_context()
		await PlanExecutor(services, config).execute(ctx, make_bundle())
		assert [p.pattern for p in ctx.error_patterns] == ["ImportError in routes"]

	@pytest.mark.asyncio
	async def test_sub_agents_feed_builder(self, config):
		"""Test that enabled sub-agents run and their merged output reaches the builder."""
		ai = make_ai()
		ai.plan_task.return_value = make_plan("one", "two", "three")
		services = make_services(ai=ai)
		ctx = make_context(sub_agents_enabled=True)

		await PlanExecutor(services, config).execute(ctx, make_bundle())

		assert ai.complete.await_count == 2
		assert len(ctx.sub_agent_results) == 2
		build_task = services.builder.build.await_args.args[0]
		assert "## Sub-agent Analysis" in build_task

	@pytest.mark.asyncio
	async def test_sub_agents_skipped_for_small_plans(self, config):
		services = make_services()
		ctx = make_context(sub_agents_enabled=True)
		await PlanExecutor(services, config).execute(ctx, make_bundle())
		services.ai.complete.assert_not_awaited()
		assert services.builder.build.await_args.args[0] == ctx.task_description
