"""Retry, fallback and diagnostics behaviour of the capability executor."""

from __future__ import annotations

import asyncio

import pytest

from ifrit.capabilities import (
    CapabilitiesConfig,
    CapabilityExecutor,
    CapabilityHandler,
    CapabilitySetting,
    ExecuteRequest,
    ExecuteResult,
    ExecutorConfig,
    HandlerSource,
    ResultValidator,
    Usage,
    ValidationRule,
    get_capability_executor,
)


class ScriptedHandler:
    """Handler test double replaying a scripted sequence of outcomes.

    Each outcome is an ``ExecuteResult`` to return or an exception to raise.
    The last outcome repeats once the script is exhausted.
    """

    def __init__(self, *outcomes: ExecuteResult | Exception, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes) or [_ok("Test generated content")]
        self.delay = delay
        self.calls: list[ExecuteRequest] = []

    async def __call__(self, request: ExecuteRequest) -> ExecuteResult:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _ok(text: str = "Test generated content", **kwargs) -> ExecuteResult:
    return ExecuteResult(success=True, data=text, text=text, **kwargs)


def _fail(error: str = "Failed") -> ExecuteResult:
    return ExecuteResult(success=False, error=error)


def _handler(
    script: ScriptedHandler | None = None,
    *,
    id: str = "test-handler",
    capabilities: tuple[str, ...] = ("generate", "research"),
    priority: int = 1,
    provider_id: str | None = "test-provider",
) -> CapabilityHandler:
    return CapabilityHandler(
        id=id,
        name=id.replace("-", " ").title(),
        capabilities=frozenset(capabilities),
        execute=script or ScriptedHandler(),
        source=HandlerSource.AI_PROVIDER,
        provider_id=provider_id,
        priority=priority,
    )


def _config(**settings: CapabilitySetting) -> CapabilitiesConfig:
    if not settings:
        settings = {"generate": CapabilitySetting(default_handler_id="test-handler")}
    return CapabilitiesConfig(capability_settings=settings)


@pytest.fixture
def executor() -> CapabilityExecutor:
    return CapabilityExecutor(ExecutorConfig(log_diagnostics=False))


@pytest.mark.asyncio
async def test_single_handler_success_needs_no_retry(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler()
    request = ExecuteRequest(capability="generate", prompt="Test prompt")

    result = await executor.execute(request, [_handler(script)], _config())

    assert result.success is True
    assert result.handler_used == "test-handler"
    assert result.source is HandlerSource.AI_PROVIDER
    assert result.fallbacks_attempted == []
    assert script.calls == [request]


@pytest.mark.asyncio
async def test_retry_after_transport_failure(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler(ConnectionError("First attempt failed"), _ok("Success on retry"))

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test prompt", max_retries=2),
        [_handler(script)],
        _config(),
    )

    assert result.success is True
    assert result.text == "Success on retry"
    assert len(script.calls) == 2
    assert result.diagnostics is not None
    assert result.diagnostics.retry_count == 1


@pytest.mark.asyncio
async def test_default_retry_count_is_one(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler(_fail("Primary failed"))

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [_handler(script)],
        _config(),
    )

    assert result.success is False
    assert len(script.calls) == 2
    assert "Primary failed" in (result.error or "")


@pytest.mark.asyncio
async def test_fallback_handler_used_when_primary_fails(executor: CapabilityExecutor) -> None:
    primary = _handler(ScriptedHandler(_fail("Primary failed")), id="primary", priority=50)
    fallback = _handler(ScriptedHandler(_ok("Fallback success")), id="fallback")
    config = _config(
        generate=CapabilitySetting(default_handler_id="primary", fallback_handler_ids=["fallback"])
    )

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", use_fallback=True, max_retries=0),
        [primary, fallback],
        config,
    )

    assert result.success is True
    assert result.handler_used == "fallback"
    assert result.text == "Fallback success"
    assert result.fallbacks_attempted == ["primary"]


@pytest.mark.asyncio
async def test_use_fallback_false_stops_after_first_handler(executor: CapabilityExecutor) -> None:
    fallback_script = ScriptedHandler()
    primary = _handler(ScriptedHandler(_fail("Primary failed")), id="primary", priority=50)
    fallback = _handler(fallback_script, id="fallback")

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", use_fallback=False, max_retries=0),
        [primary, fallback],
        CapabilitiesConfig(),
    )

    assert result.success is False
    assert result.fallbacks_attempted == ["primary"]
    assert fallback_script.calls == []


@pytest.mark.asyncio
async def test_all_handlers_exhausted_reports_last_error(executor: CapabilityExecutor) -> None:
    first = _handler(ScriptedHandler(_fail("quota exceeded")), id="first", priority=10)
    second = _handler(ScriptedHandler(RuntimeError("connection reset")), id="second", priority=5)

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=1),
        [first, second],
        CapabilitiesConfig(),
    )

    assert result.success is False
    assert result.error == "All handlers failed for generate. Last error: connection reset"
    assert result.fallbacks_attempted == ["first", "second"]
    assert result.metadata["error_code"] == "handlers_exhausted"
    assert len(executor.get_diagnostics_log()) == 4


@pytest.mark.asyncio
async def test_no_handlers_fails_fast_without_diagnostics(executor: CapabilityExecutor) -> None:
    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test prompt"),
        [],
        _config(),
    )

    assert result.success is False
    assert "No handlers available" in (result.error or "")
    assert result.metadata["error_code"] == "no_handlers"
    assert executor.get_diagnostics_log() == []


@pytest.mark.asyncio
async def test_disabled_capability_is_distinct_from_no_handlers(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler()
    config = _config(generate=CapabilitySetting(enabled=False, default_handler_id="test-handler"))

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [_handler(script)],
        config,
    )

    assert result.success is False
    assert result.error == "Capability disabled: generate"
    assert "No handlers available" not in result.error
    assert script.calls == []


@pytest.mark.asyncio
async def test_empty_generate_result_is_rejected(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler(_ok(""))

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=0),
        [_handler(script)],
        _config(),
    )

    assert result.success is False
    assert "Generated text is empty or invalid" in (result.error or "")
    assert executor.get_diagnostics_log()[0].errors == ["Generated text is empty or invalid"]


@pytest.mark.asyncio
async def test_whitespace_generate_result_triggers_fallback(executor: CapabilityExecutor) -> None:
    blank = _handler(ScriptedHandler(_ok("   \n")), id="blank", priority=10)
    good = _handler(ScriptedHandler(_ok("Real content")), id="good", priority=1)

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=0),
        [blank, good],
        CapabilitiesConfig(),
    )

    assert result.success is True
    assert result.handler_used == "good"
    assert result.fallbacks_attempted == ["blank"]


@pytest.mark.asyncio
async def test_default_handler_beats_priority(executor: CapabilityExecutor) -> None:
    order: list[str] = []

    def tracking(name: str) -> ScriptedHandler:
        script = ScriptedHandler()

        async def call(request: ExecuteRequest) -> ExecuteResult:
            order.append(name)
            return await script(request)

        return call  # type: ignore[return-value]

    handler1 = _handler(tracking("handler1"), id="handler1", priority=1)
    handler2 = _handler(tracking("handler2"), id="handler2", priority=10)
    config = _config(generate=CapabilitySetting(default_handler_id="handler1"))

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [handler1, handler2],
        config,
    )

    assert order == ["handler1"]
    assert result.handler_used == "handler1"


@pytest.mark.asyncio
async def test_handler_without_capability_is_never_called(executor: CapabilityExecutor) -> None:
    gen_script = ScriptedHandler()
    research_script = ScriptedHandler()

    await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [
            _handler(gen_script, id="gen", capabilities=("generate",)),
            _handler(research_script, id="research", capabilities=("research",)),
        ],
        _config(),
    )

    assert len(gen_script.calls) == 1
    assert research_script.calls == []


@pytest.mark.asyncio
async def test_diagnostics_capture_provider_and_usage(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler(_ok("Content", usage=Usage(input_tokens=50, output_tokens=200), model="m-1"))

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [_handler(script)],
        _config(),
    )

    assert result.diagnostics is not None
    assert result.diagnostics.provider_id == "test-provider"
    assert result.diagnostics.latency_ms >= 0
    assert result.diagnostics.tokens_input == 50
    assert result.diagnostics.tokens_output == 200
    assert result.diagnostics.tokens_used == 250
    assert result.diagnostics.model == "m-1"


@pytest.mark.asyncio
async def test_diagnostics_accumulate_and_clear(executor: CapabilityExecutor) -> None:
    handler = _handler()
    config = _config()

    await executor.execute(ExecuteRequest(capability="generate", prompt="Test 1"), [handler], config)
    await executor.execute(ExecuteRequest(capability="generate", prompt="Test 2"), [handler], config)

    assert len(executor.get_diagnostics_log()) == 2

    executor.clear_diagnostics_log()
    assert executor.get_diagnostics_log() == []


@pytest.mark.asyncio
async def test_provider_stats_track_errors(executor: CapabilityExecutor) -> None:
    handler = _handler(ScriptedHandler(_ok("OK"), _fail("Failed")))
    config = _config()

    await executor.execute(ExecuteRequest(capability="generate", prompt="Test 1"), [handler], config)
    await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test 2", max_retries=0),
        [handler],
        config,
    )

    stats = executor.get_provider_stats()
    assert stats["test-provider"].calls == 2
    assert stats["test-provider"].errors == 1
    assert stats["test-provider"].success_rate == 50
    assert executor.get_provider_stats() == stats


@pytest.mark.asyncio
async def test_timeout_counts_as_failed_attempt(executor: CapabilityExecutor) -> None:
    slow = _handler(ScriptedHandler(delay=1.0), id="slow", priority=10)
    fast = _handler(ScriptedHandler(_ok("fast")), id="fast", priority=1)

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=0, timeout=0.05),
        [slow, fast],
        CapabilitiesConfig(),
    )

    assert result.success is True
    assert result.handler_used == "fast"
    assert executor.get_diagnostics_log()[0].errors == ["Timeout after 0.05s"]


@pytest.mark.asyncio
async def test_cancel_signal_interrupts_running_attempt(executor: CapabilityExecutor) -> None:
    slow_script = ScriptedHandler(delay=5.0)
    cancel = asyncio.Event()

    async def cancel_soon() -> None:
        await asyncio.sleep(0.02)
        cancel.set()

    canceller = asyncio.create_task(cancel_soon())
    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [_handler(slow_script)],
        _config(),
        cancel=cancel,
    )
    await canceller

    assert result.success is False
    assert result.error == "Execution cancelled"
    assert result.fallbacks_attempted == ["test-handler"]
    assert len(slow_script.calls) == 1
    assert executor.get_diagnostics_log()[0].errors == ["Execution cancelled"]


@pytest.mark.asyncio
async def test_cancel_signal_set_before_start_skips_handlers(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler()
    cancel = asyncio.Event()
    cancel.set()

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test"),
        [_handler(script)],
        _config(),
        cancel=cancel,
    )

    assert result.error == "Execution cancelled"
    assert result.fallbacks_attempted == []
    assert script.calls == []


@pytest.mark.asyncio
async def test_concurrent_executions_are_independent(executor: CapabilityExecutor) -> None:
    handler = _handler(ScriptedHandler(delay=0.01))

    results = await asyncio.gather(
        *(executor.execute(ExecuteRequest(capability="generate", prompt=f"p{i}"), [handler], _config())
          for i in range(5))
    )

    assert all(result.success for result in results)
    assert len(executor.get_diagnostics_log()) == 5


@pytest.mark.asyncio
async def test_negative_max_retries_is_a_programmer_error(executor: CapabilityExecutor) -> None:
    with pytest.raises(ValueError, match="max_retries"):
        await executor.execute(
            ExecuteRequest(capability="generate", prompt="Test", max_retries=-1),
            [_handler()],
            _config(),
        )


@pytest.mark.asyncio
async def test_update_config_changes_default_retries(executor: CapabilityExecutor) -> None:
    script = ScriptedHandler(_fail("nope"))

    executor.update_config(default_max_retries=3)
    await executor.execute(ExecuteRequest(capability="generate", prompt="Test"), [_handler(script)], _config())

    assert executor.config.default_max_retries == 3
    assert len(script.calls) == 4


def test_update_config_rejects_invalid_values(executor: CapabilityExecutor) -> None:
    with pytest.raises(ValueError):
        executor.update_config(default_max_retries=-2)
    with pytest.raises(ValueError):
        executor.update_config(unknown_option=True)


def test_on_diagnostics_listener_receives_records() -> None:
    seen = []
    executor = CapabilityExecutor(ExecutorConfig(log_diagnostics=False), on_diagnostics=seen.append)

    asyncio.run(
        executor.execute(ExecuteRequest(capability="generate", prompt="Test"), [_handler()], _config())
    )

    assert len(seen) == 1
    assert seen[0].handler_id == "test-handler"


def test_get_capability_executor_returns_shared_instance() -> None:
    get_capability_executor.cache_clear()
    try:
        assert get_capability_executor() is get_capability_executor()
    finally:
        get_capability_executor.cache_clear()


@pytest.mark.asyncio
async def test_handler_returning_nothing_counts_as_failed_attempt(executor: CapabilityExecutor) -> None:
    calls: list[ExecuteRequest] = []

    async def forgetful(request: ExecuteRequest) -> ExecuteResult:
        calls.append(request)
        return None  # type: ignore[return-value]

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=1),
        [_handler(forgetful)],  # type: ignore[arg-type]
        _config(),
    )

    assert result.success is False
    assert "returned NoneType" in (result.error or "")
    assert len(calls) == 2
    assert len(executor.get_diagnostics_log()) == 2


@pytest.mark.asyncio
async def test_raising_validation_rule_fails_attempt_and_falls_back() -> None:
    def explode(data: object) -> bool:
        raise ValueError("rule crashed")

    validator = ResultValidator(rules={"generate": (ValidationRule(explode, "unused"),)})
    executor = CapabilityExecutor(ExecutorConfig(log_diagnostics=False), validator=validator)
    first = _handler(ScriptedHandler(), id="first", priority=10)
    second = _handler(ScriptedHandler(), id="second", priority=1)

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=0),
        [first, second],
        CapabilitiesConfig(),
    )

    assert result.success is False
    assert result.fallbacks_attempted == ["first", "second"]
    assert [entry.errors for entry in executor.get_diagnostics_log()] == [["rule crashed"], ["rule crashed"]]


@pytest.mark.asyncio
async def test_timed_out_call_unwinds_before_execute_returns(executor: CapabilityExecutor) -> None:
    unwound: list[str] = []

    async def stubborn(request: ExecuteRequest) -> ExecuteResult:
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            unwound.append(request.prompt)
            raise RuntimeError("cleanup failed") from None
        return _ok()

    result = await executor.execute(
        ExecuteRequest(capability="generate", prompt="Test", max_retries=0, timeout=0.05),
        [_handler(stubborn)],  # type: ignore[arg-type]
        _config(),
        cancel=asyncio.Event(),
    )

    assert result.success is False
    assert unwound == ["Test"]
    assert executor.get_diagnostics_log()[0].errors == ["Timeout after 0.05s"]


@pytest.mark.asyncio
@pytest.mark.parametrize("timeout", [0, -1.5])
async def test_non_positive_timeout_is_a_programmer_error(executor: CapabilityExecutor, timeout: float) -> None:
    with pytest.raises(ValueError, match="timeout"):
        await executor.execute(
            ExecuteRequest(capability="generate", prompt="Test", timeout=timeout),
            [_handler()],
            _config(),
        )
