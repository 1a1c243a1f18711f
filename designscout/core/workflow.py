"""
Workflow Executor: run declarative browser workflows step by step.

A workflow is an ordered list of WorkflowStep records (navigate, click, fill,
wait_for, press, evaluate, screenshot, wait). Steps run strictly in
declaration order; the first step that fails aborts the rest.

Features:
- Per-step timeouts
- Fallback selectors (a tuple selector is tried in order)
- Per-step retries
- {{placeholder}} rendering for keyword and credential values
- Debug screenshots after navigation and on failure
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .browser.browser_engine import BrowserEngine
from .exceptions import (
    FATAL_ERRORS,
    RequestTimeoutError,
    StepTimeoutError,
    ToolError,
    WorkflowStepError,
)

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
SELECTOR_ACTIONS = {"click", "fill", "wait_for"}


class StepAction(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    WAIT_FOR = "wait_for"
    PRESS = "press"
    EVALUATE = "evaluate"
    SCREENSHOT = "screenshot"
    WAIT = "wait"


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class WorkflowStep:
    """Definition of a single workflow step."""
    action: StepAction
    selector: Union[str, Tuple[str, ...], None] = None
    value: Any = None
    description: str = ""
    timeout_ms: int = 10000
    retries: int = 0
    retry_delay: float = 1.0

    def __post_init__(self):
        if not isinstance(self.action, StepAction):
            object.__setattr__(self, "action", StepAction(self.action))
        if isinstance(self.selector, list):
            object.__setattr__(self, "selector", tuple(self.selector))
        if self.action.value in SELECTOR_ACTIONS and not self.selector:
            raise ValueError(f"{self.action.value} step needs a selector")

    @property
    def selectors(self) -> Tuple[Optional[str], ...]:
        if self.selector is None:
            return (None,)
        if isinstance(self.selector, tuple):
            return self.selector
        return (self.selector,)

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def label(self) -> str:
        return self.description or self.action.value


@dataclass
class StepResult:
    """Result of a single workflow step."""
    step_id: str
    status: StepStatus
    output: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    retries: int = 0
    selector_used: Optional[str] = None


@dataclass
class WorkflowRun:
    """Everything one run of a workflow produced."""
    name: str
    results: List[StepResult] = field(default_factory=list)
    success: bool = False
    duration_ms: float = 0.0

    @property
    def outputs(self) -> List[Any]:
        return [r.output for r in self.results if r.status == StepStatus.COMPLETED]

    @property
    def last_output(self) -> Any:
        outputs = self.outputs
        return outputs[-1] if outputs else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "steps": [
                {"step_id": r.step_id, "status": r.status.value, "error": r.error}
                for r in self.results
            ],
        }


def _render(value: Any, values: Dict[str, Any]) -> Any:
    if isinstance(value, str):
        return PLACEHOLDER.sub(
            lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0), value
        )
    if isinstance(value, tuple):
        return tuple(_render(v, values) for v in value)
    return value


def render_steps(steps: Sequence[WorkflowStep], **values: Any) -> List[WorkflowStep]:
    """Resolve {{name}} placeholders in step values and selectors"""
    rendered = []
    for step in steps:
        rendered.append(
            replace(step, value=_render(step.value, values), selector=_render(step.selector, values))
        )
    return rendered


class WorkflowExecutor:
    """
    Execute browser workflows.

    Usage:
        executor = WorkflowExecutor(engine)
        run = await executor.run([
            WorkflowStep(StepAction.NAVIGATE, value="https://mobbin.com"),
            WorkflowStep(StepAction.CLICK, selector=("text=Search on iOS...", 'button:has-text("Search")')),
        ], name="open-search")
    """

    def __init__(self, engine: BrowserEngine, debug: bool = False):
        self.engine = engine
        self.debug = debug or engine.config.debug
        self._screenshot_counter = 0

    async def run(self, steps: Sequence[WorkflowStep], name: str = "workflow", debug: Optional[bool] = None) -> WorkflowRun:
        """Run steps in order; raises WorkflowStepError at the first failure."""
        debug = self.debug if debug is None else debug
        run = WorkflowRun(name=name)
        started = time.monotonic()

        logger.debug(f"▶️ Running workflow: {name} ({len(steps)} steps)")

        for index, step in enumerate(steps):
            try:
                result = await self._execute_step(index, step, debug)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                run.results.append(
                    StepResult(step_id=f"{index}:{step.action.value}", status=StepStatus.FAILED, error=str(e))
                )
                run.duration_ms = (time.monotonic() - started) * 1000
                logger.error(f"  ❌ {name} step {index + 1} ({step.label}): {e}")
                if debug:
                    await self._debug_screenshot(f"{name}-failed-step-{index + 1}")
                error = WorkflowStepError(index, step, e)
                error.run = run
                raise error from e

            run.results.append(result)
            logger.debug(f"  ✅ {step.label} ({result.duration_ms:.0f}ms)")

        run.success = True
        run.duration_ms = (time.monotonic() - started) * 1000
        return run

    async def _execute_step(self, index: int, step: WorkflowStep, debug: bool) -> StepResult:
        """Execute a single step with timeout, fallback selectors and retries."""
        attempt = 0
        while True:
            start = time.monotonic()
            try:
                output, used = await self._run_candidates(step)
                if step.action == StepAction.NAVIGATE and debug:
                    await self._debug_screenshot(f"navigate-{index + 1}")
                return StepResult(
                    step_id=f"{index}:{step.action.value}",
                    status=StepStatus.COMPLETED,
                    output=output,
                    duration_ms=(time.monotonic() - start) * 1000,
                    retries=attempt,
                    selector_used=used,
                )
            except FATAL_ERRORS:
                raise
            except Exception as e:
                if attempt >= step.retries:
                    raise
                attempt += 1
                logger.warning(f"  🔁 Retrying {step.label} ({attempt}/{step.retries}): {e}")
                await asyncio.sleep(step.retry_delay)

    async def _run_candidates(self, step: WorkflowStep) -> Tuple[Any, Optional[str]]:
        candidates = step.selectors
        last_error: Optional[Exception] = None

        for selector in candidates:
            try:
                output = await asyncio.wait_for(self._perform(step, selector), timeout=step.timeout)
                return output, selector
            except FATAL_ERRORS:
                raise
            except asyncio.TimeoutError:
                last_error = StepTimeoutError(f"{step.label} timed out after {step.timeout_ms}ms")
            except (ToolError, RequestTimeoutError) as e:
                last_error = e
            if len(candidates) > 1:
                logger.debug(f"Selector {selector!r} failed for {step.label}: {last_error}")

        raise last_error

    async def _perform(self, step: WorkflowStep, selector: Optional[str]) -> Any:
        engine = self.engine
        action = step.action

        if action == StepAction.NAVIGATE:
            return await engine.navigate(step.value, timeout_ms=step.timeout_ms)
        if action == StepAction.CLICK:
            return await engine.click(selector)
        if action == StepAction.FILL:
            return await engine.fill(selector, "" if step.value is None else str(step.value))
        if action == StepAction.WAIT_FOR:
            return await engine.wait_for(selector, timeout=step.timeout)
        if action == StepAction.PRESS:
            return await engine.press_key(step.value or "Enter", selector)
        if action == StepAction.EVALUATE:
            payload = await engine.evaluate(step.value)
            # Malformed script output degrades to an empty object
            return {} if payload is None else payload
        if action == StepAction.SCREENSHOT:
            return await engine.screenshot(step.value or "workflow")
        if action == StepAction.WAIT:
            seconds = float(step.value) if step.value is not None else engine.config.step_settle_seconds
            await asyncio.sleep(seconds)
            return seconds
        raise ValueError(f"Unknown action: {action}")

    async def _debug_screenshot(self, label: str):
        self._screenshot_counter += 1
        try:
            await self.engine.screenshot(f"debug-{self._screenshot_counter:03d}-{label}")
        except FATAL_ERRORS:
            logger.warning(f"Browser gone while taking debug screenshot {label}")
