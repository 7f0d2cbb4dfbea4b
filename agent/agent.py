"""
Agent 主流程编排

- start()/stop(): 激活状态 + 后台上下文采集循环
- submit_task(): 登记任务并异步执行，立即返回
- 每个任务: 采集上下文 -> 请求规划 -> 按顺序执行步骤 -> 写入结果 -> 移入历史

所有任务的执行由同一把 asyncio.Lock 串行化（鼠标键盘是整机共享的资源），
同一时刻最多只有一个 current task。
"""

import asyncio
import logging
import threading
import time
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional, Set

from config import AgentConfig

from . import events
from .errors import (
    AgentError,
    AlreadyActiveError,
    CollaboratorError,
    NotActiveError,
    PlanningError,
    StepTimeoutError,
)
from .memory import AgentMemory
from .models import (
    Action,
    ContextSnapshot,
    LearningEvent,
    Plan,
    ScreenshotData,
    Task,
    TaskResult,
    TaskStatus,
    TaskStep,
)
from .recorder import ActionRecorder
from .snapshot import ContextSnapshotter
from .steps import (
    AnalyzeStep,
    CaptureStep,
    ClickStep,
    DragStep,
    KeyStep,
    LaunchStep,
    ScrollStep,
    StepParams,
    TypeStep,
    WaitStep,
    decode_step,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class _TaskPaused(Exception):
    """Agent 已停止，任务在步骤边界处中止"""


class Agent:
    """
    Agent 任务执行引擎

    Parameters:
    - screen: 截图能力，capture_screen(display_index) / save_screenshot(shot, directory)
    - automation: 输入能力，click_at / type_text / press_key / ... / execute_action
    - planner: 规划能力，request_plan(task, screenshot, ui_elements) -> Plan
    - detector: 界面元素识别能力，detect_ui_elements()，可为 None
    - config: AgentConfig
    - event_bus: 事件通知
    - recorder: 动作录制器；未传入时沿用 automation.recorder 或新建
    """

    def __init__(
        self,
        screen,
        automation,
        planner,
        detector=None,
        config: Optional[AgentConfig] = None,
        event_bus: Optional[events.EventBus] = None,
        recorder: Optional[ActionRecorder] = None,
        memory: Optional[AgentMemory] = None,
        task_store: Optional[TaskStore] = None,
    ):
        self.config = config or AgentConfig()
        self.event_bus = event_bus or events.EventBus()

        self.screen = screen
        self.automation = automation
        self.planner = planner
        self.detector = detector

        if recorder is None:
            recorder = getattr(automation, "recorder", None)
        if recorder is None:
            recorder = ActionRecorder(self.config.recording_capacity, self.event_bus)
        # 原语只会写入 automation.recorder，新建的录制器需要挂上去
        if getattr(automation, "recorder", False) is None:
            automation.recorder = recorder
        self.recorder = recorder

        self.memory = memory or AgentMemory(
            max_short_term=self.config.context_history_size,
            max_long_term=self.config.max_learning_events,
        )
        self.task_store = task_store or TaskStore(max_history=self.config.max_task_history)
        self.snapshotter = ContextSnapshotter(screen, detector, automation)

        self._lock = threading.RLock()
        self._active = False
        self._current_task: Optional[Task] = None
        self._last_id_ns = 0

        self._execution_lock: Optional[asyncio.Lock] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._runners: Set[asyncio.Task] = set()

    # ==================== 状态 ====================

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def current_task(self) -> Optional[Task]:
        with self._lock:
            return self._current_task

    def status(self) -> Dict[str, Any]:
        with self._lock:
            current = self._current_task
            return {
                "active": self._active,
                "current_task": current.to_dict() if current else None,
                "context_history": self.memory.context_size(),
            }

    def get_config(self) -> AgentConfig:
        with self._lock:
            return self.config

    def update_config(self, new_config: AgentConfig):
        """替换配置，容量类字段立即作用到各个存储"""
        with self._lock:
            self.config = new_config
            self.memory.resize(new_config.context_history_size, new_config.max_learning_events)
            self.task_store.set_max_history(new_config.max_task_history)
            self.recorder.set_capacity(new_config.recording_capacity)
        logger.info("Agent 配置已更新")

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.task_store.get(task_id)

    def context_history(self) -> List[ContextSnapshot]:
        return self.memory.get_context_history()

    # ==================== 启停 ====================

    async def start(self):
        """激活 Agent 并启动后台监控循环"""
        with self._lock:
            if self._active:
                raise AlreadyActiveError("agent is already active")
            self._active = True
            self._stop_event = asyncio.Event()
            stop_event = self._stop_event

        self._monitor_task = asyncio.create_task(self._monitor_system(stop_event))

        logger.info("AI Agent 已启动")
        self.event_bus.emit(events.AGENT_STATUS_CHANGED, {
            "status": "active",
            "message": "AI Agent started",
        })

    async def stop(self):
        """
        停用 Agent（幂等）

        正在执行的任务被标记为 paused，但不会打断进行中的外部调用，
        任务在下一个步骤边界处中止。
        """
        paused = None
        with self._lock:
            self._active = False
            if self._current_task is not None and self._current_task.status == TaskStatus.RUNNING:
                self._current_task.set_status(TaskStatus.PAUSED)
                paused = self._current_task
            stop_event = self._stop_event

        if stop_event is not None:
            stop_event.set()

        logger.info("AI Agent 已停止")
        self.event_bus.emit(events.AGENT_STATUS_CHANGED, {
            "status": "inactive",
            "message": "AI Agent stopped",
        })
        if paused is not None:
            self.event_bus.emit(events.TASK_STATUS_CHANGED, paused)

    async def join(self):
        """等待后台监控循环和所有已提交的任务结束"""
        pending = list(self._runners)
        if self._monitor_task is not None:
            pending.append(self._monitor_task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _monitor_system(self, stop_event: asyncio.Event):
        """按固定周期采集上下文，直到 Agent 停用"""
        while self.is_active:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.monitor_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                snapshot = await self._call(self.snapshotter.capture)
            except CollaboratorError as e:
                logger.warning(f"采集上下文失败: {e}")
                continue

            self.memory.add_context(snapshot)
            self.event_bus.emit(events.CONTEXT_UPDATE, snapshot)

    async def capture_context(self) -> ContextSnapshot:
        """立即采集一次上下文并加入历史"""
        snapshot = await self._call(self.snapshotter.capture)
        self.memory.add_context(snapshot)
        self.event_bus.emit(events.CONTEXT_UPDATE, snapshot)
        return snapshot

    # ==================== 任务 ====================

    def _new_task_id(self) -> str:
        with self._lock:
            now = time.time_ns()
            if now <= self._last_id_ns:
                now = self._last_id_ns + 1
            self._last_id_ns = now
        return f"task_{now}"

    async def submit_task(self, description: str, priority: int = 0,
                          task_type: str = "user_request") -> Task:
        """
        提交任务，立即返回（状态为 pending 或即将变为 running）

        Raises:
            NotActiveError: Agent 未激活，此时不会写入任务存储
        """
        with self._lock:
            if not self._active:
                raise NotActiveError("agent is not active")
            task = Task(
                id=self._new_task_id(),
                description=description,
                type=task_type,
                priority=priority,
            )
            self.task_store.add(task)

        runner = asyncio.create_task(self._run_task(task))
        self._runners.add(runner)
        runner.add_done_callback(self._runners.discard)

        logger.info(f"任务已创建: {task.id} {description[:100]}")
        self.event_bus.emit(events.TASK_CREATED, task)
        return task

    def _input_lock(self) -> asyncio.Lock:
        """任务执行和动作回放共用的锁，鼠标键盘同一时刻只有一个使用者"""
        with self._lock:
            if self._execution_lock is None:
                self._execution_lock = asyncio.Lock()
            return self._execution_lock

    async def _run_task(self, task: Task):
        async with self._input_lock():
            with self._lock:
                self._current_task = task
                task.set_status(TaskStatus.RUNNING)
            self.event_bus.emit(events.TASK_STATUS_CHANGED, task)

            started_at = datetime.now()
            started = time.perf_counter()
            timeout = self.config.task_timeout
            deadline = time.monotonic() + timeout if timeout else None
            screenshots: List[ScreenshotData] = []

            plan = None
            error = ""
            try:
                plan = await self._plan_and_execute(task, screenshots, deadline)
            except _TaskPaused:
                error = "task paused: agent stopped"
            except AgentError as e:
                error = str(e)
                logger.error(f"任务失败: {task.id} [{e.kind}] {e}")
            except Exception as e:
                error = str(e)
                logger.error(f"任务执行异常: {task.id} {e}", exc_info=True)

            actions: List[Action] = []
            if self.recorder is not None:
                actions = self.recorder.actions_since(started_at)

            with self._lock:
                if task.status == TaskStatus.PAUSED:
                    final_status = TaskStatus.PAUSED
                    error = error or "task paused: agent stopped"
                elif error:
                    final_status = TaskStatus.FAILED
                else:
                    final_status = TaskStatus.COMPLETED

                task.result = TaskResult(
                    success=final_status == TaskStatus.COMPLETED,
                    data={
                        "plan": plan.name if plan else "",
                        "analysis": plan.analysis if plan else "",
                        "completed_steps": sum(
                            1 for s in task.steps if s.status == TaskStatus.COMPLETED
                        ),
                    },
                    error=error if final_status != TaskStatus.COMPLETED else "",
                    screenshots=tuple(screenshots),
                    actions=tuple(actions),
                    metadata={
                        "steps": len(task.steps),
                        "duration_ms": (time.perf_counter() - started) * 1000.0,
                    },
                )
                task.set_status(final_status)
                self.task_store.move_to_history(task)
                self._current_task = None

            if final_status == TaskStatus.COMPLETED:
                logger.info(f"任务完成: {task.id}")
            self._record_learning(task)
            self.event_bus.emit(events.TASK_COMPLETED, task)

    def _checkpoint(self, task: Task, deadline: Optional[float] = None):
        """步骤边界检查：Agent 已停用则中止任务，超过截止时间则抛出 Timeout"""
        changed = False
        with self._lock:
            if not self._active and task.status == TaskStatus.RUNNING:
                task.set_status(TaskStatus.PAUSED)
                changed = True
            paused = task.status == TaskStatus.PAUSED
        if changed:
            self.event_bus.emit(events.TASK_STATUS_CHANGED, task)
        if paused:
            raise _TaskPaused(task.id)
        if deadline is not None and time.monotonic() >= deadline:
            raise StepTimeoutError(f"task {task.id} exceeded its deadline")

    async def _plan_and_execute(self, task: Task, screenshots: List[ScreenshotData],
                                deadline: Optional[float]) -> Plan:
        self._checkpoint(task)

        # 初始上下文采集失败不影响任务
        snapshot = None
        try:
            snapshot = await self._call(self.snapshotter.capture)
        except CollaboratorError as e:
            logger.error(f"采集上下文失败: {e}")
        else:
            self.memory.add_context(snapshot)
            screenshots.append(snapshot.screenshot)

        if snapshot is not None:
            screenshot, ui_elements = snapshot.screenshot, snapshot.ui_elements
        else:
            screenshot = await self._call(self.screen.capture_screen, 0)
            screenshots.append(screenshot)
            ui_elements = []
            if self.detector is not None:
                try:
                    ui_elements = await self._call(self.detector.detect_ui_elements)
                except CollaboratorError as e:
                    logger.warning(f"界面元素识别失败: {e}")

        self._checkpoint(task, deadline)
        plan = await self._call(
            self.planner.request_plan, task, screenshot, ui_elements, wrap=PlanningError
        )
        logger.info(f"任务 {task.id} 规划完成，共 {len(plan.steps)} 步")
        task.context["analysis"] = plan.analysis

        await self._execute_plan(task, plan, screenshots, deadline)
        return plan

    async def _execute_plan(self, task: Task, plan: Plan, screenshots: List[ScreenshotData],
                            deadline: Optional[float]):
        """严格按规划顺序执行步骤，第一个失败的步骤终止剩余步骤"""
        for plan_step in plan.steps:
            self._checkpoint(task)

            parameters = plan_step.parameters
            step = TaskStep(
                id=f"{task.id}_step_{len(task.steps) + 1}",
                type=plan_step.action,
                description=plan_step.description,
                status=TaskStatus.RUNNING,
                parameters=dict(parameters) if isinstance(parameters, dict) else {},
                timestamp=datetime.now(),
            )
            task.steps.append(step)
            started = time.perf_counter()

            try:
                if deadline is not None and time.monotonic() >= deadline:
                    raise StepTimeoutError(f"task {task.id} exceeded its deadline")
                params = decode_step(
                    plan_step.action,
                    parameters,
                    type_delay_ms=self.config.type_delay_ms,
                    wait_ms=self.config.wait_ms,
                )
                step.result = await self._execute_step(params, screenshots)
            except AgentError as e:
                step.status = TaskStatus.FAILED
                step.error = str(e)
                step.duration = time.perf_counter() - started
                logger.error(f"步骤失败: {step.id} [{e.kind}] {e}")
                raise

            step.status = TaskStatus.COMPLETED
            step.duration = time.perf_counter() - started
            self.event_bus.emit(events.TASK_STEP_COMPLETED, step)

    async def _execute_step(self, params: StepParams, screenshots: List[ScreenshotData]) -> Any:
        if isinstance(params, CaptureStep):
            screenshot = await self._call(self.screen.capture_screen, params.display)
            screenshots.append(screenshot)
            await self._save_screenshot(screenshot)
            return screenshot

        elif isinstance(params, ClickStep):
            await self._call(self.automation.click_at, params.x, params.y, params.button)

        elif isinstance(params, TypeStep):
            await self._call(self.automation.type_text, params.text, params.delay)

        elif isinstance(params, KeyStep):
            await self._call(self.automation.press_key, params.key, list(params.modifiers))

        elif isinstance(params, WaitStep):
            # 只挂起当前任务的协程
            await asyncio.sleep(max(params.duration, 0) / 1000.0)

        elif isinstance(params, AnalyzeStep):
            if self.detector is None:
                raise CollaboratorError("no UI detector configured")
            return await self._call(self.detector.detect_ui_elements)

        elif isinstance(params, ScrollStep):
            await self._call(self.automation.scroll, params.x, params.y,
                             params.direction, params.amount)

        elif isinstance(params, DragStep):
            await self._call(self.automation.drag_to, params.from_x, params.from_y,
                             params.to_x, params.to_y)

        elif isinstance(params, LaunchStep):
            await self._call(self.automation.launch_application, params.path, list(params.args))

        return None

    async def _save_screenshot(self, screenshot: ScreenshotData):
        directory = self.config.screenshot_dir
        if not directory:
            return
        try:
            await self._call(self.screen.save_screenshot, screenshot, directory)
        except CollaboratorError as e:
            logger.warning(f"保存截图失败: {e}")

    async def _call(self, func, *args, wrap=CollaboratorError):
        """在线程池中执行阻塞调用，非 AgentError 的异常包装为 wrap 类型"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args))
        except AgentError:
            raise
        except Exception as e:
            raise wrap(f"{getattr(func, '__name__', func)} failed: {e}") from e

    def _record_learning(self, task: Task):
        if not self.config.learning_enabled:
            return
        self.memory.record_learning_event(LearningEvent(
            event_type="task_finished",
            context=self.memory.latest_context(),
            action={
                "task_id": task.id,
                "description": task.description,
                "steps": [s.type for s in task.steps],
            },
            outcome=task.status,
            feedback=task.result.error if task.result else "",
            confidence=1.0 if task.status == TaskStatus.COMPLETED else 0.0,
        ))

    # ==================== 录制 / 回放 ====================

    def start_recording(self):
        self.recorder.start_recording()

    def stop_recording(self) -> List[Action]:
        return self.recorder.stop_recording()

    async def playback_actions(self, actions: List[Action], speed: float = 1.0):
        """
        在线程池中回放，间隔等待只阻塞回放所在的线程

        回放期间持有任务执行锁，与任务步骤互斥使用鼠标键盘。
        """
        async with self._input_lock():
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                partial(self.recorder.playback, actions, speed, self.automation.execute_action)
            )
