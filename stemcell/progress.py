import dataclasses
import enum
import logging
import time
import typing

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Step:
    '''
    a single trackable unit of work. `backend_id` is set for steps publishing to a cloud.

    `description` may be a callable, for descriptions depending on results of previous steps
    (it is evaluated immediately before the step is run).
    '''
    description: str | typing.Callable[[], str]
    action: typing.Callable[[], typing.Any]
    backend_id: typing.Optional[str] = None

    def describe(self) -> str:
        if callable(self.description):
            return self.description()
        return self.description


class StepState(enum.Enum):
    DONE = 'done'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclasses.dataclass(frozen=True)
class StepEvent:
    stage: str
    index: int
    description: str
    state: StepState
    error: typing.Optional[str] = None


class LoggingProgressReporter:
    """Reports stage progress to the log, and keeps track of all reported steps."""

    def __init__(self, logger: logging.Logger=logger):
        self.logger = logger
        self.stage = None
        self.total_steps = 0
        self.events: list[StepEvent] = []

    @property
    def reported_steps(self) -> int:
        return len([e for e in self.events if e.stage == self.stage])

    def begin_stage(self, title: str, total_steps: int):
        self.stage = title
        self.total_steps = total_steps
        self.logger.info(f'Started {title} ({total_steps} steps)')

    def _record(self, description: str, state: StepState, error: str=None) -> StepEvent:
        event = StepEvent(
            stage=self.stage,
            index=self.reported_steps + 1,
            description=description,
            state=state,
            error=error,
        )
        self.events.append(event)
        return event

    def track_step(self, description: str, work: typing.Callable[[], typing.Any]):
        index = self.reported_steps + 1
        self.logger.info(f'{self.stage} ({index}/{self.total_steps}): {description}')
        started = time.monotonic()

        try:
            result = work()
        except Exception as e:
            self._record(description, StepState.FAILED, error=str(e))
            self.logger.error(f'{self.stage} ({index}/{self.total_steps}) failed: {description}: {e}')
            raise

        self._record(description, StepState.DONE)
        elapsed = time.monotonic() - started
        self.logger.info(
            f'{self.stage} ({index}/{self.total_steps}) done: {description} ({elapsed:.2f}s)'
        )
        return result

    def skip_step(self, description: str):
        index = self.reported_steps + 1
        self._record(description, StepState.SKIPPED)
        self.logger.warning(f'{self.stage} ({index}/{self.total_steps}) skipped: {description}')

    def end_stage(self):
        if self.reported_steps != self.total_steps:
            self.logger.warning(
                f'{self.stage}: reported {self.reported_steps} steps, '
                f'but declared {self.total_steps}'
            )
        self.logger.info(f'Finished {self.stage}')


def run_plan(
    title: str,
    plan: typing.Sequence[Step],
    reporter,
    continue_on_backend_failure: bool=False,
    continuable_errors: tuple[type[Exception], ...]=(Exception,),
) -> dict[str, Exception]:
    '''
    declares `plan` to the given reporter, and runs its steps in order.

    If `continue_on_backend_failure` is set, a (continuable) error raised by a step that is
    bound to a backend marks said backend as failed; its remaining steps are reported as
    skipped. Returns the errors of failed backends (empty if all succeeded).
    '''
    reporter.begin_stage(title, len(plan))

    failed_backends = {}
    for step in plan:
        if step.backend_id is not None and step.backend_id in failed_backends:
            reporter.skip_step(step.describe())
            continue

        try:
            reporter.track_step(step.describe(), step.action)
        except continuable_errors as e:
            if not continue_on_backend_failure or step.backend_id is None:
                raise
            logger.warning(f'publishing to cloud {step.backend_id} failed - continuing: {e}')
            failed_backends[step.backend_id] = e

    reporter.end_stage()
    return failed_backends
