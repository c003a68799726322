from .core import (  # noqa: F401
    CompletedJob,
    Job,
    JobDemand,
    JobPlanning,
    JobStep,
    JobStepMachine,
    Machine,
    OperatorProfile,
    StepDetail,
    TimeStampedModel,
    UserMachine,
)
from .audit import StepTransition  # noqa: F401
