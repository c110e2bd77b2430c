"""Side effects of a triggered pull request: status reports and builds."""

from prbuilder.actions.builds import (
    BuildCause,
    BuildResult,
    BuildTrigger,
    ConsoleBuildTrigger,
    HttpBuildTrigger,
    build_trigger_from_config,
)
from prbuilder.actions.reporters import (
    CommitStatusReporter,
    LogStatusReporter,
    StatusReporter,
    build_reporters,
)

__all__ = [
    "BuildCause",
    "BuildResult",
    "BuildTrigger",
    "CommitStatusReporter",
    "ConsoleBuildTrigger",
    "HttpBuildTrigger",
    "LogStatusReporter",
    "StatusReporter",
    "build_reporters",
    "build_trigger_from_config",
]
