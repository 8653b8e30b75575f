from pathlib import Path
from dataclasses import dataclass
from typing import NamedTuple, Optional


class WorkerDefinition(NamedTuple):
    """A worker as declared in the workers configuration file."""
    name: Optional[str]
    description: Optional[str]
    app_path: Optional[str]
    app_params: str = ""

    @property
    def label(self) -> str:
        """Human-readable identifier used in log messages."""
        return self.description or self.name or self.app_path or "<unnamed worker>"


@dataclass(frozen=True)
class RestartPolicy:
    """Global rule controlling whether and when dead workers are relaunched."""
    restart_automatically: bool = False
    restart_delay_ms: int = 0

    @property
    def restart_delay(self) -> float:
        """The restart delay in seconds."""
        return self.restart_delay_ms / 1000.0


@dataclass
class WorkerRuntime:
    """
    A successfully launched worker.

    `process_id` always refers to the most recently started OS process for the
    worker and is overwritten in place when the worker is restarted.
    `started_at` is that process's creation time, which tells it apart from a
    later process reusing the PID. `executable` is the resolved program path.
    """
    definition: WorkerDefinition
    process_id: int
    started_at: Optional[float] = None
    executable: Optional[Path] = None
    restart_count: int = 0
    failed_restarts: int = 0
    cooldown_until: float = 0.0

    @property
    def label(self) -> str:
        return self.definition.label
