"""mpssh: Run a command on many hosts over ssh, in parallel."""

__version__ = "1.4.0"

from .config import Config, load_config
from .errors import HostListError, MpsshError, SpawnError
from .executor import RunSummary, Scheduler, build_ssh_command
from .formatter import OutputFormatter
from .hosts import Host, HostList, load_hosts
from .pool import SlotPool
from .slot import ExecutionSlot, LineBuffer, SlotState, Stream

__all__ = [
    "Config",
    "load_config",
    "HostListError",
    "MpsshError",
    "SpawnError",
    "RunSummary",
    "Scheduler",
    "build_ssh_command",
    "OutputFormatter",
    "Host",
    "HostList",
    "load_hosts",
    "SlotPool",
    "ExecutionSlot",
    "LineBuffer",
    "SlotState",
    "Stream",
]
