#!/usr/bin/env python3
"""Post-reboot startup of Oracle database instances and listeners.

The utility walks the ``oratab`` instance table and, for every entry flagged
for automatic startup, mounts the instance through SQL*Plus and then brings
it to its working state:

``primary`` and ``logical standby`` databases
    are opened for read/write access.

``physical standby`` databases
    are left mounted and managed recovery is started in the background.

Once every instance has been handled, the listeners declared in the
``listener.ora`` file of each instance's environment are started with
``lsnrctl``.

Every step is a single external command whose output is parsed into a closed
enumeration.  Failures are reported in the log and never abort the run: the
next instance or listener is processed regardless.  Success is always
inferred by re-probing the state after an action, never from the action's
own exit code.
"""
from __future__ import annotations

import argparse
import dataclasses
import datetime as _dt
import enum
import json
import logging
import os
import pathlib
import re
import subprocess
import sys
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older runtimes
    import tomli as tomllib  # type: ignore[assignment]

__version__ = "1.0.0"

LOG = logging.getLogger(__name__)

# Milestone levels used by the human-readable log.  They sit between INFO and
# WARNING so that they reach the log file at its default INFO threshold.
BEGIN = 21
END = 22
OK = 25
logging.addLevelName(BEGIN, "BEGIN")
logging.addLevelName(END, "END")
logging.addLevelName(OK, "OK")

LEVEL_LABELS = {logging.CRITICAL: "FATAL"}

DEFAULT_ORATAB = pathlib.Path("/etc/oratab")
SOLARIS_ORATAB = pathlib.Path("/var/opt/oracle/oratab")
LISTENER_PROCESS = "tnslsnr"
LISTENER_CONFIG_NAME = "listener.ora"
DEFAULT_LOG_FILE = pathlib.Path("/var/log/oracle/oracle_autostart.log")
DEFAULT_TRACE_FILE = pathlib.Path("/var/log/oracle/oracle_autostart.trc")


class EnvironmentBindingError(LookupError):
    """Raised when an instance cannot be mapped to an Oracle home."""


class InstanceStatus(enum.Enum):
    """Value of ``v$instance.status`` as far as startup is concerned."""

    STARTED = "STARTED"
    MOUNTED = "MOUNTED"
    OPEN = "OPEN"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_output(cls, output: str) -> "InstanceStatus":
        return _enum_from_scalar(cls, output, cls.UNKNOWN)


class DatabaseRole(enum.Enum):
    """Value of ``v$database.database_role``."""

    PRIMARY = "PRIMARY"
    LOGICAL_STANDBY = "LOGICAL STANDBY"
    PHYSICAL_STANDBY = "PHYSICAL STANDBY"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_output(cls, output: str) -> "DatabaseRole":
        return _enum_from_scalar(cls, output, cls.UNKNOWN)


class RecoveryStatus(enum.Enum):
    """Whether a managed recovery process is running on a standby."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

    @classmethod
    def from_output(cls, output: str) -> "RecoveryStatus":
        """Map the output of a ``count(*)`` over recovery processes."""

        value = parse_scalar(output)
        if value is None:
            return cls.INACTIVE
        try:
            count = int(value)
        except ValueError:
            return cls.INACTIVE
        return cls.ACTIVE if count >= 1 else cls.INACTIVE


class ListenerStatus(enum.Enum):
    """Whether exactly one listener process is serving a listener name."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


_SQLPLUS_ERROR_PREFIXES = ("ORA-", "SP2-", "ERROR")
_SQLPLUS_NOISE_PREFIXES = ("Connected", "Disconnected")


def parse_scalar(output: Optional[str]) -> Optional[str]:
    """Return the single value printed by a headerless SQL*Plus query.

    SQL*Plus reports errors on standard output, so any ``ORA-``/``SP2-``
    diagnostic invalidates the whole response and ``None`` is returned.  The
    connection banner lines are skipped.  Internal whitespace is collapsed so
    that values such as ``PHYSICAL  STANDBY`` compare reliably.
    """

    if not output:
        return None
    value: Optional[str] = None
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.upper().startswith(_SQLPLUS_ERROR_PREFIXES):
            return None
        if line.startswith(_SQLPLUS_NOISE_PREFIXES):
            continue
        if value is None:
            value = " ".join(line.split())
    return value


def _enum_from_scalar(enum_cls, output: str, fallback):
    value = parse_scalar(output)
    if value is None:
        return fallback
    try:
        return enum_cls(value.upper())
    except ValueError:
        return fallback


def count_listener_processes(ps_output: str, name: str) -> int:
    """Count listener processes serving ``name`` in ``ps -eo args`` output.

    A process matches when its command is the listener binary and one of its
    arguments equals ``name`` ignoring case, so ``LISTENER`` never matches a
    ``LISTENER1`` process.
    """

    wanted = name.upper()
    count = 0
    for line in ps_output.splitlines():
        fields = line.split()
        if not fields:
            continue
        if os.path.basename(fields[0]) != LISTENER_PROCESS:
            continue
        if any(arg.upper() == wanted for arg in fields[1:]):
            count += 1
    return count


@dataclasses.dataclass(frozen=True)
class ToolResult:
    """Captured outcome of an external command."""

    args: Tuple[str, ...]
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""

    @property
    def launched(self) -> bool:
        return self.returncode is not None


def run_tool(
    cmd: Sequence[str],
    env: Optional[Mapping[str, str]] = None,
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ToolResult:
    """Run ``cmd`` and capture its output without ever raising.

    Launch failures and expired timeouts are logged and reported with a
    ``returncode`` of ``None`` so that callers can demote them to an
    unrecognized state.
    """

    LOG.debug("Executing command: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            list(cmd),
            input=input_text,
            capture_output=True,
            text=True,
            errors="replace",
            env=dict(env) if env is not None else None,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        LOG.warning("Command %s did not finish within %s seconds", cmd[0], timeout)
        return ToolResult(tuple(cmd), None)
    except OSError as exc:
        LOG.warning("Failed to execute %s: %s", cmd[0], exc)
        return ToolResult(tuple(cmd), None)
    if result.returncode != 0:
        LOG.debug("Command %s exited with status %s", cmd[0], result.returncode)
    if result.stdout:
        LOG.debug("stdout: %s", result.stdout.strip())
    if result.stderr:
        LOG.debug("stderr: %s", result.stderr.strip())
    return ToolResult(tuple(cmd), result.returncode, result.stdout or "", result.stderr or "")


@dataclasses.dataclass(frozen=True)
class OratabEntry:
    """One row of the ``oratab`` instance table."""

    sid: str
    oracle_home: pathlib.Path
    autostart: bool

    @property
    def is_managed(self) -> bool:
        # ``*`` rows only declare a home and never name an instance.
        return self.autostart and self.sid != "*"


def resolve_oratab_path(path: pathlib.Path) -> pathlib.Path:
    """Return the Solaris oratab location when the Linux default is absent."""

    if path == DEFAULT_ORATAB and not path.exists() and SOLARIS_ORATAB.exists():
        LOG.debug("Using %s because %s does not exist", SOLARIS_ORATAB, DEFAULT_ORATAB)
        return SOLARIS_ORATAB
    return path


def parse_oratab(text: str) -> List[OratabEntry]:
    entries: List[OratabEntry] = []
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        fields = line.split(":")
        if len(fields) < 3 or not fields[0].strip():
            LOG.debug("Ignoring malformed oratab line: %s", raw)
            continue
        entries.append(
            OratabEntry(
                sid=fields[0].strip(),
                oracle_home=pathlib.Path(fields[1].strip()),
                autostart=fields[-1].strip() == "Y",
            )
        )
    return entries


def read_oratab(path: pathlib.Path) -> List[OratabEntry]:
    """Read every instance row of ``path``.

    A missing or unreadable table is not an error: the host simply has
    nothing to start.
    """

    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        LOG.warning("Instance table %s does not exist", path)
        return []
    except OSError as exc:
        LOG.warning("Unable to read instance table %s: %s", path, exc)
        return []
    return parse_oratab(text)


def list_managed_instances(path: pathlib.Path = DEFAULT_ORATAB) -> List[str]:
    """Return the names of the instances flagged for automatic startup."""

    return [entry.sid for entry in read_oratab(path) if entry.is_managed]


_LISTENER_KEY_RE = re.compile(r"^(LISTENER[\w.$#-]*)\s*=", re.IGNORECASE)
_LISTENER_PARAMETER_MARKERS = (
    "LOG_FILE",
    "LOG_DIRECTORY",
    "TRACE_FILE",
    "TRACE_DIRECTORY",
    "TRACE_LEVEL",
)


def parse_listener_names(text: str) -> List[str]:
    """Extract listener names from ``listener.ora`` contents.

    Only ``key = value`` lines starting in the first column are considered;
    indented lines continue the previous definition.  Parameter entries and
    the bare ``LISTENER`` keyword are skipped.
    """

    names: List[str] = []
    for line in text.splitlines():
        match = _LISTENER_KEY_RE.match(line)
        if not match:
            continue
        name = match.group(1).upper()
        if name == "LISTENER":
            continue
        if name.endswith(_LISTENER_PARAMETER_MARKERS):
            continue
        if name not in names:
            names.append(name)
    return names


@dataclasses.dataclass(frozen=True)
class OracleEnvironment:
    """Tool environment required to address one instance."""

    sid: str
    oracle_home: pathlib.Path
    tns_admin: pathlib.Path
    library_path: str
    oracle_base: Optional[pathlib.Path] = None

    @property
    def listener_config(self) -> pathlib.Path:
        return self.tns_admin / LISTENER_CONFIG_NAME

    def tool_path(self, name: str) -> str:
        """Prefer the home's own copy of a bare tool name."""

        if os.sep in name:
            return name
        candidate = self.oracle_home / "bin" / name
        if candidate.is_file():
            return str(candidate)
        return name

    def as_environ(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Return a copy of ``base`` (default: the process environment) bound to this instance."""

        environ = dict(os.environ if base is None else base)
        environ["ORACLE_SID"] = self.sid
        environ["ORACLE_HOME"] = str(self.oracle_home)
        environ["TNS_ADMIN"] = str(self.tns_admin)
        environ["LD_LIBRARY_PATH"] = self.library_path
        if self.oracle_base is not None:
            environ["ORACLE_BASE"] = str(self.oracle_base)
        bin_dir = str(self.oracle_home / "bin")
        path = environ.get("PATH", "")
        if bin_dir not in path.split(os.pathsep):
            environ["PATH"] = os.pathsep.join(filter(None, [bin_dir, path]))
        return environ


class EnvironmentBinder:
    """Resolves :class:`OracleEnvironment` values from the instance table.

    This is the lookup ``oraenv`` performs, minus the side effects: the result
    is returned to the caller rather than exported into the process.
    """

    def __init__(
        self,
        entries: Iterable[OratabEntry],
        tns_admin: Optional[pathlib.Path] = None,
        base_environ: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.homes: Dict[str, pathlib.Path] = {}
        for entry in entries:
            self.homes.setdefault(entry.sid, entry.oracle_home)
        self.tns_admin = tns_admin
        self.base_environ = dict(os.environ if base_environ is None else base_environ)
        self.timeout = timeout
        self._bound: Dict[str, OracleEnvironment] = {}

    def bind(self, sid: str) -> OracleEnvironment:
        if sid in self._bound:
            return self._bound[sid]
        try:
            home = self.homes[sid]
        except KeyError:
            raise EnvironmentBindingError(f"instance {sid!r} is not listed in the instance table") from None

        inherited_libs = self.base_environ.get("LD_LIBRARY_PATH", "")
        lib_dir = str(home / "lib")
        library_path = os.pathsep.join(
            [lib_dir] + [item for item in inherited_libs.split(os.pathsep) if item and item != lib_dir]
        )
        seed = OracleEnvironment(sid=sid, oracle_home=home, tns_admin=home / "network" / "admin", library_path=library_path)

        oracle_base = self._query_home_tool(seed, "orabase")
        if oracle_base is None and self.base_environ.get("ORACLE_BASE"):
            oracle_base = pathlib.Path(self.base_environ["ORACLE_BASE"])

        if self.tns_admin is not None:
            tns_admin = self.tns_admin
        else:
            base_home = self._query_home_tool(seed, "orabasehome")
            tns_admin = (base_home or home) / "network" / "admin"

        env = dataclasses.replace(seed, tns_admin=tns_admin, oracle_base=oracle_base)
        LOG.debug(
            "Bound %s: ORACLE_HOME=%s ORACLE_BASE=%s TNS_ADMIN=%s",
            sid,
            env.oracle_home,
            env.oracle_base,
            env.tns_admin,
        )
        self._bound[sid] = env
        return env

    def _query_home_tool(self, env: OracleEnvironment, tool: str) -> Optional[pathlib.Path]:
        executable = env.oracle_home / "bin" / tool
        if not executable.is_file():
            return None
        result = run_tool([str(executable)], env=env.as_environ(self.base_environ), timeout=self.timeout)
        value = result.stdout.strip() if result.returncode == 0 else ""
        if not value:
            LOG.warning("Cannot determine %s output for %s", tool, env.oracle_home)
            return None
        return pathlib.Path(value)


def list_listener_names(env: OracleEnvironment) -> List[str]:
    """Return the listeners declared in the listener file of ``env``."""

    path = env.listener_config
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        LOG.warning("Listener configuration %s does not exist", path)
        return []
    except OSError as exc:
        LOG.warning("Unable to read listener configuration %s: %s", path, exc)
        return []
    return parse_listener_names(text)


class SqlPlus:
    """Runs SQL*Plus scripts as SYSDBA under an explicit environment."""

    HEADER = (
        "whenever sqlerror continue\n"
        "set heading off feedback off pagesize 0 verify off echo off trimout on linesize 200\n"
        "connect / as sysdba\n"
    )
    FOOTER = "exit\n"

    def __init__(self, executable: str = "sqlplus", timeout: Optional[float] = None) -> None:
        self.executable = executable
        self.timeout = timeout

    def render(self, body: str) -> str:
        return self.HEADER + body.strip() + "\n" + self.FOOTER

    def execute(self, env: OracleEnvironment, body: str) -> ToolResult:
        script = self.render(body)
        LOG.debug("SQL*Plus script for %s:\n%s", env.sid, script)
        cmd = [env.tool_path(self.executable), "-S", "/nolog"]
        return run_tool(cmd, env=env.as_environ(), input_text=script, timeout=self.timeout)


class StatusProber:
    """Read-only probes of instance, role, recovery and listener state."""

    INSTANCE_STATUS_QUERY = "select status from v$instance;"
    DATABASE_ROLE_QUERY = "select database_role from v$database;"
    RECOVERY_STATUS_QUERY = "select count(*) from v$managed_standby where process like 'MRP%';"

    def __init__(self, sqlplus: SqlPlus, ps: str = "ps", timeout: Optional[float] = None) -> None:
        self.sqlplus = sqlplus
        self.ps = ps
        self.timeout = timeout

    def get_instance_status(self, env: OracleEnvironment) -> InstanceStatus:
        result = self.sqlplus.execute(env, self.INSTANCE_STATUS_QUERY)
        status = InstanceStatus.from_output(result.stdout)
        LOG.debug("Instance status of %s: %s", env.sid, status.value)
        return status

    def get_database_role(self, env: OracleEnvironment) -> DatabaseRole:
        result = self.sqlplus.execute(env, self.DATABASE_ROLE_QUERY)
        role = DatabaseRole.from_output(result.stdout)
        LOG.debug("Database role of %s: %s", env.sid, role.value)
        return role

    def get_recovery_status(self, env: OracleEnvironment) -> RecoveryStatus:
        result = self.sqlplus.execute(env, self.RECOVERY_STATUS_QUERY)
        status = RecoveryStatus.from_output(result.stdout)
        LOG.debug("Managed recovery of %s: %s", env.sid, status.value)
        return status

    def get_listener_status(self, name: str) -> ListenerStatus:
        result = run_tool([self.ps, "-eo", "args"], timeout=self.timeout)
        if not result.launched:
            return ListenerStatus.INACTIVE
        count = count_listener_processes(result.stdout, name)
        LOG.debug("Found %s %s process(es) for %s", count, LISTENER_PROCESS, name)
        return ListenerStatus.ACTIVE if count == 1 else ListenerStatus.INACTIVE


class ActionExecutor:
    """State-changing commands.  Callers confirm the outcome by re-probing."""

    MOUNT_SCRIPT = "startup mount"
    OPEN_SCRIPT = "alter database open;"
    RECOVERY_SCRIPT = "alter database recover managed standby database disconnect from session;"

    def __init__(
        self,
        sqlplus: SqlPlus,
        lsnrctl: str = "lsnrctl",
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        self.sqlplus = sqlplus
        self.lsnrctl = lsnrctl
        self.dry_run = dry_run
        self.timeout = timeout

    def mount_instance(self, env: OracleEnvironment) -> None:
        self._run_sql(env, "mount", self.MOUNT_SCRIPT)

    def open_database(self, env: OracleEnvironment) -> None:
        self._run_sql(env, "open", self.OPEN_SCRIPT)

    def activate_standby_recovery(self, env: OracleEnvironment) -> None:
        self._run_sql(env, "start managed recovery on", self.RECOVERY_SCRIPT)

    def start_listener(self, env: OracleEnvironment, name: str) -> None:
        if self.dry_run:
            LOG.info("[dry-run] Would start listener %s from %s", name, env.oracle_home)
            return
        cmd = [env.tool_path(self.lsnrctl), "start", name]
        run_tool(cmd, env=env.as_environ(), timeout=self.timeout)

    def _run_sql(self, env: OracleEnvironment, action: str, body: str) -> None:
        if self.dry_run:
            LOG.info("[dry-run] Would %s database %s", action, env.sid)
            return
        LOG.debug("Requesting %s of %s", action, env.sid)
        self.sqlplus.execute(env, body)


@dataclasses.dataclass(frozen=True)
class UnitOutcome:
    """Result of processing one instance or one listener."""

    kind: str
    name: str
    ok: bool
    detail: str


@dataclasses.dataclass
class RunReport:
    outcomes: List[UnitOutcome] = dataclasses.field(default_factory=list)

    @property
    def succeeded(self) -> List[UnitOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> List[UnitOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    def to_dict(self) -> Dict[str, object]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcomes": [dataclasses.asdict(outcome) for outcome in self.outcomes],
        }

    def describe(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class StartupOrchestrator:
    """Sequences probes and actions for every managed instance and listener."""

    def __init__(
        self,
        binder: EnvironmentBinder,
        prober: StatusProber,
        executor: ActionExecutor,
        dedupe_listeners: bool = True,
    ) -> None:
        self.binder = binder
        self.prober = prober
        self.executor = executor
        self.dedupe_listeners = dedupe_listeners

    def run(self, sids: Sequence[str], databases: bool = True, listeners: bool = True) -> RunReport:
        LOG.log(BEGIN, "Starting Oracle services for: %s", ", ".join(sids) or "(no managed instances)")
        report = RunReport()
        if databases:
            for sid in sids:
                report.outcomes.append(self.start_instance(sid))
        if listeners:
            report.outcomes.extend(self.start_listeners(sids))
        LOG.log(
            END,
            "Oracle services processed: %s succeeded, %s failed",
            len(report.succeeded),
            len(report.failed),
        )
        return report

    def start_instance(self, sid: str) -> UnitOutcome:
        try:
            env = self.binder.bind(sid)
        except EnvironmentBindingError as exc:
            return self._failure("database", sid, f"environment could not be set: {exc}")

        LOG.info("Mounting database %s", sid)
        self.executor.mount_instance(env)
        status = self.prober.get_instance_status(env)
        if status not in (InstanceStatus.MOUNTED, InstanceStatus.OPEN):
            return self._failure("database", sid, f"could not be mounted (status {status.value})")
        LOG.info("Database %s is %s", sid, status.value)

        role = self.prober.get_database_role(env)
        LOG.info("Database %s role is %s", sid, role.value)
        if role is DatabaseRole.PHYSICAL_STANDBY:
            self.executor.activate_standby_recovery(env)
            if self.prober.get_recovery_status(env) is RecoveryStatus.ACTIVE:
                return self._success("database", sid, "mounted with managed recovery active")
            return self._failure("database", sid, "managed recovery could not be started")

        if status is InstanceStatus.OPEN:
            return self._success("database", sid, "already open")

        self.executor.open_database(env)
        status = self.prober.get_instance_status(env)
        if status is InstanceStatus.OPEN:
            return self._success("database", sid, "opened")
        return self._failure("database", sid, f"could not be opened (status {status.value})")

    def start_listeners(self, sids: Sequence[str]) -> List[UnitOutcome]:
        outcomes: List[UnitOutcome] = []
        started: Set[Tuple[pathlib.Path, str]] = set()
        for sid in sids:
            try:
                env = self.binder.bind(sid)
            except EnvironmentBindingError as exc:
                LOG.warning("Skipping listeners of %s: %s", sid, exc)
                continue
            names = list_listener_names(env)
            if not names:
                LOG.info("No listeners declared in %s", env.listener_config)
            for name in names:
                key = (env.listener_config, name)
                if self.dedupe_listeners and key in started:
                    LOG.debug("Listener %s from %s already handled", name, env.listener_config)
                    continue
                started.add(key)
                outcomes.append(self.start_listener(env, name))
        return outcomes

    def start_listener(self, env: OracleEnvironment, name: str) -> UnitOutcome:
        LOG.info("Starting listener %s", name)
        self.executor.start_listener(env, name)
        if self.prober.get_listener_status(name) is ListenerStatus.ACTIVE:
            return self._success("listener", name, "started")
        return self._failure("listener", name, "could not be started")

    @staticmethod
    def _success(kind: str, name: str, detail: str) -> UnitOutcome:
        LOG.log(OK, "%s %s %s", kind.capitalize(), name, detail)
        return UnitOutcome(kind, name, True, detail)

    @staticmethod
    def _failure(kind: str, name: str, detail: str) -> UnitOutcome:
        LOG.error("%s %s %s", kind.capitalize(), name, detail)
        return UnitOutcome(kind, name, False, detail)


@dataclasses.dataclass(frozen=True)
class PathSettings:
    """Files read and written by a run."""

    oratab: pathlib.Path = DEFAULT_ORATAB
    log_file: Optional[pathlib.Path] = DEFAULT_LOG_FILE
    trace_file: Optional[pathlib.Path] = DEFAULT_TRACE_FILE
    tns_admin: Optional[pathlib.Path] = None


@dataclasses.dataclass(frozen=True)
class ToolSettings:
    """External executables, bare names are looked up in ``$ORACLE_HOME/bin`` first."""

    sqlplus: str = "sqlplus"
    lsnrctl: str = "lsnrctl"
    ps: str = "ps"


@dataclasses.dataclass(frozen=True)
class RunSettings:
    command_timeout: Optional[float] = None
    dedupe_listeners: bool = True


@dataclasses.dataclass(frozen=True)
class AutostartConfig:
    """Configuration loaded from a TOML file."""

    paths: PathSettings = dataclasses.field(default_factory=PathSettings)
    tools: ToolSettings = dataclasses.field(default_factory=ToolSettings)
    run: RunSettings = dataclasses.field(default_factory=RunSettings)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "AutostartConfig":
        paths_section = _section(data, "paths")

        def _as_path(key: str, default: Optional[pathlib.Path]) -> Optional[pathlib.Path]:
            value = paths_section.get(key)
            if value is None:
                return default
            if not isinstance(value, str) or not value:
                raise TypeError(f"paths.{key} must be a non-empty string")
            return pathlib.Path(value)

        defaults = PathSettings()
        paths = PathSettings(
            oratab=_as_path("oratab", defaults.oratab),
            log_file=_as_path("log_file", defaults.log_file),
            trace_file=_as_path("trace_file", defaults.trace_file),
            tns_admin=_as_path("tns_admin", None),
        )

        tools_section = _section(data, "tools")
        tool_values: Dict[str, str] = {}
        for field in dataclasses.fields(ToolSettings):
            value = tools_section.get(field.name, field.default)
            if not isinstance(value, str) or not value:
                raise TypeError(f"tools.{field.name} must be a non-empty string")
            tool_values[field.name] = value
        unknown_tools = set(tools_section) - set(tool_values)
        if unknown_tools:
            raise ValueError(f"Unknown [tools] entries: {', '.join(sorted(unknown_tools))}")

        run_section = _section(data, "run")
        timeout = run_section.get("command_timeout", 0)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise TypeError("run.command_timeout must be a number of seconds")
        if timeout < 0:
            raise ValueError("run.command_timeout must not be negative")
        dedupe = run_section.get("dedupe_listeners", True)
        if not isinstance(dedupe, bool):
            raise TypeError("run.dedupe_listeners must be a boolean")

        return cls(
            paths=paths,
            tools=ToolSettings(**tool_values),
            run=RunSettings(command_timeout=float(timeout) or None, dedupe_listeners=dedupe),
        )


def _section(data: Mapping[str, object], name: str) -> Mapping[str, object]:
    section = data.get(name, {})
    if not isinstance(section, Mapping):
        raise TypeError(f"[{name}] section must be a table in the configuration")
    return section


DEFAULT_CONFIG_PATH = pathlib.Path(__file__).with_name("oracle_autostart.toml")


def load_autostart_config(path: Optional[pathlib.Path] = None) -> AutostartConfig:
    """Load an :class:`AutostartConfig` from ``path``.

    Without an explicit path the file shipped next to this module is used
    when present, otherwise the built-in defaults apply.
    """

    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return AutostartConfig()
        path = DEFAULT_CONFIG_PATH
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    if not isinstance(data, Mapping):
        raise TypeError("Configuration root must be a table")
    return AutostartConfig.from_mapping(data)


def apply_cli_overrides(config: AutostartConfig, args: argparse.Namespace) -> AutostartConfig:
    paths = config.paths
    if args.oratab is not None:
        paths = dataclasses.replace(paths, oratab=args.oratab)
    if args.log_file is not None:
        paths = dataclasses.replace(paths, log_file=args.log_file)
    if args.trace_file is not None:
        paths = dataclasses.replace(paths, trace_file=args.trace_file)
    if args.tns_admin is not None:
        paths = dataclasses.replace(paths, tns_admin=args.tns_admin)

    run = config.run
    if args.timeout is not None:
        if args.timeout < 0:
            raise ValueError("--timeout must not be negative")
        run = dataclasses.replace(run, command_timeout=args.timeout or None)
    if args.no_dedupe_listeners:
        run = dataclasses.replace(run, dedupe_listeners=False)
    return dataclasses.replace(config, paths=paths, run=run)


def select_instances(managed: Sequence[str], requested: Optional[Sequence[str]]) -> List[str]:
    """Restrict ``managed`` to ``requested`` SIDs, keeping instance table order."""

    if not requested:
        return list(managed)
    wanted = set(requested)
    for sid in sorted(wanted - set(managed)):
        LOG.warning("Instance %s is not flagged for automatic startup; ignoring", sid)
    return [sid for sid in managed if sid in wanted]


EXIT_STATUS_HELP = """\
exit status:
  0  the run completed, even if some instances or listeners failed to start
  1  --fail-on-error was given and at least one instance or listener failed
  2  the configuration file could not be loaded
"""


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=__doc__,
        epilog=EXIT_STATUS_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        help="Path to a TOML configuration file (default: oracle_autostart.toml next to this script).",
    )
    parser.add_argument(
        "--oratab",
        type=pathlib.Path,
        help="Instance table to read (default: /etc/oratab).",
    )
    parser.add_argument(
        "--sid",
        action="append",
        default=[],
        help="Only process this managed instance (may be repeated).",
    )
    parser.add_argument(
        "--skip-databases",
        action="store_true",
        help="Do not mount or open any database.",
    )
    parser.add_argument(
        "--skip-listeners",
        action="store_true",
        help="Do not start any listener.",
    )
    parser.add_argument(
        "--tns-admin",
        type=pathlib.Path,
        help="Directory holding listener.ora, overriding the per-home default.",
    )
    parser.add_argument(
        "--no-dedupe-listeners",
        action="store_true",
        help="Start a listener once per instance even when instances share a listener.ora.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for each external command (0 waits indefinitely).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Probe state but only log the state-changing commands.",
    )
    parser.add_argument(
        "--fail-on-error",
        action="store_true",
        help="Exit with status 1 when any instance or listener failed to start.",
    )
    parser.add_argument(
        "--report",
        type=pathlib.Path,
        help="Optional path to write the run outcome as JSON.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Increase console verbosity (use -vv for debug).",
    )
    parser.add_argument(
        "--log-file",
        type=pathlib.Path,
        help="Human-readable log, appended to on every run.",
    )
    parser.add_argument(
        "--trace-file",
        type=pathlib.Path,
        help="Debug trace with every command and its output, appended to on every run.",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Logging output format (default: text).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    return build_arg_parser().parse_args(argv)


def _level_label(record: logging.LogRecord) -> str:
    return LEVEL_LABELS.get(record.levelno, record.levelname)


class _TextLogFormatter(logging.Formatter):
    """Plain text formatter that prints ``CRITICAL`` as ``FATAL``."""

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        record.levelname = _level_label(record)
        try:
            return super().format(record)
        finally:
            record.levelname = original


class _JSONLogFormatter(logging.Formatter):
    """Format log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - brief output
        payload = {
            "timestamp": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).isoformat(),
            "level": _level_label(record),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(
    verbosity: int,
    log_file: Optional[pathlib.Path] = None,
    trace_file: Optional[pathlib.Path] = None,
    log_format: str = "text",
) -> None:
    console_level = logging.WARNING
    if verbosity == 1:
        console_level = logging.INFO
    elif verbosity >= 2:
        console_level = logging.DEBUG

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    def _formatter(fmt: str) -> logging.Formatter:
        if log_format == "json":
            return _JSONLogFormatter()
        return _TextLogFormatter(fmt)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(_formatter("%(levelname)s: %(message)s"))
    root.addHandler(console_handler)

    levels = [console_level]
    unavailable: List[Tuple[pathlib.Path, OSError]] = []
    for path, level, fmt in (
        (log_file, logging.INFO, "%(asctime)s %(levelname)-7s %(message)s"),
        (trace_file, logging.DEBUG, "%(asctime)s %(levelname)-7s %(name)s: %(message)s"),
    ):
        if path is None:
            continue
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as exc:
            unavailable.append((path, exc))
            continue
        file_handler.setLevel(level)
        file_handler.setFormatter(_formatter(fmt))
        root.addHandler(file_handler)
        levels.append(level)

    root.setLevel(min(levels))
    for path, exc in unavailable:
        LOG.warning("Cannot write log file %s, continuing without it: %s", path, exc)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = apply_cli_overrides(load_autostart_config(args.config), args)
    except (OSError, TypeError, ValueError) as exc:
        configure_logging(args.verbose, args.log_file, args.trace_file, args.log_format)
        LOG.critical("Unable to load configuration: %s", exc)
        return 2

    configure_logging(args.verbose, config.paths.log_file, config.paths.trace_file, args.log_format)

    oratab = resolve_oratab_path(config.paths.oratab)
    entries = read_oratab(oratab)
    managed = [entry.sid for entry in entries if entry.is_managed]
    sids = select_instances(managed, args.sid)
    if not sids:
        LOG.warning("No instances in %s are flagged for automatic startup", oratab)

    timeout = config.run.command_timeout
    sqlplus = SqlPlus(config.tools.sqlplus, timeout=timeout)
    orchestrator = StartupOrchestrator(
        EnvironmentBinder(entries, tns_admin=config.paths.tns_admin, timeout=timeout),
        StatusProber(sqlplus, ps=config.tools.ps, timeout=timeout),
        ActionExecutor(sqlplus, lsnrctl=config.tools.lsnrctl, dry_run=args.dry_run, timeout=timeout),
        dedupe_listeners=config.run.dedupe_listeners,
    )
    report = orchestrator.run(sids, databases=not args.skip_databases, listeners=not args.skip_listeners)

    if args.report:
        args.report.write_text(report.describe(), encoding="utf-8")
        LOG.info("Wrote run report to %s", args.report)

    if args.fail_on_error and report.failed:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
