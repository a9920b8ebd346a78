"""
Configuration for the beatcast emitter.

Provides a frozen dataclass holding every network, analysis and filter
parameter of one run, plus layered loading: built-in defaults are overridden
by a YAML config file, which is in turn overridden by command-line values,
field by field.

YAML layout::

    network:
      multicast_group: 239.255.0.1
      port: 5000
      ttl: 1
      loopback: true
      interface: 0.0.0.0
      unicast: gateway          # or "host", "host:port"; omit to disable
    analysis:
      sample_rate: 44100
      frame_size: 2048
      hop_size: 1024
      melody_hop_size: 128
      beats_per_bar: 4
      workers: 1
    transport:
      position_interval: 1.0
      preroll: 3.0
    events:
      continuous_interval: 0.1
      enabled: tier1            # preset name, "beat,onset", or a list
"""

import ipaddress
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence, Union

import yaml

from beatcast.errors import ConfigError
from beatcast.events import (
    EventType,
    default_events,
    is_transport,
    parse_filter,
    preset_names,
    resolve_preset,
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

DEFAULT_CONFIG_LOCATIONS = (
    Path("config") / "beatcast-default.yaml",
    Path("beatcast-default.yaml"),
)

# (section, key) in the YAML file -> EmitterConfig field
_YAML_FIELDS = {
    ("network", "multicast_group"): "multicast_group",
    ("network", "port"): "port",
    ("network", "ttl"): "ttl",
    ("network", "loopback"): "loopback",
    ("network", "interface"): "interface",
    ("network", "unicast"): "unicast_target",
    ("analysis", "sample_rate"): "sample_rate",
    ("analysis", "frame_size"): "frame_size",
    ("analysis", "hop_size"): "hop_size",
    ("analysis", "melody_hop_size"): "melody_hop_size",
    ("analysis", "beats_per_bar"): "beats_per_bar",
    ("analysis", "workers"): "workers",
    ("transport", "position_interval"): "position_interval",
    ("transport", "preroll"): "preroll_s",
    ("events", "continuous_interval"): "continuous_interval",
    ("events", "enabled"): "enabled_events",
}


@dataclass(frozen=True)
class EmitterConfig:
    """
    Immutable snapshot of one run's parameters.

    Attributes:
        input_file: Audio file to analyze and stream.
        enabled_events: Selected non-transport event types.
        multicast_group: IPv4 multicast destination address.
        port: UDP destination port (shared by multicast and unicast).
        ttl: Multicast hop limit.
        loopback: Whether multicast datagrams loop back to local listeners.
        interface: Outbound interface address; ``0.0.0.0`` lets the OS pick.
        unicast_target: Optional duplicate destination: ``"gateway"``,
            ``"host"`` or ``"host:port"``. None disables the fallback.
        sample_rate: Analysis sample rate in Hz.
        frame_size: Analysis frame length in samples.
        hop_size: Analysis hop length in samples.
        melody_hop_size: Hop length used by the melody pass.
        beats_per_bar: Beats grouped into one bar for downbeat events.
        continuous_interval: Minimum spacing in seconds between samples of
            one continuous event stream.
        position_interval: Seconds between ``track.position`` heartbeats.
        preroll_s: Optional countdown before playback starts.
        workers: Number of analysis passes run concurrently.
    """

    input_file: Path
    enabled_events: FrozenSet[EventType] = field(default_factory=default_events)
    multicast_group: str = "239.255.0.1"
    port: int = 5000
    ttl: int = 1
    loopback: bool = True
    interface: str = "0.0.0.0"
    unicast_target: Optional[str] = None
    sample_rate: int = 44100
    frame_size: int = 2048
    hop_size: int = 1024
    melody_hop_size: int = 128
    beats_per_bar: int = 4
    continuous_interval: float = 0.1
    position_interval: float = 1.0
    preroll_s: Optional[float] = None
    workers: int = 1

    def __post_init__(self) -> None:
        """Coerce loosely typed values and validate."""
        # Since frozen=True, we use object.__setattr__ for initialization
        if isinstance(self.input_file, str):
            object.__setattr__(self, "input_file", Path(self.input_file))
        if not isinstance(self.enabled_events, frozenset):
            object.__setattr__(self, "enabled_events", frozenset(self.enabled_events))
        self._validate()

    def _validate(self) -> None:
        if not str(self.input_file):
            raise ConfigError("input_file must be set")

        if not self.enabled_events:
            raise ConfigError("no valid events specified")
        transport = sorted(et.value for et in self.enabled_events if is_transport(et))
        if transport:
            raise ConfigError(
                f"transport events cannot be selected: {', '.join(transport)}"
            )

        try:
            group = ipaddress.IPv4Address(self.multicast_group)
        except ValueError as e:
            raise ConfigError(f"invalid multicast_group: {self.multicast_group}") from e
        if not group.is_multicast:
            raise ConfigError(f"multicast_group is not a multicast address: {group}")
        try:
            ipaddress.IPv4Address(self.interface)
        except ValueError as e:
            raise ConfigError(f"invalid interface address: {self.interface}") from e

        if not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be in 1-65535, got {self.port}")
        if not 0 <= self.ttl <= 255:
            raise ConfigError(f"ttl must be in 0-255, got {self.ttl}")

        for name in ("sample_rate", "frame_size", "hop_size", "melody_hop_size",
                     "beats_per_bar", "workers"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.hop_size > self.frame_size:
            raise ConfigError(
                f"hop_size ({self.hop_size}) cannot exceed frame_size ({self.frame_size})"
            )

        if self.continuous_interval <= 0:
            raise ConfigError("continuous_interval must be positive")
        if self.position_interval <= 0:
            raise ConfigError("position_interval must be positive")
        if self.preroll_s is not None and self.preroll_s < 0:
            raise ConfigError("preroll cannot be negative")

    @property
    def preroll_enabled(self) -> bool:
        return bool(self.preroll_s)


def resolve_event_filter(selection: Union[str, Sequence[str], Iterable[EventType]]) -> FrozenSet[EventType]:
    """Resolve a preset name, comma-separated list, or sequence into a filter.

    Raises:
        ConfigError: If the value is neither a string nor a list, or if
            nothing valid remains after parsing.
    """
    if isinstance(selection, str):
        if selection.strip().lower() in preset_names():
            return resolve_preset(selection)
        selected = parse_filter(selection)
    elif not isinstance(selection, (list, tuple, set, frozenset)):
        raise ConfigError(
            f"events must be a preset name, a comma-separated string or a list, "
            f"got {type(selection).__name__}: {selection!r}"
        )
    else:
        items = list(selection)
        if all(isinstance(item, EventType) for item in items):
            selected = frozenset(et for et in items if not is_transport(et))
        else:
            selected = parse_filter(",".join(str(item) for item in items))
    if not selected:
        raise ConfigError("no valid events specified")
    return selected


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML config file into a flat dict of EmitterConfig fields.

    Unknown sections and keys are ignored with a debug message.

    Raises:
        ConfigError: If the file cannot be read or is not valid YAML.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    values: Dict[str, Any] = {}
    for section, entries in raw.items():
        if not isinstance(entries, dict):
            logger.debug("Ignoring non-mapping section '%s' in %s", section, path)
            continue
        for key, value in entries.items():
            target = _YAML_FIELDS.get((section, key))
            if target is None:
                logger.debug("Ignoring unknown config key %s.%s in %s", section, key, path)
                continue
            values[target] = value

    if "enabled_events" in values:
        values["enabled_events"] = resolve_event_filter(values["enabled_events"])
    return values


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[Union[str, Path]] = None,
    search_defaults: bool = True,
) -> EmitterConfig:
    """Build an EmitterConfig from defaults, a config file and overrides.

    Args:
        overrides: Command-line values keyed by EmitterConfig field name.
            ``None`` values are treated as "not given".
        config_path: Explicit YAML file. Must exist.
        search_defaults: When no explicit file is given, try the default
            locations and silently skip the ones that do not exist.

    Returns:
        Validated, frozen configuration.

    Raises:
        ConfigError: For a missing explicit file, malformed YAML, or any
            invalid value.
    """
    merged: Dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        merged.update(read_config_file(config_path))
        logger.debug("Loaded config file %s", config_path)
    elif search_defaults:
        for candidate in DEFAULT_CONFIG_LOCATIONS:
            if candidate.exists():
                merged.update(read_config_file(candidate))
                logger.debug("Loaded default config file %s", candidate)

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    known = {f.name for f in fields(EmitterConfig)}
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ConfigError(f"Unknown config fields: {', '.join(unknown)}")
    if "input_file" not in merged:
        raise ConfigError("no input file specified")

    try:
        return EmitterConfig(**merged)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
