"""
Event catalog: identifiers, categories, presets and filter parsing.

Every event type has a dotted lowercase name (``beat``, ``key.change``,
``bands.mel``) used on the command line, in config files and on the wire.
Transport events (``track.*``) are bookkeeping: they are always emitted and
can never be selected in a filter.

Example:
    >>> parse_filter("beat, onset, beat") == default_events()
    True
    >>> tier1_events() >= default_events()
    True
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class Category(Enum):
    """Fixed event categories."""
    TRANSPORT = "transport"
    RHYTHM = "rhythm"
    ONSET = "onset"
    TONAL = "tonal"
    PITCH = "pitch"
    LOUDNESS = "loudness"
    SILENCE = "silence"
    SPECTRAL = "spectral"
    BANDS = "bands"
    STRUCTURE = "structure"
    QUALITY = "quality"
    ENVELOPE = "envelope"


class EventType(Enum):
    """All event identifiers. The value is the dotted wire/CLI name."""

    # Transport
    TRACK_START = "track.start"
    TRACK_END = "track.end"
    TRACK_POSITION = "track.position"
    TRACK_ABORT = "track.abort"
    TRACK_PREPARE = "track.prepare"

    # Rhythm
    BEAT = "beat"
    TEMPO_CHANGE = "tempo.change"
    DOWNBEAT = "downbeat"

    # Onset
    ONSET = "onset"
    ONSET_RATE = "onset.rate"
    NOVELTY = "novelty"

    # Tonal
    KEY_CHANGE = "key.change"
    CHORD_CHANGE = "chord.change"
    CHROMA = "chroma"
    TUNING = "tuning"
    DISSONANCE = "dissonance"
    INHARMONICITY = "inharmonicity"

    # Pitch / melody
    PITCH = "pitch"
    PITCH_CHANGE = "pitch.change"
    MELODY = "melody"

    # Loudness / energy
    LOUDNESS = "loudness"
    LOUDNESS_PEAK = "loudness.peak"
    ENERGY = "energy"
    DYNAMIC_CHANGE = "dynamic.change"

    # Silence / gap
    SILENCE_START = "silence.start"
    SILENCE_END = "silence.end"
    GAP = "gap"

    # Spectral
    SPECTRAL_CENTROID = "spectral.centroid"
    SPECTRAL_FLUX = "spectral.flux"
    SPECTRAL_COMPLEXITY = "spectral.complexity"
    SPECTRAL_CONTRAST = "spectral.contrast"
    SPECTRAL_ROLLOFF = "spectral.rolloff"
    MFCC = "mfcc"
    TIMBRE_CHANGE = "timbre.change"

    # Bands
    BANDS_MEL = "bands.mel"
    BANDS_BARK = "bands.bark"
    BANDS_ERB = "bands.erb"
    HFC = "hfc"

    # Structure
    SEGMENT_BOUNDARY = "segment.boundary"
    FADE_IN = "fade.in"
    FADE_OUT = "fade.out"

    # Quality
    CLICK = "click"
    DISCONTINUITY = "discontinuity"
    NOISE_BURST = "noise.burst"
    SATURATION = "saturation"
    HUM = "hum"

    # Envelope / transient
    ENVELOPE = "envelope"
    ATTACK = "attack"
    DECAY = "decay"


EventFilter = FrozenSet[EventType]

_CATEGORY_MEMBERS: Dict[Category, tuple] = {
    Category.TRANSPORT: (
        EventType.TRACK_START,
        EventType.TRACK_END,
        EventType.TRACK_POSITION,
        EventType.TRACK_ABORT,
        EventType.TRACK_PREPARE,
    ),
    Category.RHYTHM: (EventType.BEAT, EventType.TEMPO_CHANGE, EventType.DOWNBEAT),
    Category.ONSET: (EventType.ONSET, EventType.ONSET_RATE, EventType.NOVELTY),
    Category.TONAL: (
        EventType.KEY_CHANGE,
        EventType.CHORD_CHANGE,
        EventType.CHROMA,
        EventType.TUNING,
        EventType.DISSONANCE,
        EventType.INHARMONICITY,
    ),
    Category.PITCH: (EventType.PITCH, EventType.PITCH_CHANGE, EventType.MELODY),
    Category.LOUDNESS: (
        EventType.LOUDNESS,
        EventType.LOUDNESS_PEAK,
        EventType.ENERGY,
        EventType.DYNAMIC_CHANGE,
    ),
    Category.SILENCE: (EventType.SILENCE_START, EventType.SILENCE_END, EventType.GAP),
    Category.SPECTRAL: (
        EventType.SPECTRAL_CENTROID,
        EventType.SPECTRAL_FLUX,
        EventType.SPECTRAL_COMPLEXITY,
        EventType.SPECTRAL_CONTRAST,
        EventType.SPECTRAL_ROLLOFF,
        EventType.MFCC,
        EventType.TIMBRE_CHANGE,
    ),
    Category.BANDS: (
        EventType.BANDS_MEL,
        EventType.BANDS_BARK,
        EventType.BANDS_ERB,
        EventType.HFC,
    ),
    Category.STRUCTURE: (
        EventType.SEGMENT_BOUNDARY,
        EventType.FADE_IN,
        EventType.FADE_OUT,
    ),
    Category.QUALITY: (
        EventType.CLICK,
        EventType.DISCONTINUITY,
        EventType.NOISE_BURST,
        EventType.SATURATION,
        EventType.HUM,
    ),
    Category.ENVELOPE: (EventType.ENVELOPE, EventType.ATTACK, EventType.DECAY),
}

_CATEGORY_OF: Dict[EventType, Category] = {
    event_type: category
    for category, members in _CATEGORY_MEMBERS.items()
    for event_type in members
}

_NAME_TO_TYPE: Dict[str, EventType] = {et.value: et for et in EventType}


def event_name(event_type: EventType) -> str:
    """Return the dotted name of an event type."""
    return event_type.value


def event_type_from_name(name: str) -> EventType:
    """Look up an event type by its dotted name.

    Raises:
        KeyError: If the name is not a known event type.
    """
    return _NAME_TO_TYPE[name]


def category_of(event_type: EventType) -> Category:
    return _CATEGORY_OF[event_type]


def events_in_category(category: Category) -> FrozenSet[EventType]:
    return frozenset(_CATEGORY_MEMBERS[category])


def is_transport(event_type: EventType) -> bool:
    """True for bookkeeping events that are always emitted."""
    return _CATEGORY_OF[event_type] is Category.TRANSPORT


def selectable_names() -> List[str]:
    """Sorted names of every event type that may appear in a filter."""
    return sorted(et.value for et in EventType if not is_transport(et))


def default_events() -> EventFilter:
    return frozenset({EventType.BEAT, EventType.ONSET})


def tier1_events() -> EventFilter:
    """Primary events: rhythm basics, silence, loudness and energy."""
    return frozenset({
        EventType.BEAT,
        EventType.ONSET,
        EventType.SILENCE_START,
        EventType.SILENCE_END,
        EventType.GAP,
        EventType.LOUDNESS,
        EventType.LOUDNESS_PEAK,
        EventType.ENERGY,
        EventType.DYNAMIC_CHANGE,
    })


def tier2_events() -> EventFilter:
    """Tier 1 plus tonal, pitch/melody, rhythm extras, spectral, bands and structure."""
    extras = set()
    for category in (
        Category.TONAL,
        Category.PITCH,
        Category.RHYTHM,
        Category.ONSET,
        Category.SPECTRAL,
        Category.BANDS,
        Category.STRUCTURE,
    ):
        extras.update(_CATEGORY_MEMBERS[category])
    return tier1_events() | frozenset(extras)


def all_events() -> EventFilter:
    """Every selectable (non-transport) event type."""
    return frozenset(et for et in EventType if not is_transport(et))


_PRESETS = {
    "default": default_events,
    "tier1": tier1_events,
    "primary": tier1_events,
    "tier2": tier2_events,
    "all": all_events,
}


def preset_names() -> List[str]:
    return sorted(_PRESETS)


def resolve_preset(name: str) -> EventFilter:
    """Return the filter for a named preset.

    Raises:
        KeyError: If the preset does not exist.
    """
    return _PRESETS[name.strip().lower()]()


def parse_filter(csv: str) -> EventFilter:
    """Parse a comma-separated list of event names into a filter.

    Unknown names and transport names are skipped with a warning; neither is
    fatal here. An empty result is returned as-is and must be rejected by the
    caller.

    Args:
        csv: Names such as ``"beat, onset,pitch"``.

    Returns:
        Frozen set of selected event types. Duplicates collapse.
    """
    selected = set()
    for token in csv.split(","):
        token = token.strip()
        if not token:
            continue
        event_type = _NAME_TO_TYPE.get(token)
        if event_type is None:
            logger.warning("Unknown event type '%s', skipping", token)
            continue
        if is_transport(event_type):
            logger.warning(
                "Transport event '%s' is always enabled and cannot be selected, skipping",
                token,
            )
            continue
        selected.add(event_type)
    return frozenset(selected)


def needs_any(event_filter: Iterable[EventType], wanted: Iterable[EventType]) -> bool:
    """True if the filter contains at least one of ``wanted``."""
    active = set(event_filter)
    return any(et in active for et in wanted)
