"""Input/output helpers for JSON event inputs and tabular diagnostics export."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

from .diagnostics import Diagnostics
from .models import Event, LorentzVector, Particle, TaggerHit, Track
from .pid import particle_type_from_name


def load_events_json(path: str | Path) -> list[Event]:
    """Load multi-event input JSON into `Event` objects.

    Expected shape:
    {
      "events": [
        {
          "event_id": "...",
          "tracks": [{"cluster_energy": ..., "veto_energy": ...}, ...],
          "particles": [{"type": "g", "p4": [px, py, pz, e]}, ...],
          "tagger_hits": [{"photon_energy": ..., "time": ...}, ...],
          "mc_true": [{"type": "p", "p4": [px, py, pz, e]}, ...],
          "cb_energy_sum": ...
        },
        ...
      ]
    }
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ValueError("Events JSON must contain a list under key 'events'.")
    out: list[Event] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ValueError(f"Event entry at index {idx} must be an object.")
        event_id = str(event.get("event_id", f"evt{idx}"))
        context = f"event '{event_id}'"
        out.append(
            Event(
                event_id=event_id,
                tracks=tuple(
                    _parse_track_item(item, tidx, context)
                    for tidx, item in enumerate(_list_field(event, "tracks", context))
                ),
                particles=tuple(
                    _parse_particle_item(item, pidx, context)
                    for pidx, item in enumerate(_list_field(event, "particles", context))
                ),
                tagger_hits=tuple(
                    _parse_tagger_hit_item(item, hidx, context)
                    for hidx, item in enumerate(_list_field(event, "tagger_hits", context))
                ),
                mc_true=tuple(
                    _parse_particle_item(item, pidx, context)
                    for pidx, item in enumerate(_list_field(event, "mc_true", context))
                ),
                cb_energy_sum=float(event.get("cb_energy_sum", 0.0)),
            )
        )
    return out


def write_events_json(path: str | Path, events: Iterable[Event]) -> None:
    """Write events in the format read by `load_events_json`."""
    payload = {"events": [_event_to_dict(e) for e in events]}
    Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def write_diagnostics_table(path: str | Path, *diagnostics: Diagnostics) -> None:
    """Write recorded diagnostics into a Parquet/CSV/Pickle table."""
    pd = require_pandas()
    frames = []
    for diag in diagnostics:
        frame = diag.to_frame()
        frame.insert(0, "group", diag.name)
        frames.append(frame)
    if frames:
        df = pd.concat(frames, ignore_index=True)
    else:
        df = pd.DataFrame(columns=["group", "metric", "value", "value_y"])
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    else:
        raise ValueError(
            f"Unsupported output format '{suffix}'. Use .parquet, .csv, or .pkl"
        )


def require_pandas():
    """Import pandas lazily and provide a clear installation hint on failure."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required to export diagnostics tables. Install pandas (and pyarrow for Parquet)."
        ) from exc
    return pd


def _event_to_dict(event: Event) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "tracks": [
            {"cluster_energy": t.cluster_energy, "veto_energy": t.veto_energy} for t in event.tracks
        ],
        "particles": [_particle_to_dict(p) for p in event.particles],
        "tagger_hits": [
            {"photon_energy": h.photon_energy, "time": h.time} for h in event.tagger_hits
        ],
        "mc_true": [_particle_to_dict(p) for p in event.mc_true],
        "cb_energy_sum": event.cb_energy_sum,
    }


def _particle_to_dict(particle: Particle) -> dict[str, Any]:
    return {"type": particle.type.name, "p4": list(particle.p4.components())}


def _list_field(data: dict[str, Any], key: str, context: str) -> list[Any]:
    """Optional list-valued key; absent means empty."""
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ValueError(f"Field '{key}' in {context} must be a list.")
    return value


def _parse_track_item(item: Any, idx: int, context: str) -> Track:
    """Parse one track dictionary into a `Track`."""
    if not isinstance(item, dict):
        raise ValueError(f"Track entry at index {idx} in {context} must be an object.")
    return Track(
        cluster_energy=float(item["cluster_energy"]),
        veto_energy=float(item.get("veto_energy", 0.0)),
    )


def _parse_particle_item(item: Any, idx: int, context: str) -> Particle:
    """Parse one particle dictionary into a `Particle`."""
    if not isinstance(item, dict):
        raise ValueError(f"Particle entry at index {idx} in {context} must be an object.")
    if "type" not in item:
        raise ValueError(f"Particle at index {idx} in {context} must define 'type'.")
    return Particle(type=particle_type_from_name(str(item["type"])), p4=_parse_p4(item, idx, context))


def _parse_tagger_hit_item(item: Any, idx: int, context: str) -> TaggerHit:
    """Parse one tagger-hit dictionary into a `TaggerHit`."""
    if not isinstance(item, dict):
        raise ValueError(f"Tagger hit at index {idx} in {context} must be an object.")
    return TaggerHit(
        photon_energy=float(item["photon_energy"]),
        time=float(item.get("time", 0.0)),
    )


def _parse_p4(item: dict[str, Any], idx: int, context: str) -> LorentzVector:
    """Accept `p4: [px, py, pz, e]` or explicit `px/py/pz/e` keys."""
    value = item.get("p4")
    if value is None:
        try:
            return LorentzVector(float(item["px"]), float(item["py"]), float(item["pz"]), float(item["e"]))
        except KeyError as exc:
            raise ValueError(
                f"Particle at index {idx} in {context} needs 'p4' or px/py/pz/e."
            ) from exc
    if not isinstance(value, list) or len(value) != 4:
        raise ValueError(f"Particle p4 at index {idx} in {context} must be a 4-element list.")
    return LorentzVector(float(value[0]), float(value[1]), float(value[2]), float(value[3]))


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
