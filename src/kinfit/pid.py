"""Particle-type database used by the fit harness and event loaders.

Masses are in MeV. The named constants can be used directly instead of raw
masses, and `particle_type_from_name` resolves the short aliases used in JSON
inputs.
"""

from __future__ import annotations

from .models import ParticleType

PHOTON = ParticleType(name="g", mass=0.0, pdg_id=22)
PROTON = ParticleType(name="p", mass=938.272046, pdg_id=2212)
NEUTRON = ParticleType(name="n", mass=939.565379, pdg_id=2112)
PI0 = ParticleType(name="pi0", mass=134.9766, pdg_id=111)
ETA = ParticleType(name="eta", mass=547.853, pdg_id=221)
ETA_PRIME = ParticleType(name="etap", mass=957.78, pdg_id=331)
PI_CHARGED = ParticleType(name="pi+-", mass=139.57018, pdg_id=211)
E_CHARGED = ParticleType(name="e+-", mass=0.510998928, pdg_id=11)

_DETECTABLE = (PHOTON, PROTON, PI_CHARGED, E_CHARGED, NEUTRON)

_NAME_TO_TYPE: dict[str, ParticleType] = {
    "g": PHOTON,
    "gamma": PHOTON,
    "photon": PHOTON,
    "p": PROTON,
    "proton": PROTON,
    "n": NEUTRON,
    "neutron": NEUTRON,
    "pi0": PI0,
    "eta": ETA,
    "etap": ETA_PRIME,
    "eta'": ETA_PRIME,
    "pi+-": PI_CHARGED,
    "pi": PI_CHARGED,
    "pion": PI_CHARGED,
    "e+-": E_CHARGED,
    "e": E_CHARGED,
    "electron": E_CHARGED,
}


def detectable_types() -> tuple[ParticleType, ...]:
    """Species the detector can identify directly."""
    return _DETECTABLE


def particle_type_from_name(name: str) -> ParticleType:
    """Resolve a short particle name (e.g. `g`, `proton`, `eta`) into a type."""
    key = name.strip().lower()
    try:
        return _NAME_TO_TYPE[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_TYPE))
        raise ValueError(
            f"Unknown particle type name '{name}'. Supported names: {supported}"
        ) from exc
