"""Toy Monte-Carlo source for `gamma p -> p X, X -> gamma gamma` events.

Events carry one tagger hit with the exact beam energy and the MC-true list
`[X, p, gamma, gamma]`, so the fit harness can run on them directly.
"""

from __future__ import annotations

import math
from typing import Iterator

import numpy as np

from .kinematics import boost, boost_vector
from .models import Event, LorentzVector, Particle, ParticleType, TaggerHit
from .pid import PHOTON, PI0, PROTON


def random_unit_vector(rng: np.random.Generator) -> tuple[float, float, float]:
    """Sample an isotropic 3D unit vector."""
    cos_theta = rng.uniform(-1.0, 1.0)
    sin_theta = math.sqrt(max(0.0, 1.0 - cos_theta * cos_theta))
    phi = rng.uniform(0.0, 2.0 * math.pi)
    return sin_theta * math.cos(phi), sin_theta * math.sin(phi), cos_theta


def two_body_momentum(parent_mass: float, m1: float, m2: float) -> float:
    """Return daughter momentum magnitude in parent rest frame."""
    term = (parent_mass * parent_mass - (m1 + m2) * (m1 + m2)) * (
        parent_mass * parent_mass - (m1 - m2) * (m1 - m2)
    )
    if term <= 0.0:
        return 0.0
    return math.sqrt(term) / (2.0 * parent_mass)


def two_body_decay(
    parent: LorentzVector, m1: float, m2: float, rng: np.random.Generator
) -> tuple[LorentzVector, LorentzVector]:
    """Isotropic two-body decay in the parent rest frame, boosted to the lab."""
    m_parent = parent.mass
    p = two_body_momentum(m_parent, m1, m2)
    ux, uy, uz = random_unit_vector(rng)
    d1 = LorentzVector(p * ux, p * uy, p * uz, math.sqrt(p * p + m1 * m1))
    d2 = LorentzVector(-p * ux, -p * uy, -p * uz, math.sqrt(p * p + m2 * m2))
    beta = boost_vector(parent)
    return boost(d1, beta), boost(d2, beta)


def production_threshold(meson: ParticleType, target_mass: float = PROTON.mass) -> float:
    """Minimum beam energy for `gamma p -> p meson` on a proton at rest."""
    m_sum = target_mass + meson.mass
    return (m_sum * m_sum - target_mass * target_mass) / (2.0 * target_mass)


def generate_event(
    beam_energy: float,
    rng: np.random.Generator,
    meson: ParticleType = PI0,
    event_id: str = "evt0",
) -> Event:
    """Generate one `gamma p -> p meson, meson -> gamma gamma` event."""
    if beam_energy <= production_threshold(meson):
        raise ValueError(
            f"Beam energy {beam_energy:g} MeV is below the {meson.name} production threshold."
        )
    initial = LorentzVector(0.0, 0.0, beam_energy, beam_energy + PROTON.mass)
    meson_p4, proton_p4 = two_body_decay(initial, meson.mass, PROTON.mass, rng)
    g1, g2 = two_body_decay(meson_p4, 0.0, 0.0, rng)
    return Event(
        event_id=event_id,
        tagger_hits=(TaggerHit(photon_energy=beam_energy),),
        mc_true=(
            Particle(meson, meson_p4),
            Particle(PROTON, proton_p4),
            Particle(PHOTON, g1),
            Particle(PHOTON, g2),
        ),
        cb_energy_sum=g1.e + g2.e,
    )


def generate_events(
    n_events: int,
    rng: np.random.Generator,
    meson: ParticleType = PI0,
    beam_range: tuple[float, float] = (300.0, 1500.0),
) -> Iterator[Event]:
    """Yield `n_events` toy events with beam energies uniform in `beam_range`."""
    low, high = beam_range
    if low <= production_threshold(meson):
        raise ValueError("Lower beam energy must exceed the production threshold.")
    if high < low:
        raise ValueError("Beam energy range must be increasing.")
    for idx in range(n_events):
        energy = float(rng.uniform(low, high))
        yield generate_event(energy, rng, meson=meson, event_id=f"evt{idx}")
