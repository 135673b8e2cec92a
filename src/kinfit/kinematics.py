"""Physics/math helpers for the `(Ek, Theta, Phi)` fit parameterisation."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from .exceptions import KinematicDomainError
from .models import FitParticle, LorentzVector

THETA_SIGMA = math.radians(2.5)
PHI_SIGMA_FALLBACK = math.radians(1.0)
THETA_CENTRAL_MIN = math.radians(20.0)
THETA_CENTRAL_MAX = math.radians(160.0)

# Crystal Ball inner radius (10 inch).
CB_RADIUS_CM = 25.4


def to_four_momentum(params: Sequence[float], mass: float) -> LorentzVector:
    """Convert `(Ek, Theta, Phi)` plus a rest mass into a Lorentz 4-vector.

    Raises `KinematicDomainError` when the total energy is below the rest
    mass, instead of producing a NaN momentum.
    """
    ek, theta, phi = params[0], params[1], params[2]
    energy = ek + mass
    p2 = energy * energy - mass * mass
    if energy < mass or p2 < 0.0:
        raise KinematicDomainError(ek, mass)
    p = math.sqrt(p2)
    sin_theta = math.sin(theta)
    return LorentzVector(
        px=p * sin_theta * math.cos(phi),
        py=p * sin_theta * math.sin(phi),
        pz=p * math.cos(theta),
        e=energy,
    )


def assign_from_truth(particle: FitParticle, p4: LorentzVector, mass: float) -> FitParticle:
    """Decompose a 4-vector into `(Ek, Theta, Phi)` stored on `particle`.

    Sigmas are reset: a truth particle carries no measurement uncertainty
    until smeared or calibrated.
    """
    particle.ek = p4.e - mass
    particle.theta = p4.theta
    particle.phi = p4.phi
    particle.reset_sigmas()
    return particle


def estimate_uncertainties(particle: FitParticle) -> FitParticle:
    """Write the calorimeter resolution for the current `Ek`/`Theta`.

    Only the three sigma fields are touched, so calling it twice is harmless.
    """
    ek = particle.ek
    particle.ek_sigma = 0.02 * ek * ek**-0.36 if ek > 0.0 else 0.0
    particle.theta_sigma = THETA_SIGMA
    if THETA_CENTRAL_MIN < particle.theta < THETA_CENTRAL_MAX:
        particle.phi_sigma = particle.theta_sigma / math.sin(particle.theta)
    else:
        # sin(theta) -> 0 near the beam axis
        particle.phi_sigma = PHI_SIGMA_FALLBACK
    return particle


def normalize_angles(particle: FitParticle) -> FitParticle:
    """Fold `theta` back into `[0, pi]` keeping the direction, wrap `phi`."""
    theta = math.fmod(particle.theta, 2.0 * math.pi)
    phi = particle.phi
    if theta < 0.0:
        theta += 2.0 * math.pi
    if theta > math.pi:
        theta = 2.0 * math.pi - theta
        phi += math.pi
    particle.theta = theta
    particle.phi = math.atan2(math.sin(phi), math.cos(phi))
    return particle


def sum_lorentz(vectors: Iterable[LorentzVector]) -> LorentzVector:
    """Sum an iterable of Lorentz vectors."""
    total = LorentzVector(0.0, 0.0, 0.0, 0.0)
    for vec in vectors:
        total = total + vec
    return total


def invariant_mass(params_list: Iterable[Sequence[float]], mass: float = 0.0) -> float:
    """Invariant mass of particles given as `(Ek, Theta, Phi)` lists of one species."""
    return sum_lorentz(to_four_momentum(p, mass) for p in params_list).mass


def corrected_theta(theta: float, v_z: float, radius: float = CB_RADIUS_CM) -> float:
    """Polar angle seen from `(0, 0, v_z)` for a hit at `radius` and `theta`.

    `tan(theta') = R sin(theta) / (R cos(theta) - v_z)`.
    """
    return math.atan2(radius * math.sin(theta), radius * math.cos(theta) - v_z)


def boost(p4: LorentzVector, beta: tuple[float, float, float]) -> LorentzVector:
    """Boost a 4-vector by the velocity `beta` (in units of c)."""
    bx, by, bz = beta
    b2 = bx * bx + by * by + bz * bz
    if b2 <= 0.0:
        return p4
    if b2 >= 1.0:
        raise ValueError("Boost velocity must be below the speed of light.")
    gamma = 1.0 / math.sqrt(1.0 - b2)
    bp = bx * p4.px + by * p4.py + bz * p4.pz
    gamma2 = (gamma - 1.0) / b2
    return LorentzVector(
        px=p4.px + gamma2 * bp * bx + gamma * bx * p4.e,
        py=p4.py + gamma2 * bp * by + gamma * by * p4.e,
        pz=p4.pz + gamma2 * bp * bz + gamma * bz * p4.e,
        e=gamma * (p4.e + bp),
    )


def boost_vector(p4: LorentzVector) -> tuple[float, float, float]:
    """Velocity of the rest frame of `p4`."""
    if p4.e <= 0.0:
        raise ValueError("Boost vector needs positive energy.")
    return p4.px / p4.e, p4.py / p4.e, p4.pz / p4.e
