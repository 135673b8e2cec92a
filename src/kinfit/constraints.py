"""Constraint functions for the kinematic fit.

Each constraint receives the current fit iterate as an ordered list of
per-variable value lists (`[Ek, Theta, Phi]` for particles, `[v_z]` for the
vertex position) and returns the residual vector that vanishes at the
solution. Configuration (masses, radius) lives on the constraint object.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .kinematics import CB_RADIUS_CM, corrected_theta, invariant_mass, to_four_momentum
from .models import LorentzVector
from .pid import PHOTON, PROTON

ParamLists = Sequence[Sequence[float]]


@dataclass(frozen=True)
class EnergyMomentumBalance:
    """Incoming minus outgoing 4-momentum for `gamma p -> p + n gamma`.

    Argument order: beam photon, recoil proton, then the outgoing photons.
    The target proton is at rest.
    """

    target_mass: float = PROTON.mass
    recoil_mass: float = PROTON.mass
    photon_mass: float = PHOTON.mass

    name = "EnergyMomentumBalance"

    def __call__(self, particles: ParamLists) -> tuple[float, float, float, float]:
        if len(particles) < 2:
            raise ValueError("Energy-momentum balance needs at least beam and proton.")
        diff = LorentzVector(0.0, 0.0, 0.0, self.target_mass)
        diff = diff + to_four_momentum(particles[0], self.photon_mass)
        diff = diff - to_four_momentum(particles[1], self.recoil_mass)
        for photon in particles[2:]:
            diff = diff - to_four_momentum(photon, self.photon_mass)
        return diff.components()


@dataclass(frozen=True)
class RequireInvariantMass:
    """Invariant mass of all given photons equals `target_mass`."""

    target_mass: float
    photon_mass: float = PHOTON.mass

    name = "RequireIM"

    def __call__(self, photons: ParamLists) -> float:
        return invariant_mass(photons, self.photon_mass) - self.target_mass


@dataclass(frozen=True)
class VertexConstraint:
    """Invariant mass with photon angles corrected for a vertex shift `v_z`.

    The last argument is the scalar `[v_z]` (positive if the vertex lies
    downstream along +z). Each photon's theta is recomputed as seen from
    `(0, 0, v_z)` for a hit on a sphere of `radius` around the origin.
    """

    target_mass: float
    radius: float = CB_RADIUS_CM
    photon_mass: float = PHOTON.mass

    name = "VertexConstraint"

    def __call__(self, args: ParamLists) -> float:
        if len(args) < 2:
            raise ValueError("Vertex constraint needs photons followed by [v_z].")
        v_z = args[-1][0]
        corrected = []
        for photon in args[:-1]:
            p = list(photon)
            p[1] = corrected_theta(p[1], v_z, self.radius)
            corrected.append(p)
        return invariant_mass(corrected, self.photon_mass) - self.target_mass
