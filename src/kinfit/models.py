"""Core data models used by the kinematic-fit harness.

This module defines:
- immutable physics objects (`LorentzVector`, `ParticleType`)
- the mutable fit parameterisation (`FitParticle`)
- event containers (`Track`, `Particle`, `TaggerHit`, `Event`)
- configuration objects (`FitConfig`, `BinSettings`).
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and arithmetic."""

    px: float
    py: float
    pz: float
    e: float

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector addition."""
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    def __sub__(self, other: "LorentzVector") -> "LorentzVector":
        """Component-wise 4-vector subtraction."""
        return LorentzVector(
            self.px - other.px,
            self.py - other.py,
            self.pz - other.pz,
            self.e - other.e,
        )

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def p(self) -> float:
        """3-momentum magnitude."""
        return math.sqrt(self.p2)

    @property
    def pt(self) -> float:
        """Momentum transverse to the beam (z) axis."""
        return math.hypot(self.px, self.py)

    @property
    def theta(self) -> float:
        """Polar angle measured from +z."""
        return math.atan2(self.pt, self.pz)

    @property
    def phi(self) -> float:
        """Azimuthal angle in `(-pi, pi]`."""
        return math.atan2(self.py, self.px)

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)

    def components(self) -> tuple[float, float, float, float]:
        """Return `(x, y, z, t)`."""
        return self.px, self.py, self.pz, self.e


@dataclass(frozen=True)
class ParticleType:
    """Named particle species with its rest mass in MeV."""

    name: str
    mass: float
    pdg_id: int | None = None


@dataclass
class FitParticle:
    """Fit parameterisation of one particle: `(Ek, Theta, Phi)` plus sigmas.

    The rest mass is not stored; the same type is used for the
    beam photon, the proton and the decay photons.
    """

    ek: float = 0.0
    theta: float = 0.0
    phi: float = 0.0
    ek_sigma: float = 0.0
    theta_sigma: float = 0.0
    phi_sigma: float = 0.0

    LABELS = ("Ek", "Theta", "Phi")

    def values(self) -> tuple[float, float, float]:
        """Current `(ek, theta, phi)`."""
        return self.ek, self.theta, self.phi

    def sigmas(self) -> tuple[float, float, float]:
        """Current `(ek_sigma, theta_sigma, phi_sigma)`."""
        return self.ek_sigma, self.theta_sigma, self.phi_sigma

    def set_values(self, values) -> None:
        """Overwrite `(ek, theta, phi)`, e.g. with fitted values."""
        self.ek, self.theta, self.phi = (float(v) for v in values)

    def reset_sigmas(self) -> None:
        """Zero all three sigmas; a zero sigma holds the component fixed in the fit."""
        self.ek_sigma = 0.0
        self.theta_sigma = 0.0
        self.phi_sigma = 0.0


@dataclass(frozen=True)
class Track:
    """Reconstructed calorimeter/veto track used for PID overview plots."""

    cluster_energy: float
    veto_energy: float


@dataclass(frozen=True)
class Particle:
    """Identified or MC-true particle: species plus 4-momentum."""

    type: ParticleType
    p4: LorentzVector


@dataclass(frozen=True)
class TaggerHit:
    """Tagged beam-photon candidate."""

    photon_energy: float
    time: float = 0.0

    @property
    def photon_beam(self) -> LorentzVector:
        """Beam photon 4-vector along +z."""
        return LorentzVector(0.0, 0.0, self.photon_energy, self.photon_energy)


@dataclass(frozen=True)
class Event:
    """One event with reconstructed, identified, tagger and MC-true content."""

    event_id: str
    tracks: tuple[Track, ...] = ()
    particles: tuple[Particle, ...] = ()
    tagger_hits: tuple[TaggerHit, ...] = ()
    mc_true: tuple[Particle, ...] = ()
    cb_energy_sum: float = 0.0

    def particles_of_type(self, particle_type: ParticleType) -> tuple[Particle, ...]:
        """Identified particles of one species; empty when none were found."""
        return tuple(p for p in self.particles if p.type == particle_type)


@dataclass(frozen=True)
class BinSettings:
    """Histogram binning: number of bins and axis range."""

    bins: int
    low: float = 0.0
    high: float | None = None

    def __post_init__(self) -> None:
        if self.bins < 1:
            raise ConfigurationError("Histogram needs at least one bin.")
        if self.high is not None and self.high <= self.low:
            raise ConfigurationError("Histogram upper edge must exceed the lower edge.")

    @property
    def range(self) -> tuple[float, float]:
        """Axis range; an unset upper edge means one unit per bin."""
        high = self.low + self.bins if self.high is None else self.high
        return self.low, high


@dataclass(frozen=True)
class FitConfig:
    """Fit-harness configuration.

    The invariant-mass and vertex constraints are mutually exclusive; asking
    for both is rejected here, before any fitter is built.
    """

    n_photons: int = 2
    include_im_constraint: bool = False
    include_vertex_fit: bool = False
    im_target: float = 134.9766
    max_iterations: int = 50
    smear: bool = True
    calorimeter_radius: float = 25.4
    energy_scale: float = 1600.0

    def __post_init__(self) -> None:
        if self.include_im_constraint and self.include_vertex_fit:
            raise ConfigurationError(
                "Do not enable the invariant-mass and the vertex constraint at the same time."
            )
        if self.n_photons < 1:
            raise ConfigurationError("At least one outgoing photon is required.")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations must be positive.")
        if self.calorimeter_radius <= 0.0:
            raise ConfigurationError("Calorimeter radius must be positive.")

    @property
    def photon_names(self) -> tuple[str, ...]:
        """Fit variable names of the outgoing photons."""
        return tuple(f"Photon{i + 1}" for i in range(self.n_photons))
