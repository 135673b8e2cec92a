"""Measurement model: resolution assignment plus Gaussian smearing of truth."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .kinematics import estimate_uncertainties, normalize_angles
from .models import FitParticle


@dataclass
class Smearer:
    """Emulate a detector measurement of MC-true particles.

    One generator is shared by every particle and event of a run: build it
    once (`from_seed`) and never reseed per event. Parallel workers each need
    their own `Smearer`.
    """

    rng: np.random.Generator

    @classmethod
    def from_seed(cls, seed: int | None = None) -> "Smearer":
        """Create a smearer with a fresh `numpy` generator."""
        return cls(rng=np.random.default_rng(seed))

    def smear(self, particle: FitParticle) -> FitParticle:
        """Assign resolutions, then shift `Ek`, `Theta`, `Phi` by independent normals."""
        estimate_uncertainties(particle)
        particle.ek += float(self.rng.normal(0.0, particle.ek_sigma))
        particle.theta += float(self.rng.normal(0.0, particle.theta_sigma))
        particle.phi += float(self.rng.normal(0.0, particle.phi_sigma))
        return normalize_angles(particle)
