"""Public package exports for the kinematic-fit harness."""

from .constraints import EnergyMomentumBalance, RequireInvariantMass, VertexConstraint
from .diagnostics import Diagnostics, Histogram1D, Histogram2D, LabelHistogram
from .exceptions import ConfigurationError, KinematicDomainError, KinFitError
from .fitter import FitResult, FitSettings, FitStatus, FitVariable, KinematicFitter
from .harness import FitHarness
from .kinematics import (
    assign_from_truth,
    corrected_theta,
    estimate_uncertainties,
    invariant_mass,
    to_four_momentum,
)
from .models import (
    BinSettings,
    Event,
    FitConfig,
    FitParticle,
    LorentzVector,
    Particle,
    ParticleType,
    TaggerHit,
    Track,
)
from .pid import PHOTON, PROTON, detectable_types, particle_type_from_name
from .smearing import Smearer

__all__ = [
    "FitHarness",
    "FitConfig",
    "FitParticle",
    "LorentzVector",
    "ParticleType",
    "Particle",
    "TaggerHit",
    "Track",
    "Event",
    "BinSettings",
    "KinematicFitter",
    "FitSettings",
    "FitResult",
    "FitStatus",
    "FitVariable",
    "EnergyMomentumBalance",
    "RequireInvariantMass",
    "VertexConstraint",
    "Smearer",
    "Diagnostics",
    "Histogram1D",
    "Histogram2D",
    "LabelHistogram",
    "KinFitError",
    "ConfigurationError",
    "KinematicDomainError",
    "to_four_momentum",
    "assign_from_truth",
    "estimate_uncertainties",
    "invariant_mass",
    "corrected_theta",
    "PHOTON",
    "PROTON",
    "detectable_types",
    "particle_type_from_name",
]
