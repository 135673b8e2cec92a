"""Exception hierarchy for the kinematic-fit harness.

All package errors inherit from `KinFitError`. The concrete errors also derive
from `ValueError`, which is what the rest of the package raises for invalid
input.
"""


class KinFitError(Exception):
    """Base class for all kinfit errors."""


class ConfigurationError(KinFitError, ValueError):
    """Invalid fit setup, detected before any event is processed.

    Examples:
    - invariant-mass and vertex constraints enabled together
    - constraint referring to an unknown fit variable
    - non-positive photon multiplicity
    """


class KinematicDomainError(KinFitError, ValueError):
    """Kinetic energy below the rest-mass threshold of a particle."""

    def __init__(self, ek: float, mass: float):
        self.ek = ek
        self.mass = mass
        super().__init__(
            f"Total energy {ek + mass:g} MeV is below the rest mass {mass:g} MeV (Ek={ek:g})."
        )
