"""Per-event kinematic-fit driver for `gamma p -> p + n gamma` hypotheses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Sequence

from .constraints import EnergyMomentumBalance, RequireInvariantMass, VertexConstraint
from .diagnostics import Diagnostics
from .exceptions import ConfigurationError, KinematicDomainError
from .fitter import FitResult, FitSettings, KinematicFitter
from .kinematics import assign_from_truth, invariant_mass
from .models import BinSettings, Event, FitConfig, FitParticle, Particle, TaggerHit
from .pid import PHOTON, PROTON, detectable_types
from .smearing import Smearer

logger = logging.getLogger(__name__)

VERTEX_VARIABLE = "v_z"


@dataclass
class _Candidate:
    """Fit inputs for one tagger hit."""

    beam: FitParticle
    proton: FitParticle
    photons: list[FitParticle]

    def linked(self) -> dict[str, FitParticle]:
        out = {"Beam": self.beam, "Proton": self.proton}
        for i, photon in enumerate(self.photons):
            out[f"Photon{i + 1}"] = photon
        return out


@dataclass
class _Staged:
    """Fit-diagnostic values of one tagger hit, committed only after a successful fit."""

    fills: list[tuple[str, float]] = field(default_factory=list)

    def add(self, name: str, value: float) -> None:
        self.fills.append((name, value))


class FitHarness:
    """Wire particles and constraints into the fitter and accumulate diagnostics.

    Setup happens once in the constructor; `process_event` then runs the fit
    for every tagger hit of an event.
    """

    def __init__(
        self,
        config: FitConfig | None = None,
        smearer: Smearer | None = None,
        settings: FitSettings | None = None,
    ):
        self.config = config or FitConfig()
        if self.config.include_im_constraint and self.config.include_vertex_fit:
            raise ConfigurationError(
                "Do not enable the invariant-mass and the vertex constraint at the same time."
            )
        self.smearer = smearer or Smearer.from_seed()
        self.fitter = KinematicFitter(
            "PhotoproductionFit",
            settings=replace(settings or FitSettings(), max_iterations=self.config.max_iterations),
        )
        self._setup_fitter()

        self.overview = Diagnostics("overview")
        self.diagnostics = Diagnostics("fit")
        self._setup_overview()
        self._setup_fit_diagnostics()
        self.n_tagger_hits = 0
        self.n_fitted = 0

    @property
    def photon_names(self) -> tuple[str, ...]:
        return self.config.photon_names

    def _setup_fitter(self) -> None:
        cfg = self.config
        self.fitter.link_variable("Beam", FitParticle.LABELS)
        self.fitter.link_variable("Proton", FitParticle.LABELS)
        for name in self.photon_names:
            self.fitter.link_variable(name, FitParticle.LABELS)
        all_names = ["Beam", "Proton", *self.photon_names]

        self.fitter.add_constraint(EnergyMomentumBalance(), all_names)
        if cfg.include_im_constraint:
            self.fitter.add_constraint(RequireInvariantMass(cfg.im_target), list(self.photon_names))
        if cfg.include_vertex_fit:
            radius = cfg.calorimeter_radius
            # the vertex lies inside the calorimeter sphere
            self.fitter.add_unmeasured_variable(VERTEX_VARIABLE, limits=(-radius, radius))
            self.fitter.add_constraint(
                VertexConstraint(cfg.im_target, radius=radius),
                [*self.photon_names, VERTEX_VARIABLE],
            )

    def _setup_overview(self) -> None:
        energy_bins = BinSettings(1000, 0.0, self.config.energy_scale)
        hf = self.overview
        hf.make_2d(
            "PID Bananas",
            "Cluster Energy [MeV]",
            "Veto Energy [MeV]",
            energy_bins,
            BinSettings(1000, 0.0, 10.0),
            name="pid",
        )
        hf.make_labels("Identified particles", name="ParticleTypes")
        hf.make_1d("Tagger Spectrum", "Photon Beam Energy", BinSettings(2000, 0.0, 2000.0), name="TaggerSpectrum")
        hf.make_1d("Tagger Hits", "Tagger Hits / event", BinSettings(100), name="nTagged")
        hf.make_1d("CB Energy Sum", "E [MeV]", energy_bins, name="esum")
        for t in detectable_types():
            hf.make_1d(f"Number of {t.name}", f"number of {t.name} / event", BinSettings(16, 0.0, 16.0), name=f"n_{t.name}")

    def _setup_fit_diagnostics(self) -> None:
        hf = self.diagnostics
        hf.make_1d("ChiSquare", "ChiSquare", BinSettings(100, 0.0, 30.0), name="chisquare")
        hf.make_1d("Probability", "Probability", BinSettings(100, 0.0, 1.0), name="probability")
        hf.make_1d("Number of iterations", "Iterations", BinSettings(15, 0.0, 15.0), name="iterations")
        for varname in self.fitter.variable_names():
            hf.make_1d(f"Pull {varname}", "Pull", BinSettings(50, -3.0, 3.0), name=f"pull_{varname}")

        im = self.config.im_target
        im_bins = BinSettings(200, im - 100.0, im + 100.0)
        ng = f"{self.config.n_photons}g"
        hf.make_1d(f"IM {ng} true", "IM", im_bins, name="im_true")
        hf.make_1d(f"IM {ng} smeared", "IM", im_bins, name="im_smeared")
        hf.make_1d(f"IM {ng} fit", "IM", im_bins, name="im_fit")
        vertex_bins = BinSettings(200, -10.0, 10.0)
        hf.make_1d("Vertex Z Before", "v_z / cm", vertex_bins, name="vertex_z_before")
        hf.make_1d("Vertex Z After", "v_z / cm", vertex_bins, name="vertex_z_after")

    def process_events(self, events: Iterable[Event]) -> list[FitResult]:
        """Run `process_event` over a sequence of events, one at a time."""
        results: list[FitResult] = []
        n_events = 0
        for event in events:
            results.extend(self.process_event(event))
            n_events += 1
        logger.info(
            "Processed %d events: %d tagger hits, %d successful fits",
            n_events,
            self.n_tagger_hits,
            self.n_fitted,
        )
        return results

    def process_event(self, event: Event) -> list[FitResult]:
        """Fill the overview plots, then fit every tagger hit of `event`."""
        self._fill_overview(event)
        results: list[FitResult] = []
        for taggerhit in event.tagger_hits:
            self.n_tagger_hits += 1
            self.overview.fill("TaggerSpectrum", taggerhit.photon_energy)
            result = self._process_tagger_hit(event, taggerhit)
            if result is not None:
                results.append(result)
        return results

    def _fill_overview(self, event: Event) -> None:
        hf = self.overview
        for track in event.tracks:
            hf.fill("pid", track.cluster_energy, track.veto_energy)
        for particle in event.particles:
            hf.fill("ParticleTypes", particle.type.name)
        hf.fill("nTagged", len(event.tagger_hits))
        hf.fill("esum", event.cb_energy_sum)
        for t in detectable_types():
            hf.fill(f"n_{t.name}", len(event.particles_of_type(t)))

    def _process_tagger_hit(self, event: Event, taggerhit: TaggerHit) -> FitResult | None:
        candidate = self.extract_candidate(event.mc_true, taggerhit)
        if candidate is None:
            logger.debug("Event %s: topology mismatch, skipping tagger hit", event.event_id)
            return None

        staged = _Staged()
        try:
            staged.add("im_true", self._photon_im(candidate.photons))
            if self.config.smear:
                self.smearer.smear(candidate.proton)
                for photon in candidate.photons:
                    self.smearer.smear(photon)
                self.smearer.smear(candidate.beam)
            staged.add("im_smeared", self._photon_im(candidate.photons))
        except KinematicDomainError as exc:
            logger.debug("Event %s: rejected after smearing: %s", event.event_id, exc)
            return None

        linked = candidate.linked()
        result = self.fitter.do_fit(
            values={name: p.values() for name, p in linked.items()},
            sigmas={name: p.sigmas() for name, p in linked.items()},
        )
        if not result.success:
            logger.debug("Event %s: fit status %s", event.event_id, result.status.value)
            return None

        for name, particle in linked.items():
            particle.set_values(result.after(name))
        try:
            im_fit = self._photon_im(candidate.photons)
        except KinematicDomainError as exc:
            logger.debug("Event %s: fitted photons unphysical: %s", event.event_id, exc)
            return None

        for varname, var in result.variables.items():
            staged.add(f"pull_{varname}", var.pull)
        staged.add("chisquare", result.chi_square)
        staged.add("probability", result.probability)
        staged.add("iterations", result.n_iterations)
        if self.config.include_vertex_fit:
            vertex = result.variables[VERTEX_VARIABLE]
            staged.add("vertex_z_after", vertex.value.after)
            staged.add("vertex_z_before", vertex.value.before)
        staged.add("im_fit", im_fit)

        for name, value in staged.fills:
            self.diagnostics.fill(name, value)
        self.n_fitted += 1
        return result

    def extract_candidate(self, mc_true: Sequence[Particle], taggerhit: TaggerHit) -> _Candidate | None:
        """Build true fit particles: exactly one proton and the first N photons.

        Returns `None` when the event does not have the required topology.
        """
        proton: Particle | None = None
        n_protons = 0
        photons: list[Particle] = []
        for p in mc_true:
            if p.type == PROTON:
                proton = p
                n_protons += 1
            elif p.type == PHOTON and len(photons) < self.config.n_photons:
                photons.append(p)
        if n_protons != 1 or proton is None or len(photons) != self.config.n_photons:
            return None

        return _Candidate(
            beam=assign_from_truth(FitParticle(), taggerhit.photon_beam, PHOTON.mass),
            proton=assign_from_truth(FitParticle(), proton.p4, PROTON.mass),
            photons=[assign_from_truth(FitParticle(), p.p4, PHOTON.mass) for p in photons],
        )

    @staticmethod
    def _photon_im(photons: Sequence[FitParticle]) -> float:
        return invariant_mass((p.values() for p in photons), PHOTON.mass)
