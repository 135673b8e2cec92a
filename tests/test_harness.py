"""End-to-end tests for the per-event fit harness."""

from __future__ import annotations

import unittest
from dataclasses import replace
from unittest import mock

import numpy as np
from _events import REFERENCE_PHOTONS, balanced_event

from kinfit import ConfigurationError, Event, FitConfig, FitHarness, Particle, Smearer, TaggerHit
from kinfit.fitter import BeforeAfter, FitSettings, FitVariable
from kinfit.kinematics import invariant_mass
from kinfit.models import LorentzVector, Track
from kinfit.pid import PHOTON, PROTON
from kinfit.simulate import generate_events

FIT_METRICS_ALWAYS = ("chisquare", "probability", "iterations", "im_true", "im_smeared", "im_fit")


class TestFitHarness(unittest.TestCase):
    """Validate the per-tagger-hit protocol and its diagnostics."""

    def test_exact_event_without_smearing_fits_perfectly(self) -> None:
        """Unsmeared, exactly balanced truth converges with zero chi-square."""
        harness = FitHarness(FitConfig(n_photons=2, smear=False))
        results = harness.process_event(balanced_event())

        self.assertEqual(len(results), 1)
        [result] = results
        self.assertTrue(result.success)
        self.assertAlmostEqual(result.chi_square, 0.0, places=9)
        self.assertAlmostEqual(result.probability, 1.0, places=9)

        diag = harness.diagnostics
        true_im = invariant_mass(REFERENCE_PHOTONS)
        self.assertEqual(diag["im_fit"].entries, 1)
        self.assertAlmostEqual(diag["im_fit"].values[0], true_im, places=6)
        self.assertAlmostEqual(diag["im_true"].values[0], true_im, places=6)
        self.assertAlmostEqual(diag["im_smeared"].values[0], true_im, places=6)
        self.assertAlmostEqual(diag["chisquare"].values[0], 0.0, places=9)
        self.assertAlmostEqual(diag["probability"].values[0], 1.0, places=9)
        self.assertEqual(diag["vertex_z_before"].entries, 0)
        self.assertEqual(harness.n_fitted, 1)

    def test_invariant_mass_constraint_on_exact_event(self) -> None:
        true_im = invariant_mass(REFERENCE_PHOTONS)
        harness = FitHarness(FitConfig(n_photons=2, include_im_constraint=True, im_target=true_im, smear=False))
        [result] = harness.process_event(balanced_event())
        self.assertTrue(result.success)
        self.assertEqual(result.ndof, 5)
        self.assertIn("RequireIM", harness.fitter.constraint_names())

    def test_missing_photon_skips_tagger_hit(self) -> None:
        """With N=2 configured, a one-photon event leaves the fit diagnostics untouched."""
        harness = FitHarness(FitConfig(n_photons=2, smear=False))
        event = balanced_event([(200.0, 1.0, 0.0)])

        results = harness.process_event(event)

        self.assertEqual(results, [])
        self.assertEqual(harness.diagnostics.total_entries(), 0)
        self.assertEqual(harness.n_fitted, 0)

    def test_event_needs_exactly_one_proton(self) -> None:
        event = balanced_event()
        proton = next(p for p in event.mc_true if p.type == PROTON)
        doubled = Event(event_id="two_protons", tagger_hits=event.tagger_hits, mc_true=(*event.mc_true, proton))
        harness = FitHarness(FitConfig(smear=False))
        self.assertEqual(harness.process_event(doubled), [])
        self.assertEqual(harness.diagnostics.total_entries(), 0)

    def test_extra_photons_use_first_ones(self) -> None:
        event = balanced_event()
        extra = Particle(PHOTON, LorentzVector(0.0, 10.0, 0.0, 10.0))
        harness = FitHarness(FitConfig(n_photons=2, smear=False))
        candidate = harness.extract_candidate((*event.mc_true, extra), event.tagger_hits[0])
        self.assertIsNotNone(candidate)
        self.assertAlmostEqual(candidate.photons[0].ek, REFERENCE_PHOTONS[0][0], places=9)
        self.assertAlmostEqual(candidate.photons[1].ek, REFERENCE_PHOTONS[1][0], places=9)

    def test_both_mass_constraints_rejected_at_setup(self) -> None:
        with self.assertRaises(ConfigurationError):
            FitConfig(include_im_constraint=True, include_vertex_fit=True)
        with self.assertRaises(ValueError):
            FitConfig(include_im_constraint=True, include_vertex_fit=True)

    def test_vertex_fit_registers_unmeasured_vertex(self) -> None:
        harness = FitHarness(FitConfig(include_vertex_fit=True))
        self.assertIn("v_z", harness.fitter.variable_names())
        self.assertIn("pull_v_z", harness.diagnostics)
        self.assertIn("VertexConstraint", harness.fitter.constraint_names())
        self.assertNotIn("RequireIM", harness.fitter.constraint_names())

    def test_pull_buckets_for_every_fit_variable(self) -> None:
        harness = FitHarness(FitConfig(n_photons=3))
        names = harness.fitter.variable_names()
        self.assertEqual(len(names), 3 * 5)
        for name in names:
            self.assertIn(f"pull_{name}", harness.diagnostics)
        self.assertIn("Photon3.Phi", names)

    def test_smeared_toy_events_fill_consistent_diagnostics(self) -> None:
        events = list(generate_events(20, np.random.default_rng(11)))
        harness = FitHarness(FitConfig(include_vertex_fit=True), smearer=Smearer.from_seed(5))
        results = harness.process_events(events)

        self.assertGreater(harness.n_fitted, 0)
        self.assertEqual(len(results), harness.n_fitted)
        diag = harness.diagnostics
        for name in (*FIT_METRICS_ALWAYS, "vertex_z_before", "vertex_z_after", "pull_Beam.Ek"):
            self.assertEqual(diag[name].entries, harness.n_fitted, name)
        self.assertTrue(all(v == 0.0 for v in diag["vertex_z_before"].values))
        self.assertTrue(all(0.0 <= p <= 1.0 for p in diag["probability"].values))
        self.assertTrue(all(r.success for r in results))

    def test_exact_event_with_vertex_fit(self) -> None:
        """Unsmeared truth leaves only v_z free; v_z = 0 already satisfies every constraint."""
        true_im = invariant_mass(REFERENCE_PHOTONS)
        harness = FitHarness(FitConfig(include_vertex_fit=True, im_target=true_im, smear=False))
        [result] = harness.process_event(balanced_event())

        self.assertTrue(result.success)
        self.assertEqual(result.ndof, 4)
        self.assertAlmostEqual(result.chi_square, 0.0, places=9)
        self.assertAlmostEqual(result.probability, 1.0, places=9)
        self.assertEqual(harness.n_fitted, 1)
        self.assertAlmostEqual(harness.diagnostics["vertex_z_after"].values[0], 0.0, places=6)
        self.assertAlmostEqual(harness.diagnostics["im_fit"].values[0], true_im, places=6)

    def test_vertex_fit_keeps_pace_with_invariant_mass_fit(self) -> None:
        """On identical smeared input, the vertex hypothesis converges as often as the IM one."""
        events = list(generate_events(60, np.random.default_rng(1)))
        harnesses = {}
        for label, config in (
            ("im", FitConfig(include_im_constraint=True)),
            ("vertex", FitConfig(include_vertex_fit=True)),
        ):
            harness = FitHarness(config, smearer=Smearer.from_seed(7))
            harness.process_events(events)
            harnesses[label] = harness

        im, vertex = harnesses["im"], harnesses["vertex"]
        self.assertGreater(im.n_fitted, 0)
        self.assertGreaterEqual(vertex.n_fitted, int(0.95 * im.n_fitted))
        radius = vertex.config.calorimeter_radius
        vertex_z = vertex.diagnostics["vertex_z_after"].values
        self.assertEqual(len(vertex_z), vertex.n_fitted)
        self.assertTrue(all(-radius <= v <= radius for v in vertex_z))

    def test_unphysical_truth_rejects_hit_and_run_continues(self) -> None:
        """A photon with negative energy skips its tagger hit without touching the fit diagnostics."""
        good = balanced_event(event_id="good")
        bad_photon = Particle(PHOTON, LorentzVector(0.0, 5.0, 0.0, -5.0))
        photons = [p for p in good.mc_true if p.type == PHOTON]
        proton = next(p for p in good.mc_true if p.type == PROTON)
        bad = Event(event_id="bad", tagger_hits=good.tagger_hits, mc_true=(proton, bad_photon, photons[1]))

        harness = FitHarness(FitConfig(smear=False))
        results = harness.process_events([bad, good])

        self.assertEqual(len(results), 1)
        self.assertEqual(harness.n_fitted, 1)
        self.assertEqual(harness.n_tagger_hits, 2)
        for name in FIT_METRICS_ALWAYS:
            self.assertEqual(harness.diagnostics[name].entries, 1, name)

    def test_unphysical_fitted_photon_rejects_hit(self) -> None:
        harness = FitHarness(FitConfig(smear=False))
        real_fit = harness.fitter.do_fit

        def fit_with_negative_photon_energy(values, sigmas):
            result = real_fit(values, sigmas)
            variables = dict(result.variables)
            ek = variables["Photon1.Ek"]
            variables["Photon1.Ek"] = FitVariable(BeforeAfter(ek.value.before, -1.0), ek.sigma, ek.pull)
            return replace(result, variables=variables)

        with mock.patch.object(harness.fitter, "do_fit", side_effect=fit_with_negative_photon_energy):
            results = harness.process_event(balanced_event())

        self.assertEqual(results, [])
        self.assertEqual(harness.n_fitted, 0)
        self.assertEqual(harness.diagnostics.total_entries(), 0)

    def test_shared_settings_are_not_modified(self) -> None:
        settings = FitSettings(max_iterations=7)
        first = FitHarness(FitConfig(max_iterations=3), settings=settings)
        second = FitHarness(FitConfig(max_iterations=20), settings=settings)
        self.assertEqual(settings.max_iterations, 7)
        self.assertEqual(first.fitter.settings.max_iterations, 3)
        self.assertEqual(second.fitter.settings.max_iterations, 20)
        self.assertEqual(first.fitter.settings.constraint_accuracy, settings.constraint_accuracy)

    def test_same_seed_reproduces_diagnostics(self) -> None:
        events = list(generate_events(10, np.random.default_rng(3)))
        runs = []
        for _ in range(2):
            harness = FitHarness(FitConfig(), smearer=Smearer.from_seed(42))
            harness.process_events(events)
            runs.append(harness.diagnostics)
        for name in FIT_METRICS_ALWAYS:
            self.assertEqual(runs[0][name].values, runs[1][name].values, name)

    def test_overview_counts_missing_types_as_zero(self) -> None:
        event = Event(
            event_id="overview",
            tracks=(Track(cluster_energy=120.0, veto_energy=1.5),),
            particles=(Particle(PHOTON, LorentzVector(0.0, 0.0, 50.0, 50.0)),),
            tagger_hits=(TaggerHit(photon_energy=400.0), TaggerHit(photon_energy=410.0)),
            cb_energy_sum=50.0,
        )
        harness = FitHarness(FitConfig(smear=False))
        harness.process_event(event)
        overview = harness.overview
        self.assertEqual(overview["n_g"].values, [1.0])
        self.assertEqual(overview["n_p"].values, [0.0])
        self.assertEqual(overview["nTagged"].values, [2.0])
        self.assertEqual(overview["TaggerSpectrum"].values, [400.0, 410.0])
        self.assertEqual(overview["ParticleTypes"].counts()["g"], 1)
        self.assertEqual(overview["pid"].values, [(120.0, 1.5)])
        self.assertEqual(harness.diagnostics.total_entries(), 0)


if __name__ == "__main__":
    unittest.main()
