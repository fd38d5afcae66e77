import numpy as np

from olstraj import BootConfig, CaseByCaseOLS, fit_case_by_case
from olstraj.sim.montecarlo import test_case_by_case as run_montecarlo


def test_montecarlo_smoke():
    res = run_montecarlo()
    assert res.terms == ["(Intercept)", "time"]


def test_case_by_case_smoke(linear_panel):
    res = fit_case_by_case(linear_panel, "y ~ time", "id", n_bootstrap=99, random_seed=0)
    assert res.params.size == 2
    assert np.all(res.se_coef.to_numpy() > 0)


def test_class_smoke(linear_panel):
    model = CaseByCaseOLS.from_formula("y ~ time", linear_panel, case="id")
    res = model.fit(boot=BootConfig(n_boot=99, seed=0))
    assert res.coef_table.shape == (12, 2)
