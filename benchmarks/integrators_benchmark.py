# Copyright 2023 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Benchmarks for the integrated action models."""

# pylint: disable=invalid-name


import google_benchmark as benchmark
import jax
import jax.numpy as jnp
import numpy as onp

from benchmarks import util
from discretax import controls
from discretax import differential
from discretax import integrators
from discretax import states

jax.config.update('jax_enable_x64', True)

_INTEGRATORS = {
    'euler': integrators.IntegratedActionModelEuler,
    'rk2': integrators.IntegratedActionModelRK2,
}

_CONTROLS = {
    'poly_zero': controls.ControlParametrizationPolyZero,
    'poly_one': controls.ControlParametrizationPolyOne,
}

# Workaround: hold refs to benchmark-registered functions, as bindings assume
# these exist during exit cleanup
_bench_fns = []


def rigid_body():
  inertia = onp.array([1., 2., 3.])

  def dynamics(x, u):
    w = x[4:]
    return (u - jnp.cross(w, inertia * w)) / inertia

  def cost(x, u):
    return 0.5 * jnp.sum(x[4:]**2) + 0.05 * jnp.sum(u**2)

  return differential.DifferentialActionModelFunction(
      states.StateSO3(), 3, dynamics, cost)


def register_integrator_benchmark(name, method, control, state_dim,
                                  control_dim, derivatives):
  """Generate and register a calc (or calc + calc_diff) benchmark."""
  n, d = state_dim, control_dim

  def integrator_setup():
    if n is None:
      diff = rigid_body()
    else:
      diff = differential.DifferentialActionModelLQR.random(
          states.StateVector(n), d)
    model = _INTEGRATORS[method](diff, _CONTROLS[control](diff.nu), dt=1e-2)
    data = model.create_data()

    onp_rng = onp.random.default_rng(0)
    x = model.state.rand(onp_rng)
    u = onp_rng.standard_normal(model.nu)

    def bench(x, u):
      model.calc(data, x, u)
      if derivatives:
        model.calc_diff(data, x, u)

    return bench, (x, u)

  bench = util.register_benchmark(name, integrator_setup)
  _bench_fns.append(bench)


for _method in _INTEGRATORS:
  for _control in _CONTROLS:
    register_integrator_benchmark(
        f'{_method}_{_control}_lqr_20x10_calc', _method, _control, 20, 10,
        False)
    register_integrator_benchmark(
        f'{_method}_{_control}_lqr_20x10_calc_diff', _method, _control, 20,
        10, True)
    register_integrator_benchmark(
        f'{_method}_{_control}_rigid_body_calc_diff', _method, _control, None,
        3, True)


if __name__ == '__main__':
  benchmark.main()
