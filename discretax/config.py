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

"""Option dictionaries and factories for integrators and shooting problems.

Options are held in ml_collections ConfigDicts; user options override the
defaults key by key, e.g.,

    model = make_integrator(differential, method='rk2', dt=1e-2)
"""

import enum

from ml_collections import config_dict as configdict

from discretax import controls
from discretax import integrators
from discretax import problem


class INTEGRATOR(enum.Enum):
  EULER = "euler"
  RK2 = "rk2"


class CONTROL(enum.Enum):
  POLY_ZERO = "poly_zero"
  POLY_ONE = "poly_one"


_INTEGRATORS = {
    INTEGRATOR.EULER: integrators.IntegratedActionModelEuler,
    INTEGRATOR.RK2: integrators.IntegratedActionModelRK2,
}

_CONTROLS = {
    CONTROL.POLY_ZERO: controls.ControlParametrizationPolyZero,
    CONTROL.POLY_ONE: controls.ControlParametrizationPolyOne,
}


def default_integrator_config() -> configdict.ConfigDict:
  opt = dict(
      method=INTEGRATOR.EULER.value,  # integration rule, 'euler' or 'rk2'.
      control=CONTROL.POLY_ZERO.value,  # 'poly_zero' or 'poly_one'.
      dt=integrators.DEFAULT_DT,  # time step; 0 for a terminal node.
      with_cost_residual=True)  # copy the cost residual in calc.
  return configdict.ConfigDict(opt)


def default_problem_config() -> configdict.ConfigDict:
  opt = dict(
      nthreads=1)  # worker threads for node evaluation.
  return configdict.ConfigDict(opt)


def _lookup(table, kind, name):
  try:
    return table[kind(name)]
  except ValueError:
    raise NotImplementedError(f"{kind.__name__} type: "
                              f"{name} not implemented.") from None


def make_integrator(differential, config=None, **user_options):
  """Builds an integrated action model from options.

  Args:
    differential: differential model to integrate.
    config: optional ConfigDict or dict overriding default_integrator_config().
    **user_options: options overriding config.

  Returns:
    An integrators.IntegratedActionModelAbstract.
  """
  opt = default_integrator_config()
  if config is not None:
    opt.update(dict(config))
  opt.update(user_options)

  model_cls = _lookup(_INTEGRATORS, INTEGRATOR, opt.method)
  control_cls = _lookup(_CONTROLS, CONTROL, opt.control)
  return model_cls(differential,
                   control=control_cls(differential.nu),
                   dt=opt.dt,
                   with_cost_residual=opt.with_cost_residual)


def make_problem(x0, running_models, terminal_model, config=None,
                 **user_options):
  """Builds a shooting problem, see default_problem_config() for options."""
  opt = default_problem_config()
  if config is not None:
    opt.update(dict(config))
  opt.update(user_options)
  return problem.ShootingProblem(x0, running_models, terminal_model,
                                 nthreads=opt.nthreads)
