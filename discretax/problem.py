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

# pylint: disable=invalid-name
"""Shooting problems over a horizon of action models.

Notation:

- xs denotes a state trajectory, an array of shape [T+1, nx].
- us denotes a control parameter sequence, an array of shape [T, nu].

The problem is to minimize over us,

    sum_{t=0}^{T-1} cost_t(xs[t], us[t]) + cost_T(xs[T], unone)

    subject to:

      xs[t+1] = running_models[t].calc(xs[t], us[t]).xnext
      xs[0] = x0 is given.
"""

from concurrent import futures

from absl import logging
import numpy as np


class ShootingProblem(object):
  """Running action models plus a terminal one, each with its own data."""

  def __init__(self, x0, running_models, terminal_model, nthreads: int = 1):
    """Initialize problem.

    Args:
      x0: (nx,) initial state.
      running_models: sequence of T action models.
      terminal_model: action model of the last node, typically with dt=0.
      nthreads: number of worker threads used by calc and calc_diff.
    """
    running_models = list(running_models)
    state = terminal_model.state
    if np.shape(x0) != (state.nx,):
      raise ValueError(f'x0 has wrong dimension (it should be {state.nx}).')
    for t, model in enumerate(running_models):
      if model.state.ndx != state.ndx or model.state.nx != state.nx:
        raise ValueError(f'running model {t} has a different state space.')
      if model.nu != running_models[0].nu:
        raise ValueError(
            f'running model {t} has {model.nu} control parameters '
            f'(it should be {running_models[0].nu}).')
    if nthreads < 1:
      raise ValueError(f'nthreads must be positive, got {nthreads}.')

    self.x0 = np.array(x0, dtype=float)
    self.running_models = running_models
    self.terminal_model = terminal_model
    self.running_datas = [m.create_data() for m in running_models]
    self.terminal_data = terminal_model.create_data()
    self.nthreads = nthreads
    self.T = len(running_models)
    self.nx = state.nx
    self.ndx = state.ndx
    self.nu = running_models[0].nu if running_models else 0

  def _check_trajectory(self, xs, us):
    if np.shape(xs) != (self.T + 1, self.nx):
      raise ValueError(
          f'xs has shape {np.shape(xs)} '
          f'(it should be {(self.T + 1, self.nx)}).')
    self._check_controls(us)

  def _check_controls(self, us):
    if np.shape(us) != (self.T, self.nu):
      raise ValueError(
          f'us has shape {np.shape(us)} (it should be {(self.T, self.nu)}).')

  def _nodes(self, xs, us):
    nodes = [(m, d, xs[t], us[t]) for t, (m, d) in enumerate(
        zip(self.running_models, self.running_datas))]
    nodes.append((self.terminal_model, self.terminal_data, xs[self.T],
                  self.terminal_model.unone))
    return nodes

  def _map(self, fn, nodes):
    """Applies fn to every node; each node only writes into its own data."""
    if self.nthreads == 1:
      for node in nodes:
        fn(*node)
      return
    with futures.ThreadPoolExecutor(max_workers=self.nthreads) as executor:
      # list() re-raises the first worker exception.
      list(executor.map(lambda node: fn(*node), nodes))

  def rollout(self, us):
    """Rolls-out xs[t+1] = running_models[t](xs[t], us[t]), xs[0] = x0.

    Args:
      us: (T, nu) control parameter sequence.

    Returns:
      xs: (T+1, nx) state trajectory.
    """
    self._check_controls(us)
    xs = np.zeros((self.T + 1, self.nx))
    xs[0] = self.x0
    for t, (model, data) in enumerate(
        zip(self.running_models, self.running_datas)):
      model.calc(data, xs[t], us[t])
      xs[t + 1] = data.xnext
    return xs

  def calc(self, xs, us):
    """Evaluates every node along a trajectory.

    Args:
      xs: (T+1, nx) state trajectory.
      us: (T, nu) control parameter sequence.

    Returns:
      The total cost.
    """
    self._check_trajectory(xs, us)
    self._map(lambda m, d, x, u: m.calc(d, x, u), self._nodes(xs, us))
    return (sum(d.cost for d in self.running_datas) +
            self.terminal_data.cost)

  def calc_diff(self, xs, us):
    """Derivatives of every node; calc must have been called at (xs, us)."""
    self._check_trajectory(xs, us)
    self._map(lambda m, d, x, u: m.calc_diff(d, x, u), self._nodes(xs, us))

  def lqr_params(self):
    """Stacks the node derivatives into a time-varying LQR problem.

    Returns:
      Q: (T+1, ndx, ndx) state cost Hessians.
      q: (T+1, ndx) state cost gradients.
      R: (T, nu, nu) control cost Hessians.
      r: (T, nu) control cost gradients.
      M: (T, ndx, nu) cross cost Hessians.
      A: (T, ndx, ndx) dynamics Jacobians with respect to state.
      B: (T, ndx, nu) dynamics Jacobians with respect to control.
    """
    datas = self.running_datas
    stack = lambda attr, shape: np.stack(
        [getattr(d, attr) for d in datas]) if datas else np.zeros((0,) + shape)
    ndx, nu = self.ndx, self.nu
    Q = np.concatenate([stack('Lxx', (ndx, ndx)), self.terminal_data.Lxx[None]])
    q = np.concatenate([stack('Lx', (ndx,)), self.terminal_data.Lx[None]])
    return (Q, q, stack('Luu', (nu, nu)), stack('Lu', (nu,)),
            stack('Lxu', (ndx, nu)), stack('Fx', (ndx, ndx)),
            stack('Fu', (ndx, nu)))

  def gradient(self):
    """Gradient of the total cost with respect to us by adjoint recursion.

    Uses the node derivatives written by calc_diff.

    Returns:
      gradient: (T, nu) gradient.
      adjoints: (T+1, ndx) costate trajectory.
    """
    Q, q, R, r, M, A, B = self.lqr_params()
    del Q, R, M
    g = np.zeros((self.T, self.nu))
    P = np.zeros((self.T + 1, self.ndx))
    P[self.T] = q[self.T]
    for t in range(self.T - 1, -1, -1):  # backward recursion.
      g[t] = r[t] + B[t].T @ P[t + 1]
      P[t] = q[t] + A[t].T @ P[t + 1]
    logging.debug('gradient norm: %g', np.linalg.norm(g))
    return g, P
