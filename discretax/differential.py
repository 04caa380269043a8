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
"""Continuous-time dynamics-and-cost models.

A differential model evaluates, at a state x of shape [nx] and a control w of
shape [nu]:

- xout: the generalized acceleration a = dv/dt, shape [nv];
- cost: the instantaneous (running) cost l(x, w);
- r: an optional cost residual, shape [nr];

and, in calc_diff, the derivatives

- Fx: [nv, ndx], Fu: [nv, nu] of the acceleration;
- Lx: [ndx], Lu: [nu], Lxx: [ndx, ndx], Lxu: [ndx, nu], Luu: [nu, nu] of the
  cost.

All derivatives with respect to x are taken in the tangent space of the state
manifold, i.e. with respect to dx of f(state.integrate(x, dx)) at dx = 0.
"""

from absl import logging
import jax
from jax import hessian
from jax import jacobian
from jax import jit
import jax.numpy as jnp
import numpy as np


class DifferentialActionDataAbstract(object):
  """Preallocated buffers for one evaluation of a differential model."""

  def __init__(self, model):
    self.model = model
    ndx, nv, nu, nr = model.state.ndx, model.state.nv, model.nu, model.nr
    self.xout = np.zeros(nv)
    self.cost = 0.
    self.r = np.zeros(nr)
    self.Fx = np.zeros((nv, ndx))
    self.Fu = np.zeros((nv, nu))
    self.Lx = np.zeros(ndx)
    self.Lu = np.zeros(nu)
    self.Lxx = np.zeros((ndx, ndx))
    self.Lxu = np.zeros((ndx, nu))
    self.Luu = np.zeros((nu, nu))


class DifferentialActionModelAbstract(object):
  """Base class for differential models.

  Subclasses implement calc and calc_diff, writing into the data buffers.
  """

  Data = DifferentialActionDataAbstract

  def __init__(self, state, nu: int, nr: int = 0, u_lb=None, u_ub=None):
    """Initialize model.

    Args:
      state: state manifold, a states.StateAbstract.
      nu: control dimension.
      nr: cost residual dimension.
      u_lb: (nu,) lower control bounds, -inf for unbounded (default).
      u_ub: (nu,) upper control bounds, inf for unbounded (default).
    """
    self.state = state
    self.nu = nu
    self.nr = nr
    self.u_lb = np.full(nu, -np.inf) if u_lb is None else np.array(
        u_lb, dtype=float)
    self.u_ub = np.full(nu, np.inf) if u_ub is None else np.array(
        u_ub, dtype=float)
    if self.u_lb.shape != (nu,) or self.u_ub.shape != (nu,):
      raise ValueError(f'control bounds must have dimension {nu}.')

  @property
  def has_control_limits(self):
    return bool(
        np.any(np.isfinite(self.u_lb)) or np.any(np.isfinite(self.u_ub)))

  def calc(self, data, x, u):
    raise NotImplementedError

  def calc_diff(self, data, x, u):
    raise NotImplementedError

  def create_data(self):
    return self.Data(self)

  def check_data(self, data):
    """Whether data was created by this model and is sized for it."""
    if not isinstance(data, self.Data) or data.model is not self:
      return False
    return (data.Fx.shape == (self.state.nv, self.state.ndx) and
            data.Fu.shape == (self.state.nv, self.nu) and
            data.r.shape == (self.nr,))

  def _check_inputs(self, x, u):
    if np.shape(x) != (self.state.nx,):
      raise ValueError(
          f'x has wrong dimension (it should be {self.state.nx}).')
    if np.shape(u) != (self.nu,):
      raise ValueError(f'u has wrong dimension (it should be {self.nu}).')

  def quasi_static(self, data, x, maxiter=100, tol=1e-9):
    """Control that yields zero acceleration at x.

    Newton iterations on the acceleration, u <- u - pinv(Fu) a. Convergence is
    not guaranteed; the last iterate is returned.

    Args:
      data: data created by this model, used as scratch.
      x: (nx,) state.
      maxiter: maximum number of Newton iterations.
      tol: tolerance on the infinity norm of the Newton step.

    Returns:
      u: (nu,) control.
    """
    if np.shape(x) != (self.state.nx,):
      raise ValueError(
          f'x has wrong dimension (it should be {self.state.nx}).')
    u = np.zeros(self.nu)
    if self.nu == 0:
      return u
    for it in range(maxiter):
      self.calc(data, x, u)
      self.calc_diff(data, x, u)
      du = -np.linalg.pinv(data.Fu) @ data.xout
      u += du
      if np.linalg.norm(du, np.inf) <= tol:
        logging.debug('quasi_static converged in %d iterations.', it + 1)
        break
    return u

  def __str__(self):
    return (f'{type(self).__name__} {{nx={self.state.nx}, '
            f'ndx={self.state.ndx}, nu={self.nu}}}')


class DifferentialActionModelFunction(DifferentialActionModelAbstract):
  """Differential model from jax.numpy dynamics, cost and residual functions.

  Derivatives are evaluated exactly with JAX automatic differentiation, in the
  tangent space of the state manifold, e.g.,

      model = DifferentialActionModelFunction(
          StateVector(2), 1,
          dynamics=lambda x, u: u,
          cost=lambda x, u: 0.5 * jnp.sum(x**2) + 0.5 * jnp.sum(u**2))
  """

  def __init__(self, state, nu: int, dynamics, cost, residual=None,
               u_lb=None, u_ub=None):
    """Initialize model.

    Args:
      state: state manifold; its integrate must be jax-traceable.
      nu: control dimension.
      dynamics: dynamics(x, u) returns the (nv,) acceleration.
      cost: cost(x, u) returns a scalar.
      residual: optional residual(x, u) returning an (nr,) array.
      u_lb: (nu,) lower control bounds.
      u_ub: (nu,) upper control bounds.
    """
    nr = 0
    if residual is not None:
      nr = jax.eval_shape(residual, jnp.zeros(state.nx),
                          jnp.zeros(nu)).shape[0]
    super().__init__(state, nu, nr, u_lb, u_ub)

    # Functions of the tangent step dx at x.
    local_dynamics = lambda dx, x, u: dynamics(state.integrate(x, dx), u)
    local_cost = lambda dx, x, u: cost(state.integrate(x, dx), u)

    def linearizer(x, u):
      dx = jnp.zeros(state.ndx)
      return (jacobian(local_dynamics)(dx, x, u),
              jacobian(local_dynamics, argnums=2)(dx, x, u))

    def quadratizer(x, u):
      dx = jnp.zeros(state.ndx)
      return (jax.grad(local_cost)(dx, x, u),
              jax.grad(local_cost, argnums=2)(dx, x, u),
              hessian(local_cost)(dx, x, u),
              jacobian(jax.grad(local_cost), argnums=2)(dx, x, u),
              hessian(local_cost, argnums=2)(dx, x, u))

    self._dynamics = jit(dynamics)
    self._cost = jit(cost)
    self._residual = None if residual is None else jit(residual)
    self._linearizer = jit(linearizer)
    self._quadratizer = jit(quadratizer)

  def calc(self, data, x, u):
    self._check_inputs(x, u)
    data.xout[:] = self._dynamics(x, u)
    data.cost = float(self._cost(x, u))
    if self._residual is not None:
      data.r[:] = self._residual(x, u)

  def calc_diff(self, data, x, u):
    self._check_inputs(x, u)
    Fx, Fu = self._linearizer(x, u)
    data.Fx[:] = Fx
    data.Fu[:] = Fu
    Lx, Lu, Lxx, Lxu, Luu = self._quadratizer(x, u)
    data.Lx[:] = Lx
    data.Lu[:] = Lu
    data.Lxx[:] = Lxx
    data.Lxu[:] = Lxu
    data.Luu[:] = Luu


class DifferentialActionModelLQR(DifferentialActionModelAbstract):
  """Linear dynamics and quadratic cost on a Euclidean state.

      a = Fq q + Fv v + Fu u + f0
      l = 0.5 x' Lxx x + 0.5 u' Luu u + x' Lxu u + lx' x + lu' u
  """

  def __init__(self, state, Fq, Fv, Fu, f0, Lxx, Luu, Lxu, lx, lu,
               u_lb=None, u_ub=None):
    Fu = np.asarray(Fu, dtype=float)
    nv, nu = Fu.shape
    if state.nv != nv:
      raise ValueError(f'Fu has {nv} rows (it should be {state.nv}).')
    super().__init__(state, nu, 0, u_lb, u_ub)
    self.Fq = np.asarray(Fq, dtype=float)
    self.Fv = np.asarray(Fv, dtype=float)
    self.Fu = Fu
    self.f0 = np.asarray(f0, dtype=float)
    self.Lxx = np.asarray(Lxx, dtype=float)
    self.Luu = np.asarray(Luu, dtype=float)
    self.Lxu = np.asarray(Lxu, dtype=float)
    self.lx = np.asarray(lx, dtype=float)
    self.lu = np.asarray(lu, dtype=float)

  @classmethod
  def random(cls, state, nu, seed=0, **kwargs):
    """Random LQR model with positive definite cost Hessians."""
    rng = np.random.default_rng(seed)
    nq, nv, nx = state.nq, state.nv, state.nx
    Lxx = rng.standard_normal((nx, nx))
    Luu = rng.standard_normal((nu, nu))
    return cls(state,
               Fq=rng.standard_normal((nv, nq)),
               Fv=rng.standard_normal((nv, nv)),
               Fu=rng.standard_normal((nv, nu)),
               f0=rng.standard_normal(nv),
               Lxx=Lxx @ Lxx.T + np.eye(nx),
               Luu=Luu @ Luu.T + np.eye(nu),
               Lxu=rng.standard_normal((nx, nu)),
               lx=rng.standard_normal(nx),
               lu=rng.standard_normal(nu),
               **kwargs)

  def calc(self, data, x, u):
    self._check_inputs(x, u)
    nq = self.state.nq
    q, v = x[:nq], x[nq:]
    data.xout[:] = self.Fq @ q + self.Fv @ v + self.Fu @ u + self.f0
    data.cost = float(0.5 * x @ self.Lxx @ x + 0.5 * u @ self.Luu @ u +
                      x @ self.Lxu @ u + self.lx @ x + self.lu @ u)

  def calc_diff(self, data, x, u):
    self._check_inputs(x, u)
    nq = self.state.nq
    data.Fx[:, :nq] = self.Fq
    data.Fx[:, nq:] = self.Fv
    data.Fu[:] = self.Fu
    data.Lx[:] = self.Lxx @ x + self.Lxu @ u + self.lx
    data.Lu[:] = self.Luu @ u + self.Lxu.T @ x + self.lu
    data.Lxx[:] = self.Lxx
    data.Luu[:] = self.Luu
    data.Lxu[:] = self.Lxu
