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
"""Discrete-time action models from continuous-time differential models.

An action model maps a state x of shape [nx] and a control parameter vector u
of shape [nu] to

- xnext: the next state, shape [nx];
- cost: the cost of the step;
- r: the cost residual, shape [nr];

and, in calc_diff, to the exact derivatives

- Fx: [ndx, ndx], Fu: [ndx, nu] of xnext, in the tangent frame at xnext;
- Lx: [ndx], Lu: [nu], Lxx: [ndx, ndx], Lxu: [ndx, nu], Luu: [nu, nu] of the
  cost.

The integrated action models below build these from a differential model
(which supplies the acceleration a, the instantaneous cost l and their
derivatives), a control parametrization w = value(t, u) over the normalized
step time t in [0, 1], and the retraction of the state manifold. With dt == 0
a model is in passthrough mode: it carries the cost of its node and no state
transition, as used for terminal nodes.

Usage:

    model = IntegratedActionModelEuler(differential, dt=1e-2)
    data = model.create_data()
    model.calc(data, x, u)
    model.calc_diff(data, x, u)

calc_diff reuses the intermediate quantities written by calc, so both must be
called with the same (x, u), calc first.
"""

from absl import logging
import numpy as np

from discretax import controls
from discretax.states import AssignmentOp
from discretax.states import Jcomponent

DEFAULT_DT = 1e-3


class ActionDataAbstract(object):
  """Preallocated buffers of an action model evaluation."""

  def __init__(self, model):
    self.model = model
    ndx, nx, nu, nr = model.state.ndx, model.state.nx, model.nu, model.nr
    self.xnext = np.zeros(nx)
    self.cost = 0.
    self.r = np.zeros(nr)
    self.Fx = np.zeros((ndx, ndx))
    self.Fu = np.zeros((ndx, nu))
    self.Lx = np.zeros(ndx)
    self.Lu = np.zeros(nu)
    self.Lxx = np.zeros((ndx, ndx))
    self.Lxu = np.zeros((ndx, nu))
    self.Luu = np.zeros((nu, nu))


class ActionModelAbstract(object):
  """Base class for discrete-time action models."""

  Data = ActionDataAbstract

  def __init__(self, state, nu: int, nr: int = 0):
    self.state = state
    self.nu = nu
    self.nr = nr
    self.unone = np.zeros(nu)
    self.u_lb = np.full(nu, -np.inf)
    self.u_ub = np.full(nu, np.inf)

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
    raise NotImplementedError

  def quasi_static(self, data, x, maxiter=100, tol=1e-9):
    raise NotImplementedError

  def _check_inputs(self, x, u):
    if np.shape(x) != (self.state.nx,):
      raise ValueError(
          f'x has wrong dimension (it should be {self.state.nx}).')
    if np.shape(u) != (self.nu,):
      raise ValueError(f'u has wrong dimension (it should be {self.nu}).')


class IntegratedActionDataAbstract(ActionDataAbstract):
  """Action data holding one differential data per integration stage."""

  num_stages = 1

  def __init__(self, model):
    super().__init__(model)
    self.differential = [
        model.differential.create_data() for _ in range(self.num_stages)
    ]
    self.dx = np.zeros(model.state.ndx)


class IntegratedActionModelAbstract(ActionModelAbstract):
  """Shared configuration of integration rules.

  NOTE: Not an integration rule itself; subclasses implement calc, calc_diff
  and declare their Data type.
  """

  def __init__(self, differential, control=None, dt=DEFAULT_DT,
               with_cost_residual=True):
    """Initialize model.

    Args:
      differential: differential model to integrate.
      control: control parametrization; zero-order hold sized to the
        differential model when None.
      dt: time step. Negative values are replaced by DEFAULT_DT with a warning,
        zero selects passthrough mode.
      with_cost_residual: whether calc copies the cost residual.
    """
    if control is None:
      control = controls.ControlParametrizationPolyZero(differential.nu)
    if control.nw != differential.nu:
      raise ValueError(
          f'control parametrization has {control.nw} inputs '
          f'(it should be {differential.nu}).')
    super().__init__(differential.state, control.nu, differential.nr)
    self._differential = differential
    self.control = control
    self.with_cost_residual = with_cost_residual
    if dt < 0.:
      logging.warning('dt should be non-negative, got %g; set to %g.', dt,
                      DEFAULT_DT)
      dt = DEFAULT_DT
    self._dt = float(dt)
    self._dt2 = self._dt * self._dt
    self._update_bounds()

  @property
  def dt(self):
    return self._dt

  @dt.setter
  def dt(self, dt):
    if dt < 0.:
      raise ValueError(f'dt must be non-negative, got {dt}.')
    self._dt = float(dt)
    self._dt2 = self._dt * self._dt
    self._update_bounds()

  def set_dt(self, dt):
    self.dt = dt

  @property
  def dt2(self):
    return self._dt2

  @property
  def enable_integration(self):
    """True when integrating, False in passthrough mode (dt == 0)."""
    return self._dt > 0.

  @property
  def differential(self):
    return self._differential

  @differential.setter
  def differential(self, model):
    if self.control.nw != model.nu:
      self.control.resize(model.nu)
      self.nu = self.control.nu
      self.unone = np.zeros(self.nu)
    self.nr = model.nr
    self.state = model.state
    self._differential = model
    self._update_bounds()

  def set_differential(self, model):
    self.differential = model

  def _update_bounds(self):
    self.u_lb, self.u_ub = self.control.convert_bounds(
        self._differential.u_lb, self._differential.u_ub)

  def check_data(self, data):
    """Whether data was created by this model and is sized for it."""
    if not isinstance(data, self.Data) or data.model is not self:
      return False
    if (data.Fu.shape != (self.state.ndx, self.nu) or
        data.r.shape != (self.nr,) or
        len(data.differential) != data.num_stages):
      return False
    return all(self._differential.check_data(d) for d in data.differential)

  def quasi_static(self, data, x, maxiter=100, tol=1e-9):
    """Control parameters that hold the system at rest.

    Args:
      data: data created by this model.
      x: (nx,) state.
      maxiter: maximum number of iterations of the differential model solve.
      tol: tolerance of the differential model solve.

    Returns:
      u: (nu,) control parameters reproducing the quasi-static control at t=0.
    """
    if np.shape(x) != (self.state.nx,):
      raise ValueError(
          f'x has wrong dimension (it should be {self.state.nx}).')
    w = self._differential.quasi_static(data.differential[0], x, maxiter, tol)
    return self.control.value_inv(0., w)

  def _passthrough_diff(self, data, x, u):
    """Derivatives of the zero-step map from the first stage data."""
    dd = data.differential[0]
    self.state.jintegrate(x, data.dx, Jcomponent.FIRST, AssignmentOp.SETTO,
                          out=data.Fx)
    data.Fu[:] = 0.
    data.Lx[:] = dd.Lx
    data.Lu[:] = self.control.multiply_d_value_transpose_by(0., u, dd.Lu)
    data.Lxx[:] = dd.Lxx
    data.Lxu[:] = self.control.multiply_by_d_value(0., u, dd.Lxu)
    data.Luu[:] = self.control.multiply_d_value_transpose_by(
        0., u, self.control.multiply_by_d_value(0., u, dd.Luu))

  def __str__(self):
    return f'{type(self).__name__} {{dt={self._dt}, {self._differential}}}'


class IntegratedActionDataEuler(IntegratedActionDataAbstract):

  def __init__(self, model):
    super().__init__(model)
    self.u_diff = np.zeros(model.differential.nu)
    self.da_du = np.zeros((model.state.nv, model.nu))


class IntegratedActionModelEuler(IntegratedActionModelAbstract):
  """Explicit (symplectic) Euler integrator.

  With a = dv/dt evaluated at (x, value(0, u)):

      xnext = integrate(x, [v dt + a dt^2, a dt])
      cost = dt * l(x, value(0, u))
  """

  Data = IntegratedActionDataEuler

  def create_data(self):
    if self.control.nu > self.control.nw:
      logging.warning(
          'The Euler integrator only samples the control at t=0; %s has '
          'unused parameters.', self.control)
    return super().create_data()

  def calc(self, data, x, u):
    self._check_inputs(x, u)
    nv = self.state.nv
    dd = data.differential[0]

    data.u_diff[:] = self.control.value(0., u)
    self._differential.calc(dd, x, data.u_diff)

    if self.enable_integration:
      v = x[-nv:]
      a = dd.xout
      data.dx[:nv] = v * self._dt + a * self._dt2
      data.dx[nv:] = a * self._dt
      data.xnext[:] = self.state.integrate(x, data.dx)
      data.cost = self._dt * dd.cost
    else:
      data.dx[:] = 0.
      data.xnext[:] = x
      data.cost = dd.cost

    if self.with_cost_residual:
      data.r[:] = dd.r

  def calc_diff(self, data, x, u):
    self._check_inputs(x, u)
    nv = self.state.nv
    dt, dt2 = self._dt, self._dt2
    dd = data.differential[0]

    data.u_diff[:] = self.control.value(0., u)
    self._differential.calc_diff(dd, x, data.u_diff)

    if not self.enable_integration:
      self._passthrough_diff(data, x, u)
      return

    da_dx = dd.Fx
    data.Fx[:nv] = da_dx * dt2
    data.Fx[nv:] = da_dx * dt
    data.Fx[:nv, -nv:] += dt * np.eye(nv)

    data.da_du[:] = self.control.multiply_by_d_value(0., u, dd.Fu)
    data.Fu[:nv] = dt2 * data.da_du
    data.Fu[nv:] = dt * data.da_du

    self.state.jintegrate_transport(x, data.dx, data.Fx, Jcomponent.SECOND)
    self.state.jintegrate(x, data.dx, Jcomponent.FIRST, AssignmentOp.ADDTO,
                          out=data.Fx)
    self.state.jintegrate_transport(x, data.dx, data.Fu, Jcomponent.SECOND)

    data.Lx[:] = dt * dd.Lx
    data.Lu[:] = dt * self.control.multiply_d_value_transpose_by(0., u, dd.Lu)
    data.Lxx[:] = dt * dd.Lxx
    data.Lxu[:] = dt * self.control.multiply_by_d_value(0., u, dd.Lxu)
    data.Luu[:] = dt * self.control.multiply_d_value_transpose_by(
        0., u, self.control.multiply_by_d_value(0., u, dd.Luu))


class IntegratedActionDataRK2(IntegratedActionDataAbstract):
  """Intermediates of the midpoint rule.

  Lists are indexed by stage; the remaining buffers belong to the midpoint
  stage, the only one that reaches the output.
  """

  num_stages = 2

  def __init__(self, model):
    super().__init__(model)
    ndx, nx, nv = model.state.ndx, model.state.nx, model.state.nv
    nw, nu = model.differential.nu, model.nu
    stages = range(self.num_stages)

    # Stage controls and state derivatives k_i with their derivatives with
    # respect to y_i, x, the stage control w_i and the parameters u.
    self.u_diff = [np.zeros(nw) for _ in stages]
    self.ki = [np.zeros(ndx) for _ in stages]
    self.dki_dy = [np.zeros((ndx, ndx)) for _ in stages]
    self.dki_dx = [np.zeros((ndx, ndx)) for _ in stages]
    self.dki_dudiff = [np.zeros((ndx, nw)) for _ in stages]
    self.dki_du = [np.zeros((ndx, nu)) for _ in stages]
    for i in stages:
      # d k_i / d y_i = [[0, I], [da/dy]]; the velocity block is constant.
      self.dki_dy[i][:nv, -nv:] = np.eye(nv)

    # Midpoint y = integrate(x, dx_rk2) and its sensitivities.
    self.dx_rk2 = np.zeros(ndx)
    self.y = np.zeros(nx)
    self.dy_dx = np.zeros((ndx, ndx))
    self.dy_du = np.zeros((ndx, nu))
    self.df_du = np.zeros((ndx, nu))

    # Midpoint cost derivatives with respect to x and u.
    self.dl_dx = np.zeros(ndx)
    self.dl_du = np.zeros(nu)
    self.ddl_ddx = np.zeros((ndx, ndx))
    self.ddl_ddu = np.zeros((nu, nu))
    self.ddl_dxdu = np.zeros((ndx, nu))
    self.Lxu_w = np.zeros((ndx, nu))
    self.Luu_partialx = np.zeros((nu, nu))
    self.Lxx_partialx = np.zeros((ndx, ndx))
    self.Lxx_partialu = np.zeros((ndx, nu))


class IntegratedActionModelRK2(IntegratedActionModelAbstract):
  """Two-stage explicit midpoint (second-order Runge-Kutta) integrator.

  With k(y, w) = [v(y), a(y, w)] the stacked state derivative:

      k0 = k(x, value(0, u))
      y1 = integrate(x, 0.5 dt k0)
      k1 = k(y1, value(0.5, u))
      xnext = integrate(x, dt k1)
      cost = dt * l(y1, value(0.5, u))

  Stage 0 only locates the midpoint. The cost Hessians keep the terms that
  are linear in the stage sensitivities (Gauss-Newton); second derivatives of
  the midpoint map are dropped.
  """

  Data = IntegratedActionDataRK2

  def __init__(self, differential, control=None, dt=DEFAULT_DT,
               with_cost_residual=True):
    super().__init__(differential, control, dt, with_cost_residual)
    self.rk2_c = (0., 0.5)

  def calc(self, data, x, u):
    self._check_inputs(x, u)
    nv = self.state.nv
    c = self.rk2_c
    d0, d1 = data.differential

    data.u_diff[0][:] = self.control.value(c[0], u)
    self._differential.calc(d0, x, data.u_diff[0])

    if not self.enable_integration:
      data.dx[:] = 0.
      data.xnext[:] = x
      data.cost = d0.cost
      if self.with_cost_residual:
        data.r[:] = d0.r
      return

    data.ki[0][:nv] = x[-nv:]
    data.ki[0][nv:] = d0.xout

    data.dx_rk2[:] = c[1] * self._dt * data.ki[0]
    data.y[:] = self.state.integrate(x, data.dx_rk2)
    data.u_diff[1][:] = self.control.value(c[1], u)
    self._differential.calc(d1, data.y, data.u_diff[1])
    data.ki[1][:nv] = data.y[-nv:]
    data.ki[1][nv:] = d1.xout

    data.dx[:] = self._dt * data.ki[1]
    data.xnext[:] = self.state.integrate(x, data.dx)
    data.cost = self._dt * d1.cost
    if self.with_cost_residual:
      data.r[:] = d1.r

  def calc_diff(self, data, x, u):
    self._check_inputs(x, u)
    nv = self.state.nv
    c = self.rk2_c
    dt = self._dt
    state, control = self.state, self.control
    d0, d1 = data.differential

    data.u_diff[0][:] = control.value(c[0], u)
    self._differential.calc_diff(d0, x, data.u_diff[0])

    if not self.enable_integration:
      self._passthrough_diff(data, x, u)
      return

    # Stage 0, at x.
    data.dki_dy[0][nv:] = d0.Fx
    data.dki_dx[0][:] = data.dki_dy[0]
    data.dki_dudiff[0][nv:] = d0.Fu
    data.dki_du[0][:] = control.multiply_by_d_value(c[0], u,
                                                    data.dki_dudiff[0])

    # Stage 1, at the midpoint y = integrate(x, dx_rk2).
    data.u_diff[1][:] = control.value(c[1], u)
    self._differential.calc_diff(d1, data.y, data.u_diff[1])
    data.dki_dy[1][nv:] = d1.Fx

    data.dy_dx[:] = data.dki_dx[0] * (c[1] * dt)
    state.jintegrate_transport(x, data.dx_rk2, data.dy_dx, Jcomponent.SECOND)
    state.jintegrate(x, data.dx_rk2, Jcomponent.FIRST, AssignmentOp.ADDTO,
                     out=data.dy_dx)
    data.dki_dx[1][:] = data.dki_dy[1] @ data.dy_dx

    data.dy_du[:] = data.dki_du[0] * (c[1] * dt)
    state.jintegrate_transport(x, data.dx_rk2, data.dy_du, Jcomponent.SECOND)
    data.dki_dudiff[1][nv:] = d1.Fu
    data.df_du[:] = control.multiply_by_d_value(c[1], u, data.dki_dudiff[1])
    data.dki_du[1][:] = data.dki_dy[1] @ data.dy_du + data.df_du

    data.dl_dx[:] = d1.Lx @ data.dy_dx
    data.dl_du[:] = (control.multiply_d_value_transpose_by(c[1], u, d1.Lu)
                     + d1.Lx @ data.dy_du)

    data.Lxx_partialx[:] = d1.Lxx @ data.dy_dx
    data.ddl_ddx[:] = data.dy_dx.T @ data.Lxx_partialx

    data.Lxu_w[:] = control.multiply_by_d_value(c[1], u, d1.Lxu)
    data.Luu_partialx[:] = data.Lxu_w.T @ data.dy_du
    data.Lxx_partialu[:] = d1.Lxx @ data.dy_du
    data.ddl_ddu[:] = (
        control.multiply_d_value_transpose_by(
            c[1], u, control.multiply_by_d_value(c[1], u, d1.Luu)) +
        data.Luu_partialx.T + data.Luu_partialx +
        data.dy_du.T @ data.Lxx_partialu)
    data.ddl_dxdu[:] = data.dy_dx.T @ (data.Lxu_w + data.Lxx_partialu)

    # Output, in the frame of xnext = integrate(x, dx).
    data.Fx[:] = dt * data.dki_dx[1]
    state.jintegrate_transport(x, data.dx, data.Fx, Jcomponent.SECOND)
    state.jintegrate(x, data.dx, Jcomponent.FIRST, AssignmentOp.ADDTO,
                     out=data.Fx)
    data.Fu[:] = dt * data.dki_du[1]
    state.jintegrate_transport(x, data.dx, data.Fu, Jcomponent.SECOND)

    data.Lx[:] = dt * data.dl_dx
    data.Lu[:] = dt * data.dl_du
    data.Lxx[:] = dt * data.ddl_ddx
    data.Luu[:] = dt * data.ddl_ddu
    data.Lxu[:] = dt * data.ddl_dxdu
