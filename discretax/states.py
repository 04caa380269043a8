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
"""State manifolds with retraction Jacobians.

Notation:

- x denotes a point of the manifold, a 1D array of shape [nx] whose last nv
  entries are the generalized velocity.
- dx denotes a tangent vector, a 1D array of shape [ndx] with ndx = 2 * nv:
  the configuration increment followed by the velocity increment.

integrate(x, dx) is the retraction x (+) dx and diff(x0, x1) its inverse, so
that diff(x0, integrate(x0, dx)) == dx. Derivatives are expressed in the local
tangent frames: J1 = d integrate / dx and J2 = d integrate / d dx map tangent
vectors at x into tangent vectors at integrate(x, dx).

integrate and diff are written with jax.numpy so that differential models can
be differentiated through the retraction; the Jacobians are closed-form numpy.
"""

import enum

import jax.numpy as jnp
import numpy as np


class Jcomponent(enum.Enum):
  FIRST = 0  # with respect to the base point x.
  SECOND = 1  # with respect to the tangent step dx.


class AssignmentOp(enum.Enum):
  SETTO = 0
  ADDTO = 1


def _check_component(first_second):
  if not isinstance(first_second, Jcomponent):
    raise ValueError(
        f'first_second must be a Jcomponent, got {first_second!r}.')


def _assign(J, out, op):
  """Writes J into out according to op, allocating out if needed."""
  if not isinstance(op, AssignmentOp):
    raise ValueError(f'op must be an AssignmentOp, got {op!r}.')
  if out is None:
    if op == AssignmentOp.ADDTO:
      raise ValueError('op=ADDTO requires an output matrix.')
    return J
  if out.shape != J.shape:
    raise ValueError(
        f'Jacobian output has shape {out.shape} (it should be {J.shape}).')
  if op == AssignmentOp.SETTO:
    out[:] = J
  else:
    out += J
  return out


class StateAbstract(object):
  """Base class for state manifolds.

  Subclasses implement integrate, diff and the Jacobian of integrate.
  """

  def __init__(self, nx: int, ndx: int):
    if ndx % 2:
      raise ValueError(f'ndx must be even, got {ndx}.')
    self.nx = nx
    self.ndx = ndx
    self.nv = ndx // 2
    self.nq = nx - self.nv

  def zero(self):
    raise NotImplementedError

  def rand(self, rng=None):
    raise NotImplementedError

  def integrate(self, x, dx):
    raise NotImplementedError

  def diff(self, x0, x1):
    raise NotImplementedError

  def _jintegrate(self, x, dx, first_second):
    raise NotImplementedError

  def check_point(self, x, name='x'):
    if np.shape(x) != (self.nx,):
      raise ValueError(
          f'{name} has wrong dimension (it should be {self.nx}).')

  def check_tangent(self, dx, name='dx'):
    if np.shape(dx) != (self.ndx,):
      raise ValueError(
          f'{name} has wrong dimension (it should be {self.ndx}).')

  def _check_jacobian(self, J):
    if np.ndim(J) != 2 or J.shape[0] != self.ndx:
      raise ValueError(
          f'J has shape {np.shape(J)} (it should have {self.ndx} rows).')

  def jintegrate(self, x, dx, first_second=Jcomponent.FIRST,
                 op=AssignmentOp.SETTO, out=None):
    """Jacobian of integrate(x, dx).

    Args:
      x: [nx] point.
      dx: [ndx] tangent step.
      first_second: Jcomponent.FIRST for the derivative with respect to x,
        Jcomponent.SECOND for the derivative with respect to dx.
      op: AssignmentOp.SETTO overwrites out, AssignmentOp.ADDTO accumulates
        into out.
      out: optional [ndx, ndx] array written in place.

    Returns:
      The [ndx, ndx] Jacobian (out when given).
    """
    self.check_point(x)
    self.check_tangent(dx)
    _check_component(first_second)
    return _assign(self._jintegrate(x, dx, first_second), out, op)

  def jintegrate_transport(self, x, dx, J, first_second=Jcomponent.SECOND):
    """Transports the rows of J into the tangent frame at integrate(x, dx).

    J is overwritten in place with J_i @ J, where J_i is the Jacobian of
    integrate selected by first_second.

    Args:
      x: [nx] point.
      dx: [ndx] tangent step.
      J: [ndx, k] matrix whose rows live in the tangent space at x.
      first_second: which Jacobian of integrate to apply.

    Returns:
      J.
    """
    self.check_point(x)
    self.check_tangent(dx)
    _check_component(first_second)
    self._check_jacobian(J)
    J[:] = self._jintegrate(x, dx, first_second) @ J
    return J

  def jdiff(self, x0, x1, first_second=Jcomponent.FIRST):
    """Jacobian of diff(x0, x1) with respect to x0 or x1."""
    self.check_point(x0, 'x0')
    self.check_point(x1, 'x1')
    _check_component(first_second)
    dx = np.asarray(self.diff(x0, x1))
    # diff(x0, integrate(x0, dx)) == dx, so its Jacobians are inverses of the
    # integrate ones.
    J2_inv = np.linalg.inv(self._jintegrate(x0, dx, Jcomponent.SECOND))
    if first_second == Jcomponent.SECOND:
      return J2_inv
    return -J2_inv @ self._jintegrate(x0, dx, Jcomponent.FIRST)

  def __str__(self):
    return f'{type(self).__name__} {{nx={self.nx}, ndx={self.ndx}}}'


class StateVector(StateAbstract):
  """Euclidean state, x = [q, v] with nq == nv."""

  def __init__(self, nx: int):
    super().__init__(nx, nx)

  def zero(self):
    return np.zeros(self.nx)

  def rand(self, rng=None):
    rng = np.random.default_rng(rng)
    return rng.standard_normal(self.nx)

  def integrate(self, x, dx):
    return x + dx

  def diff(self, x0, x1):
    return x1 - x0

  def _jintegrate(self, x, dx, first_second):
    del x, dx, first_second
    return np.eye(self.ndx)

  def jintegrate_transport(self, x, dx, J, first_second=Jcomponent.SECOND):
    # Both Jacobians are the identity.
    self.check_point(x)
    self.check_tangent(dx)
    _check_component(first_second)
    self._check_jacobian(J)
    return J


def skew(w):
  """Skew-symmetric matrix such that skew(w) @ v == cross(w, v)."""
  return np.array([[0., -w[2], w[1]],
                   [w[2], 0., -w[0]],
                   [-w[1], w[0], 0.]])


def quat_multiply(q1, q2):
  """Hamilton product of [x, y, z, w] quaternions."""
  v1, w1 = q1[:3], q1[3]
  v2, w2 = q2[:3], q2[3]
  v = w1 * v2 + w2 * v1 + jnp.cross(v1, v2)
  w = w1 * w2 - jnp.dot(v1, v2)
  return jnp.concatenate([v, w[None]])


def quat_conjugate(q):
  return jnp.concatenate([-q[:3], q[3:]])


def quat_exp(w):
  """Unit quaternion of the rotation vector w."""
  theta2 = jnp.dot(w, w)
  small = theta2 < 1e-12
  # Double where keeps the derivatives finite at w == 0.
  theta = jnp.sqrt(jnp.where(small, 1., theta2))
  s = jnp.where(small, 0.5 - theta2 / 48., jnp.sin(0.5 * theta) / theta)
  c = jnp.where(small, 1. - theta2 / 8., jnp.cos(0.5 * theta))
  return jnp.concatenate([s * w, c[None]])


def quat_log(q):
  """Rotation vector of the unit quaternion q, in the ball of radius pi."""
  q = jnp.where(q[3] < 0., -q, q)
  v, c = q[:3], q[3]
  s2 = jnp.dot(v, v)
  small = s2 < 1e-12
  s = jnp.sqrt(jnp.where(small, 1., s2))
  scale = jnp.where(small, 2. / c * (1. - s2 / (3. * c * c)),
                    2. * jnp.arctan2(s, c) / s)
  return scale * v


def rotation_matrix(w):
  """Rotation matrix exp(skew(w)) (Rodrigues)."""
  w = np.asarray(w)
  theta2 = w @ w
  W = skew(w)
  if theta2 < 1e-12:
    a, b = 1. - theta2 / 6., 0.5 - theta2 / 24.
  else:
    theta = np.sqrt(theta2)
    a, b = np.sin(theta) / theta, (1. - np.cos(theta)) / theta2
  return np.eye(3) + a * W + b * W @ W


def right_jacobian(w):
  """Right Jacobian of the SO(3) exponential map."""
  w = np.asarray(w)
  theta2 = w @ w
  W = skew(w)
  if theta2 < 1e-12:
    a, b = 0.5 - theta2 / 24., 1. / 6. - theta2 / 120.
  else:
    theta = np.sqrt(theta2)
    a = (1. - np.cos(theta)) / theta2
    b = (theta - np.sin(theta)) / (theta2 * theta)
  return np.eye(3) - a * W + b * W @ W


class StateSO3(StateAbstract):
  """Rotating rigid body, x = [qx, qy, qz, qw, wx, wy, wz].

  The orientation is a unit quaternion and the velocity the body angular
  velocity; the retraction composes on the right, q (+) dq = q * exp(dq).
  """

  def __init__(self):
    super().__init__(7, 6)

  def zero(self):
    x = np.zeros(self.nx)
    x[3] = 1.
    return x

  def rand(self, rng=None):
    rng = np.random.default_rng(rng)
    q = rng.standard_normal(4)
    q /= np.linalg.norm(q)
    return np.concatenate([q, rng.standard_normal(3)])

  def integrate(self, x, dx):
    q = quat_multiply(x[:4], quat_exp(dx[:3]))
    return jnp.concatenate([q, x[4:] + dx[3:]])

  def diff(self, x0, x1):
    dq = quat_log(quat_multiply(quat_conjugate(x0[:4]), x1[:4]))
    return jnp.concatenate([dq, x1[4:] - x0[4:]])

  def _jintegrate(self, x, dx, first_second):
    del x
    J = np.eye(self.ndx)
    if first_second == Jcomponent.FIRST:
      J[:3, :3] = rotation_matrix(dx[:3]).T
    else:
      J[:3, :3] = right_jacobian(dx[:3])
    return J
