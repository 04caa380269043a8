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
"""Control parametrizations over one integration step.

The control signal applied during a step is a function of the normalized time
t in [0, 1] (0 is the beginning of the step, 1 its end) and of a parameter
vector p of shape [nu]:

    w = value(t, p),  w of shape [nw].

The solver optimizes over p; the differential model only ever sees w. The
Jacobian J = d value / dp has shape [nw, nu].
"""

import numpy as np


class ControlParametrizationAbstract(object):
  """Maps a parameter vector to a time-varying control signal and back."""

  def __init__(self, nw: int, nu: int):
    """Initialize dimensions.

    Args:
      nw: dimension of the control signal.
      nu: dimension of the parameter vector.
    """
    self.nw = nw
    self.nu = nu

  def resize(self, nw: int):
    raise NotImplementedError

  def value(self, t, p):
    raise NotImplementedError

  def value_inv(self, t, w):
    raise NotImplementedError

  def convert_bounds(self, w_lb, w_ub):
    raise NotImplementedError

  def d_value(self, t, p):
    raise NotImplementedError

  def multiply_by_d_value(self, t, p, A):
    """Returns A @ J for A of shape [k, nw]."""
    self._check_params(p)
    return np.asarray(A) @ self.d_value(t, p)

  def multiply_d_value_transpose_by(self, t, p, A):
    """Returns J.T @ A for A of shape [nw] or [nw, k]."""
    self._check_params(p)
    return self.d_value(t, p).T @ np.asarray(A)

  def _check_params(self, p):
    if np.shape(p) != (self.nu,):
      raise ValueError(f'p has wrong dimension (it should be {self.nu}).')

  def _check_control(self, w, name='w'):
    if np.shape(w) != (self.nw,):
      raise ValueError(f'{name} has wrong dimension (it should be {self.nw}).')

  def __str__(self):
    return f'{type(self).__name__} {{nw={self.nw}, nu={self.nu}}}'


class ControlParametrizationPolyZero(ControlParametrizationAbstract):
  """Zero-order hold: the control is constant and equal to p."""

  def __init__(self, nw: int):
    super().__init__(nw, nw)

  def resize(self, nw: int):
    self.nw = nw
    self.nu = nw

  def value(self, t, p):
    del t
    self._check_params(p)
    return np.array(p, dtype=float)

  def value_inv(self, t, w):
    del t
    self._check_control(w)
    return np.array(w, dtype=float)

  def convert_bounds(self, w_lb, w_ub):
    self._check_control(w_lb, 'w_lb')
    self._check_control(w_ub, 'w_ub')
    return np.array(w_lb, dtype=float), np.array(w_ub, dtype=float)

  def d_value(self, t, p):
    del t
    self._check_params(p)
    return np.eye(self.nw)

  # The Jacobian is the identity, so the products are copies.
  def multiply_by_d_value(self, t, p, A):
    del t
    self._check_params(p)
    return np.array(A, dtype=float)

  def multiply_d_value_transpose_by(self, t, p, A):
    del t
    self._check_params(p)
    return np.array(A, dtype=float)


class ControlParametrizationPolyOne(ControlParametrizationAbstract):
  """First-order hold: linear interpolation between two control knots.

  p = [p0, p1] and value(t, p) = (1 - t) * p0 + t * p1.
  """

  def __init__(self, nw: int):
    super().__init__(nw, 2 * nw)

  def resize(self, nw: int):
    self.nw = nw
    self.nu = 2 * nw

  def value(self, t, p):
    self._check_params(p)
    return (1. - t) * p[:self.nw] + t * p[self.nw:]

  def value_inv(self, t, w):
    # Constant signal; exact at every t.
    del t
    self._check_control(w)
    return np.concatenate([w, w]).astype(float)

  def convert_bounds(self, w_lb, w_ub):
    # value(t, p) is a convex combination of the knots, so bounding both knots
    # bounds the whole signal.
    self._check_control(w_lb, 'w_lb')
    self._check_control(w_ub, 'w_ub')
    return (np.concatenate([w_lb, w_lb]).astype(float),
            np.concatenate([w_ub, w_ub]).astype(float))

  def d_value(self, t, p):
    self._check_params(p)
    I = np.eye(self.nw)
    return np.hstack([(1. - t) * I, t * I])

  def multiply_by_d_value(self, t, p, A):
    self._check_params(p)
    A = np.asarray(A)
    return np.concatenate([(1. - t) * A, t * A], axis=-1)

  def multiply_d_value_transpose_by(self, t, p, A):
    self._check_params(p)
    A = np.asarray(A)
    return np.concatenate([(1. - t) * A, t * A], axis=0)
